"""Flow validation and compilation endpoints.

Stateless: every request carries the full graph. Nothing is persisted.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlglot.errors import SqlglotError

from canvasql.api.deps import get_strategy_registry
from canvasql.core.config import settings
from canvasql.core.logging_config import flow_context
from canvasql.schemas.flow import CompileRequest, CompileResponse, FlowGraphRequest
from canvasql.schemas.graph import NodeKind, ValidationResult
from canvasql.services.graph_validator import has_errors, summarize, validate_graph
from canvasql.services.query_analyzer import analyze_query, estimate_complexity
from canvasql.services.strategies import BaseStrategy, StrategyRegistry, UnknownOperatorError

router = APIRouter()
logger = structlog.stdlib.get_logger("canvasql.flows")


@router.post("/validate", response_model=ValidationResult)
async def validate_flow(body: FlowGraphRequest):
    return summarize(validate_graph(body.nodes, body.edges))


def _requested_operator(body: CompileRequest) -> str:
    if body.operator:
        return body.operator
    end = next((n for n in body.nodes if n.kind == NodeKind.END), None)
    if end is not None and end.payload.operator_kind is not None:
        return end.payload.operator_kind.value
    return settings.compiler.default_operator


@router.post("/compile", response_model=CompileResponse)
async def compile_flow(
    body: CompileRequest,
    registry: StrategyRegistry = Depends(get_strategy_registry),
):
    """Validate the graph with the operator's strategy and lower it to SQL.

    Any ERROR diagnostic blocks compilation (422). Unknown operators are 400.
    """
    try:
        strategy = registry.resolve(_requested_operator(body))
    except UnknownOperatorError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    with flow_context(operator=strategy.operator):
        return _compile(strategy, body)


def _compile(strategy: BaseStrategy, body: CompileRequest) -> CompileResponse:
    diagnostics = strategy.validate(body.nodes, body.edges)
    if has_errors(diagnostics):
        logger.info("flow_compile_rejected", error_count=sum(d.is_error for d in diagnostics))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": "Flow has blocking errors",
                "diagnostics": [d.model_dump(mode="json") for d in diagnostics],
            },
        )

    sql = strategy.build_sql(body.nodes, body.edges)
    response = CompileResponse(operator=strategy.operator, sql=sql, diagnostics=diagnostics)

    try:
        analysis = analyze_query(sql)
        response.suggestions = analysis.suggestions
        response.optimized_sql = analysis.optimized
        response.complexity = estimate_complexity(sql)
    except SqlglotError as e:
        # Some condition operators (STARTS WITH, ...) are not parseable SQL
        logger.warning("query_analysis_skipped", error=str(e))

    return response
