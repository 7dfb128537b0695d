"""Flow Executor: runs a flow from its End node through to an analysis result.

1. Gate on ERROR diagnostics attached to the End node
2. Resolve the operator strategy and mark the End node as executing
3. Strategy validation (required node kinds + graph rules); ERRORs abort the run
4. Build SQL, preflight it with EXPLAIN, execute it
5. Post-process and store the result (with its SQL) on the End node
6. Flag results larger than compiler.large_result_threshold

The executing flag is always cleared. Query engine and scorer failures are
recorded on the End node and then re-raised unchanged.
"""

import time
from dataclasses import dataclass, field
from typing import Literal

import structlog

from canvasql.core.logging_config import flow_context
from canvasql.core.metrics import (
    flow_executions_total,
    query_execution_duration_seconds,
    query_result_rows,
)
from canvasql.schemas.graph import (
    AnalysisResult,
    Diagnostic,
    EndPatch,
    NodeKind,
    Severity,
)
from canvasql.services.flow_store import FlowStore
from canvasql.services.query_analyzer import SUGGEST_LARGE_RESULT, should_optimize
from canvasql.services.query_engine import QueryEngine
from canvasql.services.strategies import StrategyRegistry

logger = structlog.stdlib.get_logger(__name__)


@dataclass
class ExecutionOutcome:
    """What happened when a flow was executed."""

    status: Literal["completed", "blocked"]
    sql: str = ""
    result: AnalysisResult | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


class FlowExecutor:
    """Executes flows held in a FlowStore against a query engine."""

    def __init__(self, registry: StrategyRegistry, engine: QueryEngine):
        self._registry = registry
        self._engine = engine

    async def execute(self, store: FlowStore, end_node_id: str) -> ExecutionOutcome:
        end = store.get_node(end_node_id)
        if end is None or end.kind != NodeKind.END:
            raise ValueError(f"Node {end_node_id!r} is not an end node")

        with flow_context(flow_id=store.flow_id, operator=end.payload.operator_kind):
            return await self._run(store, end_node_id, end.payload.operator_kind)

    async def _run(self, store: FlowStore, end_node_id: str, operator_kind) -> ExecutionOutcome:
        blocking = [d for d in store.diagnostics_for(end_node_id) if d.is_error]
        if blocking:
            store.set_error_panel_open(True)
            return self._blocked(operator_kind, blocking)

        strategy = self._registry.resolve(operator_kind)
        operator = strategy.operator.value

        store.update_node(end_node_id, EndPatch(executing=True, errors=[]))
        try:
            errors = [d for d in strategy.validate(store.nodes, store.edges) if d.is_error]
            if errors:
                store.update_node(end_node_id, EndPatch(errors=errors))
                store.set_error_panel_open(True)
                return self._blocked(strategy.operator, errors)

            sql = strategy.build_sql(store.nodes, store.edges)
            await self._engine.execute(f"EXPLAIN {sql}")

            start = time.perf_counter()
            raw_result = await self._engine.execute(sql)
            duration = time.perf_counter() - start
            query_execution_duration_seconds.labels(operator=operator).observe(duration)
            query_result_rows.labels(operator=operator).observe(raw_result.total_rows)

            analysis = await strategy.post_process(raw_result)
            analysis = analysis.model_copy(update={"sql": sql})
            store.update_node(end_node_id, EndPatch(result=analysis, errors=[]))
        except Exception as exc:
            store.update_node(
                end_node_id,
                EndPatch(
                    errors=[
                        Diagnostic(
                            node_id=end_node_id,
                            node_kind=NodeKind.END,
                            message=str(exc) or type(exc).__name__,
                            severity=Severity.ERROR,
                        )
                    ]
                ),
            )
            store.set_error_panel_open(True)
            flow_executions_total.labels(operator=operator, status="failed").inc()
            logger.exception("flow_execution_failed")
            raise
        finally:
            store.update_node(end_node_id, EndPatch(executing=False))

        suggestions = []
        if should_optimize(raw_result.total_rows):
            suggestions.append(SUGGEST_LARGE_RESULT.format(rows=raw_result.total_rows))
            logger.warning("large_result", rows=raw_result.total_rows)

        flow_executions_total.labels(operator=operator, status="completed").inc()
        logger.info(
            "flow_executed",
            rows=raw_result.total_rows,
            duration_ms=round(duration * 1000, 2),
        )
        return ExecutionOutcome(
            status="completed", sql=sql, result=analysis, suggestions=suggestions
        )

    def _blocked(self, operator, diagnostics: list[Diagnostic]) -> ExecutionOutcome:
        label = operator.value if operator is not None else "none"
        flow_executions_total.labels(operator=label, status="blocked").inc()
        logger.info("flow_execution_blocked", operator=label, error_count=len(diagnostics))
        return ExecutionOutcome(status="blocked", diagnostics=diagnostics)
