"""Operator strategies: SQL generation and post-processing per End-node operator.

Each operator kind has exactly one strategy. A strategy lists the node kinds it
needs, validates a graph, assembles SQL from the shared clause builders, and
post-processes the rows the query engine returns.

The set of operators is closed (OperatorKind), so create_strategy() branches
over it explicitly. StrategyRegistry is an ordinary object handed to whoever
needs it; there is no module-level registry.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import ClassVar

import structlog

from canvasql.core.metrics import sql_build_duration_seconds
from canvasql.schemas.graph import (
    GRAPH_NODE_ID,
    AnalysisResult,
    Diagnostic,
    Edge,
    Node,
    NodeKind,
    OperatorKind,
    Severity,
    Visualization,
)
from canvasql.schemas.query import QueryResult
from canvasql.services.anomaly_scoring import (
    AnomalyScorer,
    ScoringBudget,
    budget_from_settings,
    build_scoring_request,
    identify_feature_columns,
)
from canvasql.services.graph_validator import validate_graph
from canvasql.services.sql_builder import (
    ClauseBuilder,
    assemble,
    build_from_clause,
    build_group_by_clause,
    build_join_clauses,
    build_select_clause,
    build_where_clause,
)

logger = structlog.stdlib.get_logger(__name__)

MISSING_REQUIRED_NODE = "Missing required node type: {kind}"

ANOMALY_SCORE_FIELD = "anomaly_score"
ANOMALY_FLAG_FIELD = "is_anomaly"


class UnknownOperatorError(ValueError):
    """Raised when no strategy exists for an operator kind."""

    def __init__(self, operator: object):
        super().__init__(f"Unknown operator: {operator}")
        self.operator = operator


class BaseStrategy(ABC):
    """Shared validation and clause assembly for all operator strategies."""

    operator: ClassVar[OperatorKind]
    name: ClassVar[str]
    clauses: ClassVar[tuple[ClauseBuilder, ...]]

    @abstractmethod
    def required_node_kinds(self) -> list[NodeKind]: ...

    @abstractmethod
    async def post_process(self, raw_result: QueryResult) -> AnalysisResult: ...

    def validate(self, nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
        """Required node kinds for this operator, followed by the full graph rules."""
        present = {n.kind for n in nodes}
        diagnostics = [
            Diagnostic(
                node_id=GRAPH_NODE_ID,
                node_kind=NodeKind.END,
                message=MISSING_REQUIRED_NODE.format(kind=kind.value),
                severity=Severity.ERROR,
            )
            for kind in self.required_node_kinds()
            if kind not in present
        ]
        diagnostics.extend(validate_graph(nodes, edges))
        return diagnostics

    def build_sql(self, nodes: list[Node], edges: list[Edge]) -> str:
        """Lower a validated graph to SQL. Never raises; invalid graphs give best-effort text."""
        start = time.perf_counter()
        sql = assemble(nodes, self.clauses)
        duration = time.perf_counter() - start
        sql_build_duration_seconds.labels(operator=self.operator.value).observe(duration)
        logger.debug(
            "sql_built",
            operator=self.operator.value,
            node_count=len(nodes),
            sql=sql,
            build_ms=round(duration * 1000, 3),
        )
        return sql


class AssociationStrategy(BaseStrategy):
    """Multi-table association query."""

    operator = OperatorKind.ASSOCIATION
    name = "Association query"
    clauses = (
        build_select_clause,
        build_from_clause,
        build_join_clauses,
        build_where_clause,
        build_group_by_clause,
    )

    def required_node_kinds(self) -> list[NodeKind]:
        return [NodeKind.TABLE]

    async def post_process(self, raw_result: QueryResult) -> AnalysisResult:
        return AnalysisResult(
            operator=self.operator,
            data=raw_result,
            insights=[f"Association query returned {raw_result.total_rows} rows"],
            visualizations=[Visualization(type="table", config={"columns": raw_result.column_names})],
        )


class AnomalyStrategy(BaseStrategy):
    """Anomaly insight: rows are scored by the external anomaly scorer."""

    operator = OperatorKind.ANOMALY
    name = "Anomaly insight"
    clauses = (
        build_select_clause,
        build_from_clause,
        build_join_clauses,
        build_where_clause,
    )

    def __init__(
        self,
        scorer: AnomalyScorer | None = None,
        budget: ScoringBudget | None = None,
    ):
        self._scorer = scorer
        self._budget = budget

    def required_node_kinds(self) -> list[NodeKind]:
        return [NodeKind.TABLE, NodeKind.SELECT]

    async def post_process(self, raw_result: QueryResult) -> AnalysisResult:
        """Score the rows and merge score/flag back into each row.

        The first result column is the row key; numeric columns are features.
        Scorer failures propagate unchanged.
        """
        if self._scorer is None:
            raise RuntimeError("Anomaly scorer not configured")

        key_column = raw_result.column_names[0] if raw_result.column_names else ""
        feature_columns = identify_feature_columns(raw_result, key_column)
        request = build_scoring_request(raw_result.rows, key_column, feature_columns)
        budget = self._budget if self._budget is not None else budget_from_settings()

        scored = await self._scorer.score(request, budget)

        by_key = dict(zip(scored.row_keys, zip(scored.scores, scored.flags)))
        enriched = []
        for row in raw_result.rows:
            score, flag = by_key.get(str(row.get(key_column)), (None, False))
            enriched.append({**row, ANOMALY_SCORE_FIELD: score, ANOMALY_FLAG_FIELD: flag})

        flagged = sum(1 for flag in scored.flags if flag)
        logger.info(
            "anomaly_scored",
            rows=len(request.row_keys),
            features=len(feature_columns),
            flagged=flagged,
        )
        return AnalysisResult(
            operator=self.operator,
            data=enriched,
            insights=[
                f"{flagged} of {len(request.row_keys)} rows flagged as anomalies",
                f"Threshold {budget.threshold}",
            ],
            visualizations=[
                Visualization(
                    type="scatter",
                    config={
                        "key_field": key_column,
                        "features": feature_columns,
                        "score_field": ANOMALY_SCORE_FIELD,
                        "anomaly_field": ANOMALY_FLAG_FIELD,
                    },
                )
            ],
        )


class ClusteringStrategy(BaseStrategy):
    """User clustering. The clustering itself happens outside this package."""

    operator = OperatorKind.CLUSTERING
    name = "User clustering"
    clauses = (
        build_select_clause,
        build_from_clause,
        build_join_clauses,
        build_where_clause,
        build_group_by_clause,
    )

    def required_node_kinds(self) -> list[NodeKind]:
        return [NodeKind.TABLE, NodeKind.SELECT]

    async def post_process(self, raw_result: QueryResult) -> AnalysisResult:
        return AnalysisResult(
            operator=self.operator,
            data=raw_result,
            insights=[f"{raw_result.total_rows} rows prepared for clustering"],
            visualizations=[
                Visualization(
                    type="radar",
                    config={"columns": raw_result.column_names, "cluster_field": "cluster_id"},
                )
            ],
        )


def _coerce_operator(kind: OperatorKind | str) -> OperatorKind:
    try:
        return OperatorKind(kind)
    except ValueError:
        raise UnknownOperatorError(kind) from None


def create_strategy(
    kind: OperatorKind | str,
    scorer: AnomalyScorer | None = None,
    budget: ScoringBudget | None = None,
) -> BaseStrategy:
    match _coerce_operator(kind):
        case OperatorKind.ASSOCIATION:
            return AssociationStrategy()
        case OperatorKind.ANOMALY:
            return AnomalyStrategy(scorer=scorer, budget=budget)
        case OperatorKind.CLUSTERING:
            return ClusteringStrategy()
    raise UnknownOperatorError(kind)


class StrategyRegistry:
    """Operator kind -> strategy instance."""

    def __init__(self, strategies: Mapping[OperatorKind, BaseStrategy]):
        self._strategies = dict(strategies)

    @classmethod
    def default(
        cls,
        scorer: AnomalyScorer | None = None,
        budget: ScoringBudget | None = None,
    ) -> "StrategyRegistry":
        """One strategy per OperatorKind."""
        return cls({kind: create_strategy(kind, scorer, budget) for kind in OperatorKind})

    def resolve(self, kind: OperatorKind | str | None) -> BaseStrategy:
        if kind is None:
            raise UnknownOperatorError(kind)
        strategy = self._strategies.get(_coerce_operator(kind))
        if strategy is None:
            raise UnknownOperatorError(kind)
        return strategy

    def has_strategy(self, kind: OperatorKind | str) -> bool:
        try:
            return _coerce_operator(kind) in self._strategies
        except UnknownOperatorError:
            return False

    def all_strategies(self) -> list[BaseStrategy]:
        return list(self._strategies.values())
