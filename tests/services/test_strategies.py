"""Operator strategy and registry tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from canvasql.schemas.graph import GRAPH_NODE_ID, NodeKind, OperatorKind, Severity
from canvasql.schemas.query import QueryResult, ResultColumn
from canvasql.services.anomaly_scoring import (
    AnomalyScoringError,
    ScoringBudget,
    ScoringRequest,
    ScoringResult,
)
from canvasql.services.graph_validator import NO_SELECT_NODE
from canvasql.services.strategies import (
    MISSING_REQUIRED_NODE,
    AnomalyStrategy,
    AssociationStrategy,
    ClusteringStrategy,
    StrategyRegistry,
    UnknownOperatorError,
    create_strategy,
)
from factories import end, simple_flow, users_table


def _scorer(result: ScoringResult | None = None, error: Exception | None = None) -> MagicMock:
    scorer = MagicMock()
    scorer.score = AsyncMock(return_value=result, side_effect=error)
    return scorer


class TestRegistry:
    def test_default_has_one_strategy_per_operator(self):
        registry = StrategyRegistry.default()
        assert {s.operator for s in registry.all_strategies()} == set(OperatorKind)

    def test_resolve_by_enum_and_string(self):
        registry = StrategyRegistry.default()
        assert isinstance(registry.resolve(OperatorKind.ANOMALY), AnomalyStrategy)
        assert isinstance(registry.resolve("clustering"), ClusteringStrategy)

    def test_resolve_returns_the_same_instance(self):
        registry = StrategyRegistry.default()
        assert registry.resolve("association") is registry.resolve(OperatorKind.ASSOCIATION)

    @pytest.mark.parametrize("kind", ["regression", "", None])
    def test_unknown_operator_raises(self, kind):
        with pytest.raises(UnknownOperatorError):
            StrategyRegistry.default().resolve(kind)

    def test_unknown_operator_error_is_a_value_error(self):
        with pytest.raises(ValueError, match="Unknown operator: regression"):
            StrategyRegistry.default().resolve("regression")

    def test_partial_registry_rejects_missing_kinds(self):
        registry = StrategyRegistry({OperatorKind.ASSOCIATION: AssociationStrategy()})
        assert registry.has_strategy("association")
        assert not registry.has_strategy(OperatorKind.ANOMALY)
        with pytest.raises(UnknownOperatorError):
            registry.resolve(OperatorKind.ANOMALY)

    def test_has_strategy_with_garbage(self):
        assert not StrategyRegistry.default().has_strategy("nope")

    def test_registries_are_independent(self):
        scorer = _scorer()
        with_scorer = StrategyRegistry.default(scorer=scorer)
        without = StrategyRegistry.default()
        assert with_scorer.resolve("anomaly") is not without.resolve("anomaly")


class TestCreateStrategy:
    @pytest.mark.parametrize(
        "kind,cls",
        [
            (OperatorKind.ASSOCIATION, AssociationStrategy),
            (OperatorKind.ANOMALY, AnomalyStrategy),
            (OperatorKind.CLUSTERING, ClusteringStrategy),
        ],
    )
    def test_creates_matching_class(self, kind, cls):
        strategy = create_strategy(kind)
        assert isinstance(strategy, cls)
        assert strategy.operator == kind

    def test_unknown_kind(self):
        with pytest.raises(UnknownOperatorError):
            create_strategy("regression")


class TestRequiredNodes:
    def test_required_kinds(self):
        assert AssociationStrategy().required_node_kinds() == [NodeKind.TABLE]
        assert AnomalyStrategy().required_node_kinds() == [NodeKind.TABLE, NodeKind.SELECT]
        assert ClusteringStrategy().required_node_kinds() == [NodeKind.TABLE, NodeKind.SELECT]

    def test_missing_required_kind_comes_first(self):
        nodes = [users_table(), end(operator=OperatorKind.CLUSTERING)]
        diagnostics = ClusteringStrategy().validate(nodes, [])
        assert diagnostics[0].message == MISSING_REQUIRED_NODE.format(kind="select")
        assert diagnostics[0].severity == Severity.ERROR
        assert diagnostics[0].node_id == GRAPH_NODE_ID
        assert diagnostics[1].message == NO_SELECT_NODE

    def test_association_accepts_flow_without_select(self):
        diagnostics = AssociationStrategy().validate([users_table(), end()], [])
        assert [d.severity for d in diagnostics] == [Severity.WARNING]

    def test_valid_flow_passes(self):
        assert AnomalyStrategy().validate(simple_flow(OperatorKind.ANOMALY), []) == []


class TestPostProcess:
    async def test_association_wraps_result_as_table(self):
        raw = QueryResult(rows=[{"id": 1}, {"id": 2}])
        result = await AssociationStrategy().post_process(raw)
        assert result.operator == OperatorKind.ASSOCIATION
        assert result.data is raw
        assert result.visualizations[0].type == "table"
        assert result.visualizations[0].config["columns"] == ["id"]

    async def test_clustering_uses_radar(self):
        result = await ClusteringStrategy().post_process(QueryResult())
        assert result.visualizations[0].type == "radar"

    async def test_anomaly_scores_and_enriches_rows(self):
        raw = QueryResult(
            rows=[
                {"user_id": 1, "amount": 10.0, "name": "a"},
                {"user_id": 2, "amount": 500.0, "name": "b"},
            ]
        )
        scorer = _scorer(
            ScoringResult(row_keys=["1", "2"], scores=[0.1, 0.95], flags=[False, True])
        )
        budget = ScoringBudget(threshold=0.9, use_gpu="disable", timeout_seconds=5)

        result = await AnomalyStrategy(scorer=scorer, budget=budget).post_process(raw)

        scorer.score.assert_awaited_once_with(
            ScoringRequest(row_keys=["1", "2"], features=[[10.0], [500.0]]), budget
        )
        assert result.operator == OperatorKind.ANOMALY
        assert result.data == [
            {"user_id": 1, "amount": 10.0, "name": "a", "anomaly_score": 0.1, "is_anomaly": False},
            {"user_id": 2, "amount": 500.0, "name": "b", "anomaly_score": 0.95, "is_anomaly": True},
        ]
        assert result.insights[0] == "1 of 2 rows flagged as anomalies"
        assert result.visualizations[0].type == "scatter"
        assert result.visualizations[0].config["features"] == ["amount"]

    async def test_anomaly_prefers_declared_numeric_columns(self):
        raw = QueryResult(
            rows=[{"id": "u1", "score": "7", "amount": 3}],
            columns=[
                ResultColumn(name="id", type="VARCHAR"),
                ResultColumn(name="score", type="INTEGER"),
                ResultColumn(name="amount", type="DOUBLE"),
            ],
        )
        scorer = _scorer(ScoringResult(row_keys=["u1"], scores=[0.2], flags=[False]))

        await AnomalyStrategy(scorer=scorer, budget=ScoringBudget()).post_process(raw)

        request = scorer.score.await_args.args[0]
        # "7" is a string at runtime, so it is scored as 0
        assert request.features == [[0.0, 3.0]]

    async def test_anomaly_without_scorer_raises(self):
        with pytest.raises(RuntimeError, match="not configured"):
            await AnomalyStrategy().post_process(QueryResult(rows=[{"id": 1}]))

    async def test_scorer_errors_propagate_unchanged(self):
        error = AnomalyScoringError("gpu unavailable", code="GPU")
        scorer = _scorer(error=error)
        with pytest.raises(AnomalyScoringError) as exc_info:
            await AnomalyStrategy(scorer=scorer, budget=ScoringBudget()).post_process(
                QueryResult(rows=[{"id": 1, "v": 2.0}])
            )
        assert exc_info.value is error
