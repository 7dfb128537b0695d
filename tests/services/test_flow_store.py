"""Flow store tests: mutation, revalidation contract and UI state."""

from unittest.mock import MagicMock

import pytest
import structlog
from pydantic import ValidationError

from canvasql.schemas.graph import (
    GRAPH_NODE_ID,
    Diagnostic,
    ConditionPatch,
    EndPatch,
    JoinPatch,
    SelectPatch,
    NodeKind,
    OperatorKind,
    Severity,
    TablePatch,
)
from canvasql.services.flow_store import START_NODE_ID, FlowStore
from canvasql.services.graph_validator import (
    CIRCULAR_REFERENCE,
    DUPLICATE_ALIAS,
    MISSING_END,
    NO_TABLE,
    OPERATOR_NOT_SELECTED,
    TABLE_NOT_SELECTED,
)
from canvasql.services.strategies import AssociationStrategy
from factories import condition, edge, end, join, orders_table, select, users_table


def _messages(store: FlowStore) -> list[str]:
    return [d.message for d in store.diagnostics]


@pytest.fixture
def store() -> FlowStore:
    s = FlowStore()
    s.add_node(users_table())
    s.add_node(select("sel", select_all=True))
    s.add_node(end())
    return s


class TestInitialState:
    def test_fresh_store_holds_only_start_node(self):
        s = FlowStore()
        assert [n.id for n in s.nodes] == [START_NODE_ID]
        assert s.nodes[0].kind == NodeKind.START
        assert s.edges == []
        assert s.diagnostics == []
        assert s.operator_type == OperatorKind.ASSOCIATION
        assert s.flow_id.startswith("flow_")
        assert s.selected_node is None

    def test_operator_can_be_injected(self):
        assert FlowStore(operator_type=OperatorKind.CLUSTERING).operator_type == OperatorKind.CLUSTERING


class TestStructuralMutations:
    def test_add_node_runs_full_validation(self):
        s = FlowStore()
        s.add_node(users_table())
        assert MISSING_END in _messages(s)
        assert NO_TABLE not in _messages(s)

    def test_clean_flow_has_no_diagnostics(self, store):
        assert store.diagnostics == []
        assert not store.has_errors
        assert store.end_node.id == "end"

    def test_remove_node_cascades_edges(self, store):
        store.add_edge(edge("start", "users"))
        store.add_edge(edge("users", "sel"))
        store.add_edge(edge("sel", "end"))

        store.remove_node("users")

        assert store.get_node("users") is None
        assert [(e.source, e.target) for e in store.edges] == [("sel", "end")]
        assert NO_TABLE in _messages(store)

    def test_remove_selected_node_clears_selection(self, store):
        store.set_selected_node("users")
        store.remove_node("users")
        assert store.selected_node_id is None
        assert store.detail_panel_open is False

    def test_add_edge_ignores_duplicates(self, store):
        store.add_edge(edge("users", "sel", edge_id="e1"))
        store.add_edge(edge("users", "sel", edge_id="e2"))
        assert [e.id for e in store.edges] == ["e1"]

    def test_add_edge_revalidates(self, store):
        store.add_edge(edge("users", "ghost"))
        assert any("ghost" in m for m in _messages(store))

    def test_remove_edge_revalidates(self, store):
        store.add_edge(edge("users", "sel", edge_id="forward"))
        store.add_edge(edge("sel", "users", edge_id="back"))
        assert CIRCULAR_REFERENCE in _messages(store)

        store.remove_edge("back")

        assert CIRCULAR_REFERENCE not in _messages(store)
        assert [e.id for e in store.edges] == ["forward"]

    def test_set_operator_type_revalidates(self, store):
        store.update_node("end", EndPatch(operator_kind=None))
        store.set_diagnostics([])
        store.set_operator_type(OperatorKind.ANOMALY)
        assert store.operator_type == OperatorKind.ANOMALY
        assert OPERATOR_NOT_SELECTED in _messages(store)


class TestUpdateNode:
    def test_patch_is_a_shallow_merge(self, store):
        store.update_node("users", TablePatch(alias="u"))
        payload = store.get_node("users").payload
        assert payload.alias == "u"
        assert payload.table_name == "users"
        assert [f.name for f in payload.fields] == ["id", "name", "age"]

    def test_only_the_edited_node_is_rechecked(self, store):
        store.remove_node("end")
        graph_level = [d for d in store.diagnostics if d.node_id == GRAPH_NODE_ID]
        assert [d.message for d in graph_level] == [MISSING_END]

        store.update_node("users", TablePatch(table_name=""))

        assert [d for d in store.diagnostics if d.node_id == GRAPH_NODE_ID] == graph_level
        assert [d.message for d in store.diagnostics_for("users")] == [TABLE_NOT_SELECTED]

    def test_fixing_a_node_clears_its_diagnostics(self, store):
        store.update_node("users", TablePatch(table_name=""))
        assert store.has_errors
        store.update_node("users", TablePatch(table_name="users"))
        assert store.diagnostics == []

    def test_duplicate_alias_surfaces_narrowly_then_fully(self, store):
        store.add_node(orders_table("orders", alias="x"))
        store.update_node("users", TablePatch(alias="x"))

        duplicate = DUPLICATE_ALIAS.format(alias="x")
        # Narrow check: only the edited node's diagnostics were replaced
        assert duplicate in [d.message for d in store.diagnostics_for("users")]
        assert duplicate not in [d.message for d in store.diagnostics_for("orders")]

        # Next full mutation reports it against the later table
        store.add_edge(edge("users", "orders"))
        assert [d.node_id for d in store.diagnostics if d.message == duplicate] == ["orders"]

    def test_patch_for_another_kind_is_rejected(self, store):
        with pytest.raises(TypeError):
            store.update_node("users", EndPatch(executing=True))

    def test_patch_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            TablePatch(operator_kind="anomaly")

    def test_unknown_id_is_ignored(self, store):
        before = list(store.nodes)
        store.update_node("missing", TablePatch(alias="x"))
        assert store.nodes == before

    @pytest.mark.parametrize(
        "node_id,patch",
        [
            ("j1", JoinPatch(order=None)),
            ("j1", JoinPatch(join_kind=None)),
            ("c1", ConditionPatch(connective=None)),
            ("c1", ConditionPatch(operator=None)),
            ("users", TablePatch(table_name=None)),
            ("users", TablePatch(fields=None)),
            ("sel", SelectPatch(select_all=None)),
        ],
    )
    def test_none_on_a_required_field_is_rejected(self, node_id, patch):
        s = FlowStore()
        for node in (
            users_table(),
            orders_table(),
            join("j1", "users", "orders", [("users", "id", "orders", "user_id")], order=1),
            condition("c1", "users", "age", ">", 30),
            select("sel", select_all=True),
            end(),
        ):
            s.add_node(node)
        before = s.get_node(node_id)

        with pytest.raises(ValidationError):
            s.update_node(node_id, patch)

        assert s.get_node(node_id) == before
        assert not s.has_errors
        # The graph still compiles after the rejected edit
        assert "INNER JOIN orders" in AssociationStrategy().build_sql(s.nodes, s.edges)

    def test_nullable_fields_accept_none(self, store):
        store.update_node("end", EndPatch(operator_kind=None, result=None))
        assert store.get_node("end").payload.operator_kind is None


class TestUiState:
    def test_selecting_opens_detail_panel(self, store):
        store.set_selected_node("users")
        assert store.detail_panel_open is True
        assert store.selected_node.id == "users"

        store.set_selected_node(None)
        assert store.detail_panel_open is False

    def test_closing_detail_panel_clears_selection(self, store):
        store.set_selected_node("users")
        store.set_detail_panel_open(False)
        assert store.selected_node_id is None

    def test_ui_state_does_not_touch_diagnostics(self, store):
        store.update_node("users", TablePatch(table_name=""))
        before = list(store.diagnostics)
        store.set_selected_node("users")
        store.set_error_panel_open(True)
        store.set_flow_name("Churn review")
        assert store.diagnostics == before
        assert store.flow_name == "Churn review"

    def test_set_diagnostics_opens_error_panel(self, store):
        diagnostic = Diagnostic(
            node_id="users", node_kind=NodeKind.TABLE, message="boom", severity=Severity.WARNING
        )
        store.set_diagnostics([diagnostic])
        assert store.error_panel_open is True
        assert store.diagnostics == [diagnostic]
        assert not store.has_errors

        store.set_diagnostics([])
        assert store.error_panel_open is False

    def test_reset_flow(self, store):
        old_id = store.flow_id
        store.set_flow_name("x")
        store.set_selected_node("users")
        store.reset_flow()
        assert store.flow_id != old_id
        assert store.flow_name == ""
        assert [n.id for n in store.nodes] == [START_NODE_ID]
        assert store.selected_node_id is None
        assert store.diagnostics == []


class TestLogContext:
    def test_revalidation_is_logged_with_flow_and_operator(self, monkeypatch):
        structlog.contextvars.clear_contextvars()
        seen = []
        fake_logger = MagicMock()
        fake_logger.debug.side_effect = lambda event, **kw: seen.append(
            (event, kw["reason"], structlog.contextvars.get_contextvars())
        )
        monkeypatch.setattr("canvasql.services.flow_store.logger", fake_logger)
        s = FlowStore(operator_type=OperatorKind.CLUSTERING)

        s.add_node(users_table())

        assert seen == [
            ("flow_revalidated", "add_node", {"flow_id": s.flow_id, "operator": "clustering"})
        ]
        assert structlog.contextvars.get_contextvars() == {}
