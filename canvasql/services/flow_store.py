"""Flow Store: the single owner and mutator of one in-progress canvas graph.

Every structural mutation (add/remove node, add/remove edge, operator change)
re-runs full graph validation and replaces the diagnostic list wholesale.
update_node() is the narrow path: it patches one payload, re-checks only that
node, and swaps out just that node's diagnostics. Cross-node problems caused by
a local edit surface on the next structural mutation.

Calls are expected to be serialized by the owner; there is no locking.
"""

from uuid import uuid4

import structlog

from canvasql.core.config import settings
from canvasql.core.logging_config import flow_context
from canvasql.schemas.graph import (
    Diagnostic,
    Edge,
    Node,
    NodeKind,
    NodePatch,
    OperatorKind,
    Position,
    StartPayload,
    apply_patch,
)
from canvasql.services.graph_validator import has_errors, validate_graph, validate_node

logger = structlog.stdlib.get_logger(__name__)

START_NODE_ID = "start"


def _new_flow_id() -> str:
    return f"flow_{uuid4().hex[:12]}"


def _start_node() -> Node:
    return Node(id=START_NODE_ID, position=Position(x=400, y=300), payload=StartPayload())


class FlowStore:
    """Graph state plus the derived diagnostics and a little UI state."""

    def __init__(self, operator_type: OperatorKind | None = None):
        self._initial_operator = operator_type or OperatorKind(settings.compiler.default_operator)
        self._reset()

    def _reset(self) -> None:
        self.flow_id: str = _new_flow_id()
        self.flow_name: str = ""
        self.operator_type: OperatorKind = self._initial_operator
        self.nodes: list[Node] = [_start_node()]
        self.edges: list[Edge] = []
        self.selected_node_id: str | None = None
        self.detail_panel_open: bool = False
        self.error_panel_open: bool = False
        self.diagnostics: list[Diagnostic] = []

    # ── Queries ──────────────────────────────────────────────────────────

    def get_node(self, node_id: str) -> Node | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    @property
    def selected_node(self) -> Node | None:
        if self.selected_node_id is None:
            return None
        return self.get_node(self.selected_node_id)

    @property
    def end_node(self) -> Node | None:
        return next((n for n in self.nodes if n.kind == NodeKind.END), None)

    @property
    def has_errors(self) -> bool:
        return has_errors(self.diagnostics)

    def diagnostics_for(self, node_id: str) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.node_id == node_id]

    # ── Graph mutations ──────────────────────────────────────────────────

    def _revalidate(self, reason: str) -> None:
        with flow_context(flow_id=self.flow_id, operator=self.operator_type):
            self.diagnostics = validate_graph(self.nodes, self.edges)
            logger.debug(
                "flow_revalidated",
                reason=reason,
                diagnostic_count=len(self.diagnostics),
            )

    def add_node(self, node: Node) -> None:
        self.nodes.append(node)
        self._revalidate("add_node")

    def update_node(self, node_id: str, patch: NodePatch) -> None:
        """Shallow-merge ``patch`` into the node's payload and re-check that node only.

        Unknown ids are ignored. A patch for another node kind raises TypeError, and
        one that sets a required field to None raises ValidationError; either way the
        node is left as it was.
        """
        for index, node in enumerate(self.nodes):
            if node.id == node_id:
                break
        else:
            return

        updated = node.model_copy(update={"payload": apply_patch(node.payload, patch)})
        self.nodes[index] = updated

        with flow_context(flow_id=self.flow_id, operator=self.operator_type):
            node_diagnostics = validate_node(updated, self.nodes, self.edges)
        self.diagnostics = [d for d in self.diagnostics if d.node_id != node_id] + node_diagnostics

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge touching it."""
        self.nodes = [n for n in self.nodes if n.id != node_id]
        self.edges = [e for e in self.edges if e.source != node_id and e.target != node_id]
        if self.selected_node_id == node_id:
            self.selected_node_id = None
            self.detail_panel_open = False
        self._revalidate("remove_node")

    def add_edge(self, edge: Edge) -> None:
        """Add an edge unless one with the same source and target already exists."""
        exists = any(e.source == edge.source and e.target == edge.target for e in self.edges)
        if not exists:
            self.edges.append(edge)
        self._revalidate("add_edge")

    def remove_edge(self, edge_id: str) -> None:
        self.edges = [e for e in self.edges if e.id != edge_id]
        self._revalidate("remove_edge")

    # ── Flow-level state ─────────────────────────────────────────────────

    def set_flow_name(self, name: str) -> None:
        self.flow_name = name

    def set_operator_type(self, operator_type: OperatorKind) -> None:
        self.operator_type = OperatorKind(operator_type)
        self._revalidate("set_operator_type")

    def set_diagnostics(self, diagnostics: list[Diagnostic]) -> None:
        """Replace diagnostics from outside; the error panel opens when any are present."""
        self.diagnostics = list(diagnostics)
        self.error_panel_open = bool(diagnostics)

    def reset_flow(self) -> None:
        """Back to a fresh flow holding only the Start node."""
        self._reset()
        logger.info("flow_reset", flow_id=self.flow_id)

    # ── UI state ─────────────────────────────────────────────────────────

    def set_selected_node(self, node_id: str | None) -> None:
        self.selected_node_id = node_id
        self.detail_panel_open = node_id is not None

    def set_detail_panel_open(self, open: bool) -> None:
        self.detail_panel_open = open
        if not open:
            self.selected_node_id = None

    def set_error_panel_open(self, open: bool) -> None:
        self.error_panel_open = open
