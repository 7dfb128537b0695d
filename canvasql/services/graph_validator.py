"""Graph Validator: static checks over a canvas graph.

validate_graph() runs every rule checker over the whole graph, in a fixed order,
and concatenates the diagnostics. validate_node() is the narrow variant the flow
store uses after an in-place payload edit: it only re-checks the edited node.

Invalid graphs are reported as Diagnostic records. Nothing here raises for bad
user data.
"""

import time
from collections.abc import Callable

import structlog

from canvasql.core.metrics import (
    graph_validation_duration_seconds,
    validation_diagnostics_total,
)
from canvasql.schemas.graph import (
    GRAPH_NODE_ID,
    Diagnostic,
    Edge,
    FieldType,
    JoinKind,
    Node,
    NodeKind,
    Severity,
    TableField,
    ValidationResult,
    is_null_check,
)

logger = structlog.stdlib.get_logger(__name__)

# Rule checker: (nodes, edges) -> diagnostics
GraphRule = Callable[[list[Node], list[Edge]], list[Diagnostic]]
# Narrow checker: (node, all_nodes, all_edges) -> diagnostics about that node
NodeCheck = Callable[[Node, list[Node], list[Edge]], list[Diagnostic]]


NO_TABLE = "Add at least one table to the flow"
MISSING_END = "Flow has no end node"
MULTIPLE_END = "Flow can only have one end node"
TABLE_NOT_SELECTED = "Select a data source table"
TABLE_HAS_NO_FIELDS = "Table has no fields"
DUPLICATE_ALIAS = 'Table alias "{alias}" is already used'
NO_JOIN_FOR_MULTIPLE_TABLES = "Multiple tables require a JOIN"
JOIN_CONDITION_EMPTY = "Configure at least one JOIN condition"
JOIN_LEFT_TABLE_MISSING = 'JOIN condition {index}: left table "{table}" does not exist'
JOIN_RIGHT_TABLE_MISSING = 'JOIN condition {index}: right table "{table}" does not exist'
JOIN_LEFT_FIELD_MISSING = 'JOIN condition {index}: left field "{field}" does not exist'
JOIN_RIGHT_FIELD_MISSING = 'JOIN condition {index}: right field "{field}" does not exist'
TYPE_MISMATCH = "JOIN condition {index}: field types do not match ({left} vs {right})"
INVALID_JOIN_KIND = "Invalid JOIN type: {kind}"
CONDITION_TABLE_EMPTY = "Select a table for the condition"
CONDITION_TABLE_MISSING = 'Table "{table}" does not exist'
CONDITION_FIELD_EMPTY = "Select a field for the condition"
CONDITION_FIELD_MISSING = 'Field "{field}" does not exist'
CONDITION_OPERATOR_EMPTY = "Select an operator"
CONDITION_VALUE_EMPTY = "Enter a value for the condition"
SELECT_FIELD_EMPTY = "Select at least one field"
NO_SELECT_NODE = "Flow has no select node"
OPERATOR_NOT_SELECTED = "Select an analysis operator"
CIRCULAR_REFERENCE = "Flow contains a circular reference"
EDGE_SOURCE_MISSING = "Edge source node does not exist: {node_id}"
EDGE_TARGET_MISSING = "Edge target node does not exist: {node_id}"

# Join fields only need to share a type class, not an exact type
TYPE_CLASSES: dict[str, frozenset[FieldType]] = {
    "numeric": frozenset(
        {
            FieldType.INTEGER,
            FieldType.BIGINT,
            FieldType.SMALLINT,
            FieldType.TINYINT,
            FieldType.DECIMAL,
            FieldType.NUMERIC,
            FieldType.REAL,
            FieldType.DOUBLE,
        }
    ),
    "string": frozenset({FieldType.VARCHAR, FieldType.TEXT, FieldType.CHAR}),
    "temporal": frozenset({FieldType.DATE, FieldType.TIMESTAMP, FieldType.TIME}),
}


def are_types_compatible(left: FieldType, right: FieldType) -> bool:
    """Identical types, or two types from the same type class."""
    if left == right:
        return True
    return any(left in members and right in members for members in TYPE_CLASSES.values())


# ── Helpers ──────────────────────────────────────────────────────────────


def _error(node: Node, message: str) -> Diagnostic:
    return Diagnostic(
        node_id=node.id, node_kind=node.kind, message=message, severity=Severity.ERROR
    )


def _graph_diagnostic(message: str, severity: Severity = Severity.ERROR) -> Diagnostic:
    return Diagnostic(
        node_id=GRAPH_NODE_ID, node_kind=NodeKind.END, message=message, severity=severity
    )


def _of_kind(nodes: list[Node], *kinds: NodeKind) -> list[Node]:
    return [n for n in nodes if n.kind in kinds]


def _find_table(tables: list[Node], table_name: str) -> Node | None:
    return next((t for t in tables if t.payload.table_name == table_name), None)


def _find_field(table: Node, field_name: str) -> TableField | None:
    return next((f for f in table.payload.fields if f.name == field_name), None)


def _is_blank(value: str | None) -> bool:
    return not value or not value.strip()


# ── Per-node checks ──────────────────────────────────────────────────────


def _table_completeness(node: Node) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    if _is_blank(node.payload.table_name):
        diagnostics.append(_error(node, TABLE_NOT_SELECTED))
    if not node.payload.fields:
        diagnostics.append(_error(node, TABLE_HAS_NO_FIELDS))
    return diagnostics


def _join_diagnostics(node: Node, tables: list[Node]) -> list[Diagnostic]:
    data = node.payload
    if not data.conditions:
        return [_error(node, JOIN_CONDITION_EMPTY)]

    diagnostics: list[Diagnostic] = []
    for index, condition in enumerate(data.conditions, start=1):
        left_table = _find_table(tables, condition.left_table)
        right_table = _find_table(tables, condition.right_table)

        if left_table is None:
            diagnostics.append(
                _error(node, JOIN_LEFT_TABLE_MISSING.format(index=index, table=condition.left_table))
            )
        if right_table is None:
            diagnostics.append(
                _error(node, JOIN_RIGHT_TABLE_MISSING.format(index=index, table=condition.right_table))
            )
        if left_table is None or right_table is None:
            continue

        left_field = _find_field(left_table, condition.left_field)
        right_field = _find_field(right_table, condition.right_field)

        if left_field is None:
            diagnostics.append(
                _error(node, JOIN_LEFT_FIELD_MISSING.format(index=index, field=condition.left_field))
            )
        if right_field is None:
            diagnostics.append(
                _error(node, JOIN_RIGHT_FIELD_MISSING.format(index=index, field=condition.right_field))
            )
        if left_field is not None and right_field is not None:
            if not are_types_compatible(left_field.type, right_field.type):
                diagnostics.append(
                    _error(
                        node,
                        TYPE_MISMATCH.format(
                            index=index,
                            left=left_field.type.value,
                            right=right_field.type.value,
                        ),
                    )
                )

    if data.join_kind not in {k.value for k in JoinKind}:
        diagnostics.append(_error(node, INVALID_JOIN_KIND.format(kind=data.join_kind)))

    return diagnostics


def _condition_diagnostics(node: Node, tables: list[Node]) -> list[Diagnostic]:
    data = node.payload

    if _is_blank(data.table_name):
        return [_error(node, CONDITION_TABLE_EMPTY)]
    table = _find_table(tables, data.table_name)
    if table is None:
        return [_error(node, CONDITION_TABLE_MISSING.format(table=data.table_name))]

    if _is_blank(data.field):
        return [_error(node, CONDITION_FIELD_EMPTY)]
    if _find_field(table, data.field) is None:
        return [_error(node, CONDITION_FIELD_MISSING.format(field=data.field))]

    diagnostics: list[Diagnostic] = []
    if _is_blank(data.operator):
        diagnostics.append(_error(node, CONDITION_OPERATOR_EMPTY))
    if not is_null_check(data.operator) and data.value in (None, "", []):
        diagnostics.append(_error(node, CONDITION_VALUE_EMPTY))
    return diagnostics


def _select_diagnostics(node: Node) -> list[Diagnostic]:
    data = node.payload
    if node.kind == NodeKind.SELECT and data.select_all:
        return []
    if not data.fields:
        return [_error(node, SELECT_FIELD_EMPTY)]
    return []


def _end_diagnostics(node: Node) -> list[Diagnostic]:
    if node.payload.operator_kind is None:
        return [_error(node, OPERATOR_NOT_SELECTED)]
    return []


# ── Graph rules (run in this order) ──────────────────────────────────────


def check_required_nodes(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    if not _of_kind(nodes, NodeKind.TABLE):
        diagnostics.append(_graph_diagnostic(NO_TABLE))

    end_count = len(_of_kind(nodes, NodeKind.END))
    if end_count == 0:
        diagnostics.append(_graph_diagnostic(MISSING_END))
    elif end_count > 1:
        diagnostics.append(_graph_diagnostic(MULTIPLE_END))
    return diagnostics


def check_tables(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    seen_aliases: set[str] = set()
    for node in _of_kind(nodes, NodeKind.TABLE):
        diagnostics.extend(_table_completeness(node))
        alias = node.payload.alias
        if alias:
            if alias in seen_aliases:
                diagnostics.append(_error(node, DUPLICATE_ALIAS.format(alias=alias)))
            seen_aliases.add(alias)
    return diagnostics


def check_joins(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    tables = _of_kind(nodes, NodeKind.TABLE)
    joins = _of_kind(nodes, NodeKind.JOIN)

    diagnostics: list[Diagnostic] = []
    if len(tables) > 1 and not joins:
        diagnostics.append(_graph_diagnostic(NO_JOIN_FOR_MULTIPLE_TABLES))
    for node in joins:
        diagnostics.extend(_join_diagnostics(node, tables))
    return diagnostics


def check_conditions(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    tables = _of_kind(nodes, NodeKind.TABLE)
    diagnostics: list[Diagnostic] = []
    for node in _of_kind(nodes, NodeKind.CONDITION):
        diagnostics.extend(_condition_diagnostics(node, tables))
    return diagnostics


def check_selects(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    selects = _of_kind(nodes, NodeKind.SELECT, NodeKind.SELECT_AGG)
    if not selects:
        return [_graph_diagnostic(NO_SELECT_NODE, Severity.WARNING)]
    diagnostics: list[Diagnostic] = []
    for node in selects:
        diagnostics.extend(_select_diagnostics(node))
    return diagnostics


def check_end_node(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    # Missing / duplicate end nodes are reported by check_required_nodes
    ends = _of_kind(nodes, NodeKind.END)
    if not ends:
        return []
    return _end_diagnostics(ends[0])


def _has_cycle(node_ids: list[str], adjacency: dict[str, list[str]]) -> bool:
    """Iterative DFS with a recursion stack, started from every node."""
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in node_ids:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(adjacency.get(root, ())))]

        while stack:
            current, neighbors = stack[-1]
            for neighbor in neighbors:
                if neighbor in on_stack:
                    return True
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    stack.append((neighbor, iter(adjacency.get(neighbor, ()))))
                    break
            else:
                stack.pop()
                on_stack.discard(current)

    return False


def check_cycles(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    adjacency: dict[str, list[str]] = {n.id: [] for n in nodes}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge.target)

    if _has_cycle([n.id for n in nodes], adjacency):
        return [_graph_diagnostic(CIRCULAR_REFERENCE)]
    return []


def check_edges(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    node_ids = {n.id for n in nodes}
    diagnostics: list[Diagnostic] = []
    for edge in edges:
        if edge.source not in node_ids:
            diagnostics.append(_graph_diagnostic(EDGE_SOURCE_MISSING.format(node_id=edge.source)))
        if edge.target not in node_ids:
            diagnostics.append(_graph_diagnostic(EDGE_TARGET_MISSING.format(node_id=edge.target)))
    return diagnostics


GRAPH_RULES: tuple[GraphRule, ...] = (
    check_required_nodes,
    check_tables,
    check_joins,
    check_conditions,
    check_selects,
    check_end_node,
    check_cycles,
    check_edges,
)


# ── Narrow node checks ───────────────────────────────────────────────────

_node_checks: dict[NodeKind, NodeCheck] = {}


def register_node_check(*kinds: NodeKind) -> Callable:
    """Decorator to register the narrow check used by validate_node() for node kinds."""

    def decorator(fn: NodeCheck) -> NodeCheck:
        for kind in kinds:
            _node_checks[kind] = fn
        return fn

    return decorator


@register_node_check(NodeKind.TABLE)
def _check_table_node(node: Node, all_nodes: list[Node], all_edges: list[Edge]) -> list[Diagnostic]:
    """Completeness, plus alias collision against every other table."""
    diagnostics = _table_completeness(node)
    alias = node.payload.alias
    if alias and any(
        other.id != node.id and other.payload.alias == alias
        for other in _of_kind(all_nodes, NodeKind.TABLE)
    ):
        diagnostics.append(_error(node, DUPLICATE_ALIAS.format(alias=alias)))
    return diagnostics


@register_node_check(NodeKind.JOIN)
def _check_join_node(node: Node, all_nodes: list[Node], all_edges: list[Edge]) -> list[Diagnostic]:
    return _join_diagnostics(node, _of_kind(all_nodes, NodeKind.TABLE))


@register_node_check(NodeKind.CONDITION)
def _check_condition_node(
    node: Node, all_nodes: list[Node], all_edges: list[Edge]
) -> list[Diagnostic]:
    return _condition_diagnostics(node, _of_kind(all_nodes, NodeKind.TABLE))


@register_node_check(NodeKind.SELECT, NodeKind.SELECT_AGG)
def _check_select_node(node: Node, all_nodes: list[Node], all_edges: list[Edge]) -> list[Diagnostic]:
    return _select_diagnostics(node)


@register_node_check(NodeKind.END)
def _check_end_node(node: Node, all_nodes: list[Node], all_edges: list[Edge]) -> list[Diagnostic]:
    return _end_diagnostics(node)


# ── Public API ───────────────────────────────────────────────────────────


def _record(scope: str, start: float, diagnostics: list[Diagnostic]) -> None:
    graph_validation_duration_seconds.labels(scope=scope).observe(time.perf_counter() - start)
    for diagnostic in diagnostics:
        validation_diagnostics_total.labels(severity=diagnostic.severity.value).inc()


def validate_graph(nodes: list[Node], edges: list[Edge]) -> list[Diagnostic]:
    """Run every graph rule and return the concatenated diagnostics."""
    start = time.perf_counter()

    diagnostics: list[Diagnostic] = []
    for rule in GRAPH_RULES:
        diagnostics.extend(rule(nodes, edges))

    _record("graph", start, diagnostics)
    logger.debug(
        "graph_validated",
        node_count=len(nodes),
        edge_count=len(edges),
        error_count=sum(1 for d in diagnostics if d.is_error),
        warning_count=sum(1 for d in diagnostics if not d.is_error),
    )
    return diagnostics


def validate_node(node: Node, all_nodes: list[Node], all_edges: list[Edge]) -> list[Diagnostic]:
    """Re-check a single node. Cross-node rules about other nodes are not re-run.

    Start and condition-group nodes have no checks and always return [].
    """
    start = time.perf_counter()
    check = _node_checks.get(node.kind)
    diagnostics = check(node, all_nodes, all_edges) if check else []
    _record("node", start, diagnostics)
    return diagnostics


def summarize(diagnostics: list[Diagnostic]) -> ValidationResult:
    """Split diagnostics by severity. A graph is valid when it has no errors."""
    errors = [d for d in diagnostics if d.severity == Severity.ERROR]
    warnings = [d for d in diagnostics if d.severity == Severity.WARNING]
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def has_errors(diagnostics: list[Diagnostic]) -> bool:
    return any(d.is_error for d in diagnostics)
