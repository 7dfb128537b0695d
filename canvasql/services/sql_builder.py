"""Clause builders: each turns the graph into one SQL clause fragment.

Builders assume a graph that already passed validation. On an invalid graph
they still return text, but make no promise that it is meaningful SQL.
An empty string means "no clause"; callers drop those.

Several builders only consult the first matching node in node order
(first Select/SelectAgg, first Table, first Condition's connective). That is
existing behavior, kept as is; do not extend it to new node kinds.
"""

from collections.abc import Callable

from canvasql.schemas.graph import (
    ConditionValue,
    Node,
    NodeKind,
    SelectField,
    is_null_check,
)

ClauseBuilder = Callable[[list[Node]], str]


def render_where_value(value: ConditionValue) -> str:
    """Render a WHERE value as SQL text.

    Every scalar is single-quoted whatever its declared type, numbers included,
    and nothing is escaped. Lists render as a parenthesized, comma-separated
    list of quoted values. This is the only place literal quoting happens.
    """
    if isinstance(value, list):
        return "(" + ", ".join(render_where_value(v) for v in value) + ")"
    return f"'{value}'"


def _first(nodes: list[Node], *kinds: NodeKind) -> Node | None:
    return next((n for n in nodes if n.kind in kinds), None)


def _render_projection(field: SelectField) -> str:
    expression = f"{field.table_name}.{field.field_name}"
    if field.aggregate:
        expression = f"{field.aggregate}({expression})"
    if field.alias:
        expression += f" AS {field.alias}"
    return expression


def build_select_clause(nodes: list[Node]) -> str:
    node = _first(nodes, NodeKind.SELECT, NodeKind.SELECT_AGG)
    if node is None:
        return "SELECT *"
    if node.kind == NodeKind.SELECT and node.payload.select_all:
        return "SELECT *"
    if not node.payload.fields:
        return "SELECT *"
    return "SELECT " + ", ".join(_render_projection(f) for f in node.payload.fields)


def build_from_clause(nodes: list[Node]) -> str:
    """FROM the first table only; later tables come in through JOINs."""
    node = _first(nodes, NodeKind.TABLE)
    if node is None:
        return ""
    clause = f"FROM {node.payload.table_name}"
    if node.payload.alias:
        clause += f" AS {node.payload.alias}"
    return clause


def build_join_clauses(nodes: list[Node]) -> str:
    # sorted() is stable: equal `order` values keep node order
    joins = sorted(
        (n for n in nodes if n.kind == NodeKind.JOIN),
        key=lambda n: n.payload.order,
    )
    lines = []
    for node in joins:
        data = node.payload
        on = " AND ".join(
            f"{c.left_table}.{c.left_field} = {c.right_table}.{c.right_field}"
            for c in data.conditions
        )
        lines.append(f"{data.join_kind} JOIN {data.right_table} ON {on}")
    return "\n".join(lines)


def _render_condition(node: Node) -> str:
    data = node.payload
    condition = f"{data.table_name}.{data.field} {data.operator}"
    if not is_null_check(data.operator):
        condition += f" {render_where_value(data.value)}"
    return condition


def build_where_clause(nodes: list[Node]) -> str:
    """All conditions, joined by the first condition's connective."""
    conditions = [n for n in nodes if n.kind == NodeKind.CONDITION]
    if not conditions:
        return ""
    connective = conditions[0].payload.connective.value
    return "WHERE " + f" {connective} ".join(_render_condition(n) for n in conditions)


def build_group_by_clause(nodes: list[Node]) -> str:
    node = _first(nodes, NodeKind.SELECT_AGG)
    if node is None or not node.payload.group_by_fields:
        return ""
    return "GROUP BY " + ", ".join(node.payload.group_by_fields)


def assemble(nodes: list[Node], clauses: tuple[ClauseBuilder, ...]) -> str:
    """Run the builders in order and join the non-empty fragments with newlines."""
    parts = [builder(nodes) for builder in clauses]
    return "\n".join(part for part in parts if part)
