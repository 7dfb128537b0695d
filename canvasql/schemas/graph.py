"""Pydantic schemas for the canvas graph: nodes, edges, payloads and diagnostics.

Every node kind has its own payload model, discriminated by ``kind``. A node's
kind is read from its payload, so it cannot drift after creation. In-place edits
go through the per-kind ``*Patch`` models, which only accept that kind's fields.
"""

import enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field


class NodeKind(str, enum.Enum):
    START = "start"
    TABLE = "table"
    JOIN = "join"
    CONDITION = "condition"
    CONDITION_GROUP = "condition_group"
    SELECT = "select"
    SELECT_AGG = "select_agg"
    END = "end"


class JoinKind(str, enum.Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    CROSS = "CROSS"


class OperatorKind(str, enum.Enum):
    ASSOCIATION = "association"
    ANOMALY = "anomaly"
    CLUSTERING = "clustering"


class Connective(str, enum.Enum):
    AND = "AND"
    OR = "OR"


class Severity(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"


class FieldType(str, enum.Enum):
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    SMALLINT = "SMALLINT"
    TINYINT = "TINYINT"
    DECIMAL = "DECIMAL"
    NUMERIC = "NUMERIC"
    REAL = "REAL"
    DOUBLE = "DOUBLE"
    VARCHAR = "VARCHAR"
    TEXT = "TEXT"
    CHAR = "CHAR"
    TIMESTAMP = "TIMESTAMP"
    DATE = "DATE"
    TIME = "TIME"
    BOOLEAN = "BOOLEAN"
    BLOB = "BLOB"
    JSON = "JSON"
    UUID = "UUID"
    ARRAY = "ARRAY"
    UNKNOWN = "UNKNOWN"


AggregateFunction = Literal["SUM", "COUNT", "AVG", "MIN", "MAX"]

# Condition operator vocabulary, grouped the way the canvas presents it
COMPARISON_OPERATORS = ("=", "!=", ">", ">=", "<", "<=")
STRING_OPERATORS = ("LIKE", "NOT LIKE", "STARTS WITH", "ENDS WITH")
NULL_OPERATORS = ("IS NULL", "IS NOT NULL")
SET_OPERATORS = ("IN", "NOT IN")


def is_null_check(operator: str) -> bool:
    """Null-check operators take no value."""
    return "NULL" in operator.upper()


# ── Base types ───────────────────────────────────────────────────────────


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class TableField(BaseModel):
    name: str
    type: FieldType = FieldType.UNKNOWN
    nullable: bool = True


class JoinCondition(BaseModel):
    left_table: str
    left_field: str
    right_table: str
    right_field: str


class SelectField(BaseModel):
    table_name: str
    field_name: str
    alias: str | None = None
    aggregate: AggregateFunction | None = None


ConditionValue = str | int | float | list[str] | None


# ── Diagnostics & results ────────────────────────────────────────────────

# Node id used for diagnostics that concern the graph as a whole
GRAPH_NODE_ID = "flow"


class Diagnostic(BaseModel):
    node_id: str
    node_kind: NodeKind
    message: str
    severity: Severity

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


class ValidationResult(BaseModel):
    valid: bool
    errors: list[Diagnostic]
    warnings: list[Diagnostic]


class Visualization(BaseModel):
    type: Literal["scatter", "radar", "table"]
    config: dict[str, Any] = {}


class AnalysisResult(BaseModel):
    operator: OperatorKind
    sql: str = ""
    data: Any = None
    insights: list[str] = []
    visualizations: list[Visualization] = []


# ── Payloads ─────────────────────────────────────────────────────────────


class _Payload(BaseModel):
    label: str | None = None
    description: str | None = None


class StartPayload(_Payload):
    kind: Literal["start"] = "start"
    selected_table: str | None = None


class TablePayload(_Payload):
    kind: Literal["table"] = "table"
    table_name: str = ""
    fields: list[TableField] = []
    alias: str = ""
    expanded: bool = True


class JoinPayload(_Payload):
    kind: Literal["join"] = "join"
    # Plain string so an unknown kind can be reported as a diagnostic
    join_kind: str = JoinKind.INNER.value
    left_table: str = ""
    right_table: str = ""
    conditions: list[JoinCondition] = []
    order: int = 0


class ConditionPayload(_Payload):
    kind: Literal["condition"] = "condition"
    table_name: str = ""
    field: str = ""
    operator: str = ""
    value: ConditionValue = None
    connective: Connective = Connective.AND


class ConditionGroupPayload(_Payload):
    kind: Literal["condition_group"] = "condition_group"
    connective: Connective = Connective.AND
    condition_ids: list[str] = []


class SelectPayload(_Payload):
    kind: Literal["select"] = "select"
    select_all: bool = False
    fields: list[SelectField] = []


class SelectAggPayload(_Payload):
    kind: Literal["select_agg"] = "select_agg"
    fields: list[SelectField] = []
    group_by_fields: list[str] = []


class EndPayload(_Payload):
    kind: Literal["end"] = "end"
    operator_kind: OperatorKind | None = None
    errors: list[Diagnostic] = []
    executing: bool = False
    result: AnalysisResult | None = None


NodePayload = Annotated[
    StartPayload
    | TablePayload
    | JoinPayload
    | ConditionPayload
    | ConditionGroupPayload
    | SelectPayload
    | SelectAggPayload
    | EndPayload,
    Field(discriminator="kind"),
]


class Node(BaseModel):
    id: str
    position: Position = Position()
    payload: NodePayload

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.payload.kind)


class Edge(BaseModel):
    id: str
    source: str
    target: str


# ── Patches ──────────────────────────────────────────────────────────────


class _Patch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[NodeKind]

    label: str | None = None
    description: str | None = None


class StartPatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.START
    selected_table: str | None = None


class TablePatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.TABLE
    table_name: str | None = None
    fields: list[TableField] | None = None
    alias: str | None = None
    expanded: bool | None = None


class JoinPatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.JOIN
    join_kind: str | None = None
    left_table: str | None = None
    right_table: str | None = None
    conditions: list[JoinCondition] | None = None
    order: int | None = None


class ConditionPatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.CONDITION
    table_name: str | None = None
    field: str | None = None
    operator: str | None = None
    value: ConditionValue = None
    connective: Connective | None = None


class ConditionGroupPatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.CONDITION_GROUP
    connective: Connective | None = None
    condition_ids: list[str] | None = None


class SelectPatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.SELECT
    select_all: bool | None = None
    fields: list[SelectField] | None = None


class SelectAggPatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.SELECT_AGG
    fields: list[SelectField] | None = None
    group_by_fields: list[str] | None = None


class EndPatch(_Patch):
    kind: ClassVar[NodeKind] = NodeKind.END
    operator_kind: OperatorKind | None = None
    errors: list[Diagnostic] | None = None
    executing: bool | None = None
    result: AnalysisResult | None = None


NodePatch = (
    StartPatch
    | TablePatch
    | JoinPatch
    | ConditionPatch
    | ConditionGroupPatch
    | SelectPatch
    | SelectAggPatch
    | EndPatch
)


def apply_patch(payload: _Payload, patch: _Patch) -> _Payload:
    """Shallow-merge the fields explicitly set on ``patch`` into a copy of ``payload``.

    The merged payload is validated again, so a patch that sets a required field
    to None raises pydantic.ValidationError. Raises TypeError when the patch
    belongs to a different node kind.
    """
    if patch.kind != payload.kind:
        raise TypeError(
            f"{type(patch).__name__} cannot patch a {payload.kind} node"
        )
    update = {name: getattr(patch, name) for name in patch.model_fields_set}
    return type(payload).model_validate({**payload.model_dump(), **update})
