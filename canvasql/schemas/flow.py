"""Request/response schemas for the flow endpoints."""

from pydantic import BaseModel

from canvasql.schemas.graph import Diagnostic, Edge, Node, OperatorKind


class FlowGraphRequest(BaseModel):
    nodes: list[Node]
    edges: list[Edge] = []


class CompileRequest(FlowGraphRequest):
    # Falls back to the End node's operator, then the configured default
    operator: str | None = None


class CompileResponse(BaseModel):
    operator: OperatorKind
    sql: str
    diagnostics: list[Diagnostic] = []
    suggestions: list[str] = []
    optimized_sql: str | None = None
    complexity: int | None = None
