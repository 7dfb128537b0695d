"""Pydantic schemas for query execution results."""

from typing import Any

from pydantic import BaseModel


class ResultColumn(BaseModel):
    name: str
    type: str


class QueryResult(BaseModel):
    """Rows and column schema returned by the query engine."""

    rows: list[dict[str, Any]] = []
    columns: list[ResultColumn] = []

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def column_names(self) -> list[str]:
        if self.columns:
            return [c.name for c in self.columns]
        return list(self.rows[0].keys()) if self.rows else []
