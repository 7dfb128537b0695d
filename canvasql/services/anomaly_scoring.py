"""Anomaly scoring boundary.

Scoring itself (isolation-forest style) runs outside this package. The anomaly
strategy hands it already-fetched rows as row keys plus a numeric feature
matrix, together with an execution budget, and gets back one score and one
flag per row. The scorer never sees the graph.
"""

import logging
from decimal import Decimal
from numbers import Real
from typing import Any, Literal, Protocol

from pydantic import BaseModel, model_validator

from canvasql.core.config import settings
from canvasql.schemas.query import QueryResult
from canvasql.services.graph_validator import TYPE_CLASSES
from canvasql.services.schema_discovery import map_engine_type

logger = logging.getLogger(__name__)


class AnomalyScoringError(Exception):
    """Typed failure reported by the scoring collaborator."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class ScoringRequest(BaseModel):
    row_keys: list[str]
    features: list[list[float]]


class ScoringBudget(BaseModel):
    threshold: float = 0.8
    use_gpu: Literal["auto", "force", "disable"] = "auto"
    timeout_seconds: float = 60.0


class ScoringResult(BaseModel):
    row_keys: list[str]
    scores: list[float]
    flags: list[bool]

    @model_validator(mode="after")
    def _check_lengths(self) -> "ScoringResult":
        if not len(self.row_keys) == len(self.scores) == len(self.flags):
            raise ValueError("row_keys, scores and flags must have the same length")
        return self


class AnomalyScorer(Protocol):
    async def score(self, request: ScoringRequest, budget: ScoringBudget) -> ScoringResult: ...


def budget_from_settings() -> ScoringBudget:
    return ScoringBudget(
        threshold=settings.anomaly.anomaly_threshold,
        use_gpu=settings.anomaly.anomaly_use_gpu,
        timeout_seconds=settings.anomaly.anomaly_timeout_seconds,
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (Real, Decimal)) and not isinstance(value, bool)


def identify_feature_columns(result: QueryResult, key_column: str) -> list[str]:
    """Numeric columns other than the key.

    Uses the declared column type when there is one, otherwise looks at the
    first row's values.
    """
    numeric = TYPE_CLASSES["numeric"]
    if result.columns:
        declared = [
            c.name
            for c in result.columns
            if c.name != key_column and map_engine_type(c.type) in numeric
        ]
        if declared:
            return declared

    if not result.rows:
        return []
    first_row = result.rows[0]
    return [name for name, value in first_row.items() if name != key_column and _is_number(value)]


def build_scoring_request(
    rows: list[dict[str, Any]], key_column: str, feature_columns: list[str]
) -> ScoringRequest:
    """Convert result rows into row keys and a feature matrix.

    Rows whose key is not a string or number are skipped. Non-numeric feature
    values are scored as 0.
    """
    row_keys: list[str] = []
    features: list[list[float]] = []
    skipped = 0

    for row in rows:
        key = row.get(key_column)
        if isinstance(key, str):
            row_key = key
        elif _is_number(key):
            row_key = str(key)
        else:
            skipped += 1
            continue

        row_keys.append(row_key)
        features.append(
            [float(row[col]) if _is_number(row.get(col)) else 0.0 for col in feature_columns]
        )

    if skipped:
        logger.warning("Skipped %d rows with unusable key column %r", skipped, key_column)
    return ScoringRequest(row_keys=row_keys, features=features)
