"""Schema discovery: turns engine column metadata into Table node payloads.

Table payloads must carry their field list before validation runs. This module
does not decide where schemas come from: a SchemaProvider does. The bundled
DescribeSchemaProvider asks the query engine to DESCRIBE a table.
"""

import logging
from typing import Any, Protocol

from canvasql.schemas.graph import FieldType, TablePayload, TableField
from canvasql.services.query_engine import QueryEngine

logger = logging.getLogger(__name__)


# Checked in order: the first matching fragment wins
_TYPE_FRAGMENTS: tuple[tuple[str, FieldType], ...] = (
    ("BIGINT", FieldType.BIGINT),
    ("SMALLINT", FieldType.SMALLINT),
    ("TINYINT", FieldType.TINYINT),
    ("INTEGER", FieldType.INTEGER),
    ("DECIMAL", FieldType.DECIMAL),
    ("NUMERIC", FieldType.DECIMAL),
    ("REAL", FieldType.REAL),
    ("DOUBLE", FieldType.DOUBLE),
    ("FLOAT", FieldType.DOUBLE),
    ("VARCHAR", FieldType.VARCHAR),
    ("TEXT", FieldType.TEXT),
    ("CHAR", FieldType.CHAR),
    ("TIMESTAMP", FieldType.TIMESTAMP),
    ("DATETIME", FieldType.TIMESTAMP),
    ("DATE", FieldType.DATE),
    ("TIME", FieldType.TIME),
    ("BOOLEAN", FieldType.BOOLEAN),
    ("BLOB", FieldType.BLOB),
    ("BYTEA", FieldType.BLOB),
    ("JSON", FieldType.JSON),
    ("UUID", FieldType.UUID),
    ("ARRAY", FieldType.ARRAY),
    ("LIST", FieldType.ARRAY),
    ("[]", FieldType.ARRAY),
)

_EXACT_TYPES = {"INT": FieldType.INTEGER, "BOOL": FieldType.BOOLEAN}


def map_engine_type(engine_type: str) -> FieldType:
    """Map an engine type string (e.g. ``DECIMAL(10,2)``, ``VARCHAR``) to a FieldType."""
    t = engine_type.upper().strip()
    if t in _EXACT_TYPES:
        return _EXACT_TYPES[t]
    # Array types may wrap a scalar type name, e.g. "INTEGER[]"
    if t.endswith("[]"):
        return FieldType.ARRAY
    for fragment, field_type in _TYPE_FRAGMENTS:
        if fragment in t:
            return field_type
    return FieldType.UNKNOWN


def _first_present(row: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return default


def field_from_describe_row(row: dict[str, Any]) -> TableField:
    """Build a TableField from one DESCRIBE row, tolerating engine column naming."""
    nullable_flag = _first_present(row, "null", "nullable", "Null", default="YES")
    return TableField(
        name=str(_first_present(row, "column_name", "Column", "col_name", "column", default="unknown")),
        type=map_engine_type(str(_first_present(row, "column_type", "Type", "col_type", "type", default="UNKNOWN"))),
        nullable=nullable_flag not in ("NO", False),
    )


def table_payload_from_schema(
    table_name: str, fields: list[TableField], alias: str = ""
) -> TablePayload:
    return TablePayload(table_name=table_name, fields=fields, alias=alias)


class SchemaProvider(Protocol):
    async def describe_table(self, table_name: str) -> list[TableField]: ...


class DescribeSchemaProvider:
    """SchemaProvider backed by the query engine's DESCRIBE statement."""

    def __init__(self, engine: QueryEngine):
        self._engine = engine

    async def describe_table(self, table_name: str) -> list[TableField]:
        result = await self._engine.execute(f'DESCRIBE "{table_name}"')
        fields = [field_from_describe_row(row) for row in result.rows]
        logger.info("Discovered %d fields for table %s", len(fields), table_name)
        return fields

    async def table_payload(self, table_name: str, alias: str = "") -> TablePayload:
        fields = await self.describe_table(table_name)
        return table_payload_from_schema(table_name, fields, alias)
