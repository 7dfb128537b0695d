"""Query engine boundary.

The engine that actually runs SQL lives outside this package. Anything with an
async ``execute(sql) -> QueryResult`` method can be plugged in. Failures raised
by the engine are passed up untouched; nothing here retries or wraps them.
Cancellation and timeouts belong to the caller (``asyncio.timeout`` etc.).
"""

from typing import Protocol

from canvasql.schemas.query import QueryResult


class QueryEngine(Protocol):
    async def execute(self, sql: str) -> QueryResult: ...
