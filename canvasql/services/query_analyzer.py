"""Query Analyzer: static hints about generated SQL.

Parses SQL with SQLGlot and reports:
- optimization suggestions (SELECT *, unbounded result sets, many JOINs, OR in WHERE)
- a 0-100 complexity score
- a LIMIT-capped rewrite for unbounded, non-aggregated SELECTs

Unparseable SQL raises a sqlglot error (ParseError, TokenError); callers decide
what to do.
"""

from dataclasses import dataclass, field

import sqlglot
from sqlglot import exp

from canvasql.core.config import settings

DIALECT = "duckdb"

SUGGEST_EXPLICIT_COLUMNS = "Select the columns you need instead of SELECT *"
SUGGEST_BOUND_RESULT = "Add a WHERE condition or LIMIT to bound the result set"
SUGGEST_INDEX_JOINS = "Queries with many JOINs are slow unless the join fields are indexed"
SUGGEST_AVOID_OR = "OR conditions can force a full scan; consider IN or UNION instead"
SUGGEST_LARGE_RESULT = "Large result ({rows} rows): add a WHERE condition or LIMIT to bound it"


@dataclass
class QueryAnalysis:
    optimized: str
    suggestions: list[str] = field(default_factory=list)


def _parse(sql: str) -> exp.Expression:
    return sqlglot.parse_one(sql, read=DIALECT)


def _selects_star(tree: exp.Expression) -> bool:
    if not isinstance(tree, exp.Select):
        return False
    return any(
        isinstance(e, exp.Star) or (isinstance(e, exp.Column) and isinstance(e.this, exp.Star))
        for e in tree.expressions
    )


def _is_aggregated(tree: exp.Expression) -> bool:
    return tree.args.get("group") is not None or tree.find(exp.AggFunc) is not None


def _join_count(tree: exp.Expression) -> int:
    return sum(1 for _ in tree.find_all(exp.Join))


def add_safe_limit(sql: str, limit: int | None = None) -> str:
    """Cap a SELECT with LIMIT unless it already has one or aggregates.

    Anything that is not a plain SELECT (UNION, DESCRIBE, ...) is returned unchanged.
    """
    tree = _parse(sql)
    if not isinstance(tree, exp.Select):
        return sql
    if tree.args.get("limit") is not None or _is_aggregated(tree):
        return sql
    cap = limit if limit is not None else settings.compiler.safe_row_limit
    return tree.limit(int(cap)).sql(dialect=DIALECT)


def analyze_query(sql: str) -> QueryAnalysis:
    tree = _parse(sql)
    suggestions: list[str] = []
    optimized = sql

    if _selects_star(tree):
        suggestions.append(SUGGEST_EXPLICIT_COLUMNS)

    where = tree.args.get("where")
    if where is None and tree.args.get("limit") is None:
        suggestions.append(SUGGEST_BOUND_RESULT)
        optimized = add_safe_limit(sql)

    if _join_count(tree) > settings.compiler.join_warning_threshold:
        suggestions.append(SUGGEST_INDEX_JOINS)

    if where is not None and where.find(exp.Or) is not None:
        suggestions.append(SUGGEST_AVOID_OR)

    return QueryAnalysis(optimized=optimized, suggestions=suggestions)


def estimate_complexity(sql: str) -> int:
    """Rough 0-100 score. JOINs and subqueries weigh most."""
    tree = _parse(sql)

    score = 10
    score += _join_count(tree) * 15
    # find_all includes the outer SELECT itself
    score += max(sum(1 for _ in tree.find_all(exp.Select)) - 1, 0) * 20
    score += sum(1 for _ in tree.find_all(exp.And, exp.Or)) * 5
    if tree.args.get("group") is not None:
        score += 10
    if tree.args.get("order") is not None:
        score += 5
    if tree.args.get("distinct") is not None:
        score += 10
    return min(score, 100)


def should_optimize(estimated_rows: int) -> bool:
    """True when a result is big enough to warrant SUGGEST_LARGE_RESULT."""
    return estimated_rows > settings.compiler.large_result_threshold
