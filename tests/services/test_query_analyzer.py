"""Query analyzer tests: suggestions, safe LIMIT rewriting and complexity."""

import sqlglot

from canvasql.services.query_analyzer import (
    SUGGEST_AVOID_OR,
    SUGGEST_BOUND_RESULT,
    SUGGEST_EXPLICIT_COLUMNS,
    SUGGEST_INDEX_JOINS,
    add_safe_limit,
    analyze_query,
    estimate_complexity,
    should_optimize,
)


def _normalize_sql(sql: str) -> str:
    """Parse and regenerate SQL to normalize whitespace and quoting."""
    return sqlglot.transpile(sql, read="duckdb", write="duckdb")[0]


def _joins(count: int) -> str:
    joins = "\n".join(f"INNER JOIN t{i} ON t.id = t{i}.id" for i in range(count))
    return f"SELECT t.id\nFROM t\n{joins}\nWHERE t.id = '1'"


class TestAddSafeLimit:
    def test_appends_limit(self):
        assert _normalize_sql(add_safe_limit("SELECT *\nFROM users", 100)) == (
            "SELECT * FROM users LIMIT 100"
        )

    def test_default_limit_from_settings(self):
        assert add_safe_limit("SELECT * FROM users").endswith("LIMIT 100000")

    def test_existing_limit_is_kept(self):
        sql = "SELECT * FROM users LIMIT 5"
        assert add_safe_limit(sql, 100) == sql

    def test_aggregates_are_not_limited(self):
        grouped = "SELECT users.age, COUNT(*)\nFROM users\nGROUP BY users.age"
        summed = "SELECT SUM(orders.amount) AS total\nFROM orders"
        assert add_safe_limit(grouped, 100) == grouped
        assert add_safe_limit(summed, 100) == summed

    def test_non_select_is_unchanged(self):
        sql = "SELECT 1 UNION SELECT 2"
        assert add_safe_limit(sql, 10) == sql


class TestAnalyzeQuery:
    def test_unbounded_select_star(self):
        analysis = analyze_query("SELECT *\nFROM users")
        assert analysis.suggestions == [SUGGEST_EXPLICIT_COLUMNS, SUGGEST_BOUND_RESULT]
        assert "LIMIT 100000" in analysis.optimized

    def test_qualified_star_counts_as_select_star(self):
        analysis = analyze_query("SELECT users.* FROM users WHERE users.id = '1'")
        assert analysis.suggestions == [SUGGEST_EXPLICIT_COLUMNS]

    def test_count_star_is_not_select_star(self):
        analysis = analyze_query("SELECT COUNT(*) FROM users WHERE users.age > '18'")
        assert analysis.suggestions == []
        assert analysis.optimized == "SELECT COUNT(*) FROM users WHERE users.age > '18'"

    def test_or_in_where(self):
        analysis = analyze_query(
            "SELECT users.id FROM users WHERE users.age > '18' OR users.name = 'a'"
        )
        assert analysis.suggestions == [SUGGEST_AVOID_OR]

    def test_many_joins(self):
        assert SUGGEST_INDEX_JOINS in analyze_query(_joins(3)).suggestions
        assert SUGGEST_INDEX_JOINS not in analyze_query(_joins(2)).suggestions


class TestComplexity:
    def test_base_score(self):
        assert estimate_complexity("SELECT * FROM users") == 10

    def test_join_and_group_by(self):
        sql = (
            "SELECT orders.user_id, SUM(orders.amount)\nFROM orders\n"
            "INNER JOIN users ON orders.user_id = users.id\nGROUP BY orders.user_id"
        )
        assert estimate_complexity(sql) == 10 + 15 + 10

    def test_conditions_and_subquery(self):
        sql = "SELECT * FROM (SELECT id FROM users) AS u WHERE u.id > 1 AND u.id < 9"
        assert estimate_complexity(sql) == 10 + 20 + 5

    def test_capped_at_100(self):
        assert estimate_complexity(_joins(8)) == 100


class TestShouldOptimize:
    def test_threshold(self):
        assert should_optimize(10_001)
        assert not should_optimize(10_000)
