"""Central Prometheus metrics registry.

All application metrics are defined here to avoid scattered metric definitions
and ensure consistent naming/labeling.
"""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("canvasql_app", "canvasql application info")

# --- HTTP ---
http_requests_total = Counter(
    "canvasql_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
http_request_duration_seconds = Histogram(
    "canvasql_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

# --- Validation ---
graph_validation_duration_seconds = Histogram(
    "canvasql_graph_validation_duration_seconds",
    "Graph validation duration in seconds",
    ["scope"],  # "graph" | "node"
)
validation_diagnostics_total = Counter(
    "canvasql_validation_diagnostics_total",
    "Diagnostics produced by the validation engine",
    ["severity"],
)

# --- SQL generation ---
sql_build_duration_seconds = Histogram(
    "canvasql_sql_build_duration_seconds",
    "SQL generation duration in seconds",
    ["operator"],
)

# --- Flow execution ---
flow_executions_total = Counter(
    "canvasql_flow_executions_total",
    "Flow executions by operator and outcome",
    ["operator", "status"],  # status: "completed" | "blocked" | "failed"
)
query_execution_duration_seconds = Histogram(
    "canvasql_query_execution_duration_seconds",
    "Query execution duration in seconds (external engine round trip)",
    ["operator"],
)
query_result_rows = Histogram(
    "canvasql_query_result_rows",
    "Number of rows returned by a flow query",
    ["operator"],
    buckets=[0, 1, 10, 100, 1000, 5000, 10000, 50000, 100000],
)
