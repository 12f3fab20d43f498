import logging

import prometheus_client as prom
from prometheus_client import start_http_server

logger = logging.getLogger("mcpgen.monitoring")

# Process-wide collectors; registered once on import.
CACHE_REQUESTS = prom.Counter(
    'mcpgen_cache_requests_total', 'Response cache lookups', ['result']
)
PROVIDER_CALLS = prom.Counter(
    'mcpgen_provider_calls_total', 'Backend generation calls', ['provider', 'status']
)
TASK_FALLBACKS = prom.Counter(
    'mcpgen_task_fallbacks_total', 'Enhancement tasks answered by a fallback', ['feature']
)
GENERATION_COST = prom.Counter(
    'mcpgen_generation_cost_dollars_total', 'Accumulated backend cost in USD'
)
TASK_LATENCY = prom.Histogram(
    'mcpgen_task_latency_seconds', 'Enhancement task latency', ['feature']
)


def start_metrics_server(port: int = 9090) -> None:
    """Expose the Prometheus endpoint on localhost."""
    # Bind to 127.0.0.1 to ensure the port is not exposed externally.
    start_http_server(port, addr='127.0.0.1')
    logger.info(f"Metrics server listening on 127.0.0.1:{port}")
