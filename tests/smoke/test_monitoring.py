from unittest.mock import patch

from core import monitoring


def test_metrics_server_binds_localhost():
    with patch("core.monitoring.start_http_server") as mock_server:
        monitoring.start_metrics_server(9123)
    mock_server.assert_called_once_with(9123, addr='127.0.0.1')


def test_collectors_accept_labels():
    monitoring.CACHE_REQUESTS.labels(result="hit").inc()
    monitoring.PROVIDER_CALLS.labels(provider="ollama:codellama", status="ok").inc()
    monitoring.TASK_LATENCY.labels(feature="documentation").observe(0.1)
