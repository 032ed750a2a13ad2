"""
HTTP request instrumentation.

Request metrics and the custom intervention counters are served together
on /metrics from the default Prometheus registry.
"""

from prometheus_fastapi_instrumentator import Instrumentator

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health"],
)
