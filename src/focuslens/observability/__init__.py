"""focuslens observability package: logging setup and in-process metrics."""

from focuslens.observability.logging import configure_logging
from focuslens.observability.metrics import MetricsCollector, get_metrics

__all__ = ["MetricsCollector", "configure_logging", "get_metrics"]
