"""Core infrastructure: exceptions, structured logging, YAML loading, metrics.

The bottom of the layer graph. Every other subpackage may import from here;
``core`` imports nothing from the rest of ``roostr``.

Attributes:
    exceptions: The [RoostrError][roostr.core.exceptions.RoostrError]
        hierarchy.
    logger: [Logger][roostr.core.logger.Logger] structured wrapper and
        [StructuredFormatter][roostr.core.logger.StructuredFormatter].
    metrics: Prometheus counters/histograms and the aiohttp metrics endpoint.
    yaml: Safe YAML configuration loading.
"""

from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import MetricsConfig, MetricsServer, start_metrics_server
from .yaml import load_yaml


__all__ = [
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
