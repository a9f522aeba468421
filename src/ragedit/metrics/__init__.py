"""Logging and metrics."""

from .observability import PipelineMetrics, bind_correlation_id, configure_logging, get_logger

__all__ = ["PipelineMetrics", "bind_correlation_id", "configure_logging", "get_logger"]
