"""Prometheus metrics."""

from .prometheus_exporter import ExtractionMetrics

__all__ = ["ExtractionMetrics"]
