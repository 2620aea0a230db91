"""Monitoring utilities for the UserPulse service."""

from .metrics import PrometheusExporter

__all__ = ["PrometheusExporter"]
