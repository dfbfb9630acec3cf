"""Prometheus exporter for WireGuard tunnel statistics."""

__version__ = "1.0.0"
