"""Prometheus exporter for Bitbucket Cloud."""

__version__ = "0.1.0"
