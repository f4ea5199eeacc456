"""Tracing, metrics and log correlation for the service.

Spans come from OpenTelemetry, counters and histograms from a fixed catalog,
and log lines pick up the active span ids through structlog contextvars.
"""
