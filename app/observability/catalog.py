"""Closed catalog of counters and histograms known to the service.

Names are dotted so the `<operation>.total` / `<operation>.errors.total`
shortcuts on the registry resolve to real entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


COUNTER_UNIT = "1"

UNKNOWN_METRIC_COUNT = "unknown.metric.count"

# User operations
USER_CREATED_TOTAL = "user.created.total"
USER_FOUND_TOTAL = "user.found.total"
USER_UPDATED_TOTAL = "user.updated.total"
USER_DEACTIVATED_TOTAL = "user.deactivated.total"
USER_ERRORS_TOTAL = "user.errors.total"

# Order operations
ORDER_CREATED_TOTAL = "order.created.total"
ORDER_FOUND_TOTAL = "order.found.total"
ORDER_PROCESSED_TOTAL = "order.processed.total"
ORDER_COMPLETED_TOTAL = "order.completed.total"
ORDER_CANCELLED_TOTAL = "order.cancelled.total"
ORDER_ERRORS_TOTAL = "order.errors.total"

# Business
BUSINESS_HIGH_VALUE_ORDERS_TOTAL = "business.high_value_orders.total"
BUSINESS_TRANSACTIONS_TOTAL = "business.transactions.total"

# System
DATABASE_OPERATIONS_TOTAL = "database.operations.total"
DATABASE_ERRORS_TOTAL = "database.errors.total"
HEALTH_CHECKS_TOTAL = "health.checks.total"
APPLICATION_STARTUPS_TOTAL = "application.startups.total"
HTTP_REQUESTS_TOTAL = "http.requests.total"

# Telemetry pipeline
TELEMETRY_SPANS_CREATED_TOTAL = "telemetry.spans.created.total"
TELEMETRY_METRICS_RECORDED_TOTAL = "telemetry.metrics.recorded.total"

# Histograms
USER_OPERATION_DURATION = "user.operation.duration"
ORDER_OPERATION_DURATION = "order.operation.duration"
ORDER_VALUE_DISTRIBUTION = "order.value.distribution"
DATABASE_OPERATION_DURATION = "database.operation.duration"
BUSINESS_TRANSACTION_AMOUNT = "business.transaction.amount"
HTTP_REQUEST_DURATION = "http.request.duration"


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    kind: Literal["counter", "histogram"]
    description: str
    unit: str = COUNTER_UNIT


def _counter(name: str, description: str) -> MetricDefinition:
    return MetricDefinition(name=name, kind="counter", description=description)


def _histogram(name: str, description: str, unit: str) -> MetricDefinition:
    return MetricDefinition(name=name, kind="histogram", description=description, unit=unit)


DEFAULT_CATALOG: tuple[MetricDefinition, ...] = (
    _counter(USER_CREATED_TOTAL, "Total number of users created"),
    _counter(USER_FOUND_TOTAL, "Total number of user lookup operations"),
    _counter(USER_UPDATED_TOTAL, "Total number of user update operations"),
    _counter(USER_DEACTIVATED_TOTAL, "Total number of users deactivated"),
    _counter(USER_ERRORS_TOTAL, "Total number of user operation errors"),
    _counter(ORDER_CREATED_TOTAL, "Total number of orders created"),
    _counter(ORDER_FOUND_TOTAL, "Total number of order lookup operations"),
    _counter(ORDER_PROCESSED_TOTAL, "Total number of orders processed"),
    _counter(ORDER_COMPLETED_TOTAL, "Total number of orders completed"),
    _counter(ORDER_CANCELLED_TOTAL, "Total number of orders cancelled"),
    _counter(ORDER_ERRORS_TOTAL, "Total number of order operation errors"),
    _counter(BUSINESS_HIGH_VALUE_ORDERS_TOTAL, "Total number of high-value orders"),
    _counter(BUSINESS_TRANSACTIONS_TOTAL, "Total number of business transactions"),
    _counter(DATABASE_OPERATIONS_TOTAL, "Total number of database operations"),
    _counter(DATABASE_ERRORS_TOTAL, "Total number of database errors"),
    _counter(HEALTH_CHECKS_TOTAL, "Total number of health check operations"),
    _counter(APPLICATION_STARTUPS_TOTAL, "Total number of application startups"),
    _counter(HTTP_REQUESTS_TOTAL, "Total number of HTTP requests served"),
    _counter(TELEMETRY_SPANS_CREATED_TOTAL, "Total number of spans created"),
    _counter(TELEMETRY_METRICS_RECORDED_TOTAL, "Total number of metrics recorded"),
    _counter(UNKNOWN_METRIC_COUNT, "Total number of unknown metric increment attempts"),
    _histogram(USER_OPERATION_DURATION, "Duration of user operations", "ms"),
    _histogram(ORDER_OPERATION_DURATION, "Duration of order operations", "ms"),
    _histogram(ORDER_VALUE_DISTRIBUTION, "Distribution of order values", "USD"),
    _histogram(DATABASE_OPERATION_DURATION, "Duration of database operations", "ms"),
    _histogram(BUSINESS_TRANSACTION_AMOUNT, "Distribution of transaction amounts", "USD"),
    _histogram(HTTP_REQUEST_DURATION, "Duration of HTTP requests", "ms"),
)
