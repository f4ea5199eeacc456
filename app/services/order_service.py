"""Order lifecycle: CREATED -> PROCESSING -> COMPLETED, with FAILED and CANCELLED as terminal exits.

Every transition is persisted first and counted afterwards, so counters never
run ahead of the stored state.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from time import perf_counter
from typing import Any

import structlog
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import store
from app.db.models import Order, OrderStatus
from app.errors import ConflictError, DomainError, NotFoundError, ProcessingInterruptedError, ValidationError
from app.observability.catalog import (
    BUSINESS_HIGH_VALUE_ORDERS_TOTAL,
    BUSINESS_TRANSACTION_AMOUNT,
    BUSINESS_TRANSACTIONS_TOTAL,
    ORDER_CANCELLED_TOTAL,
    ORDER_COMPLETED_TOTAL,
    ORDER_CREATED_TOTAL,
    ORDER_FOUND_TOTAL,
    ORDER_OPERATION_DURATION,
    ORDER_PROCESSED_TOTAL,
    ORDER_VALUE_DISTRIBUTION,
)
from app.observability.correlation import bind_entity_correlation
from app.observability.metrics import get_metrics
from app.observability.tracing import (
    add_attribute,
    add_business_context,
    add_event,
    record_business_event,
    span_scope,
)


logger = structlog.get_logger(__name__)

_PROCESSABLE = (OrderStatus.CREATED, OrderStatus.PROCESSING)
_CANCELLABLE = (OrderStatus.CREATED, OrderStatus.PROCESSING, OrderStatus.FAILED)

# Bounds of the Numeric(10, 2) amount column.
_CENT = Decimal("0.01")
_MAX_AMOUNT = Decimal("99999999.99")


def _parse_amount(amount: Any) -> Decimal:
    if amount is None or isinstance(amount, bool):
        raise ValidationError("Amount is required")
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValidationError("Amount must be a number") from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than zero")
    if value > _MAX_AMOUNT:
        raise ValidationError(f"Amount must not exceed {_MAX_AMOUNT}")
    if value != value.quantize(_CENT):
        raise ValidationError("Amount must have at most two decimal places")
    return value.quantize(_CENT)


def _parse_currency(currency: str | None) -> str:
    cleaned = (currency or "").strip()
    if not cleaned:
        raise ValidationError("Currency is required")
    if len(cleaned) != 3 or not cleaned.isalpha():
        raise ValidationError("Currency must be a three-letter code")
    return cleaned.upper()


def _sleep_ms(ms: int) -> None:
    if ms > 0:
        time.sleep(ms / 1000.0)


def create_order(db: Session, customer_id: str | None, amount: Any, currency: str | None) -> Order:
    start = perf_counter()
    with span_scope("order.service.create"):
        with span_scope("order.validation"):
            clean_customer = (customer_id or "").strip()
            if not clean_customer:
                raise ValidationError("Customer ID is required")
            value = _parse_amount(amount)
            clean_currency = _parse_currency(currency)

        now = datetime.now(timezone.utc)
        order = Order(
            id=f"order-{uuid.uuid4().hex}",
            customer_id=clean_customer,
            amount=value,
            currency=clean_currency,
            status=OrderStatus.CREATED,
            created_at=now,
            updated_at=now,
        )
        add_business_context("order", order.id, "create")
        add_attribute("order.amount", float(value))
        add_attribute("order.currency", clean_currency)

        with bind_entity_correlation(user_id=clean_customer, order_id=order.id):
            try:
                with span_scope("order.repository.save"):
                    store.save_order(db, order)
            except DomainError as exc:
                get_metrics().record_error("order", exc)
                raise

            metrics = get_metrics()
            metrics.increment(ORDER_CREATED_TOTAL)
            metrics.record(ORDER_VALUE_DISTRIBUTION, float(value))
            if order.is_high_value:
                metrics.increment(BUSINESS_HIGH_VALUE_ORDERS_TOTAL)
                add_event("order.high_value")
                logger.warning("order.high_value", amount=str(value), currency=clean_currency)

            record_business_event("order.created", "order", order.id)
            logger.info("order.created", amount=str(value), currency=clean_currency)

        metrics.record_duration(ORDER_OPERATION_DURATION, (perf_counter() - start) * 1000.0, "create")
        return order


def _mark_failed(db: Session, order_id: str) -> None:
    try:
        store.update_order_status(db, order_id, OrderStatus.FAILED)
    except DomainError as exc:
        logger.error("order.mark_failed_failed", error=exc.message)


def process_order(db: Session, order_id: str) -> Order:
    """Move an order through PROCESSING to COMPLETED.

    Only CREATED or PROCESSING orders are accepted. Status writes are
    compare-and-set, so a second concurrent call loses with ConflictError and
    leaves the order alone. `order.processed.total` counts only the move out of
    CREATED. Any other failure leaves the order FAILED.
    """
    settings = get_settings()
    start = perf_counter()
    with span_scope("order.service.process"):
        add_business_context("order", order_id, "process")
        with bind_entity_correlation(order_id=order_id):
            order = store.find_order_by_id(db, order_id)
            if order is None:
                raise NotFoundError(f"Order not found: {order_id}")
            if order.status not in _PROCESSABLE:
                raise ConflictError(f"Order {order_id} cannot be processed in status {order.status.value}")

            with bind_entity_correlation(user_id=order.customer_id):
                try:
                    if order.status is OrderStatus.CREATED:
                        store.update_order_status(
                            db, order_id, OrderStatus.PROCESSING, expected=(OrderStatus.CREATED,)
                        )
                        get_metrics().increment(ORDER_PROCESSED_TOTAL)
                        logger.info("order.processing_started")

                    with span_scope("order.processing"):
                        _sleep_ms(settings.order_processing_delay_ms)
                    _sleep_ms(settings.order_completion_delay_ms)
                    store.update_order_status(
                        db, order_id, OrderStatus.COMPLETED, expected=(OrderStatus.PROCESSING,)
                    )
                except (ConflictError, NotFoundError):
                    # Another caller moved the order on; its state is theirs to report.
                    raise
                except InterruptedError as exc:
                    _mark_failed(db, order_id)
                    get_metrics().record_error("order", exc)
                    logger.error("order.processing_interrupted")
                    raise ProcessingInterruptedError(f"Order processing interrupted: {order_id}") from exc
                except Exception as exc:
                    _mark_failed(db, order_id)
                    get_metrics().record_error("order", exc)
                    logger.error("order.processing_failed", error=str(exc))
                    raise

                metrics = get_metrics()
                metrics.increment(ORDER_COMPLETED_TOTAL)
                metrics.increment(BUSINESS_TRANSACTIONS_TOTAL)
                metrics.record(BUSINESS_TRANSACTION_AMOUNT, float(order.amount))
                record_business_event("order.completed", "order", order_id)
                logger.info("order.completed", amount=str(order.amount), currency=order.currency)

        metrics.record_duration(ORDER_OPERATION_DURATION, (perf_counter() - start) * 1000.0, "process")
        order.status = OrderStatus.COMPLETED
        return order


def cancel_order(db: Session, order_id: str) -> Order:
    start = perf_counter()
    with span_scope("order.service.cancel"):
        add_business_context("order", order_id, "cancel")
        with bind_entity_correlation(order_id=order_id):
            order = store.find_order_by_id(db, order_id)
            if order is None:
                raise NotFoundError(f"Order not found: {order_id}")
            if order.status is OrderStatus.CANCELLED:
                logger.info("order.already_cancelled")
                return order
            if order.status not in _CANCELLABLE:
                raise ConflictError(f"Order {order_id} cannot be cancelled in status {order.status.value}")

            store.update_order_status(db, order_id, OrderStatus.CANCELLED, expected=_CANCELLABLE)
            get_metrics().increment(ORDER_CANCELLED_TOTAL)
            record_business_event("order.cancelled", "order", order_id)
            logger.info("order.cancelled", previous_status=order.status.value)

        get_metrics().record_duration(ORDER_OPERATION_DURATION, (perf_counter() - start) * 1000.0, "cancel")
        order.status = OrderStatus.CANCELLED
        return order


def get_order_by_id(db: Session, order_id: str) -> Order:
    with span_scope("order.service.get"):
        add_business_context("order", order_id, "get")
        with bind_entity_correlation(order_id=order_id):
            order = store.find_order_by_id(db, order_id)
            if order is None:
                raise NotFoundError(f"Order not found: {order_id}")
            get_metrics().increment(ORDER_FOUND_TOTAL)
            return order


def get_orders_by_customer(db: Session, customer_id: str) -> list[Order]:
    start = perf_counter()
    with span_scope("order.service.list_by_customer"):
        add_business_context("customer", customer_id, "list_orders")
        with bind_entity_correlation(user_id=customer_id):
            orders = store.find_orders_by_customer(db, customer_id)
            add_attribute("order.count", len(orders))
            get_metrics().increment(ORDER_FOUND_TOTAL)
            logger.info("order.customer_listed", count=len(orders))
        get_metrics().record_duration(ORDER_OPERATION_DURATION, (perf_counter() - start) * 1000.0, "list_by_customer")
        return orders
