"""Persistence collaborator for users and orders.

Each function is one unit of work against the session: it commits on success,
rolls back and raises PersistenceError when the database fails. Timing and
operation counts go to the `database.*` metrics.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from time import perf_counter

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import Order, OrderStatus, User, UserStatus
from app.errors import ConflictError, NotFoundError, PersistenceError
from app.observability.catalog import DATABASE_OPERATION_DURATION
from app.observability.metrics import get_metrics


logger = structlog.get_logger(__name__)


@contextmanager
def _db_operation(db: Session, operation: str) -> Iterator[None]:
    start = perf_counter()
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        get_metrics().record_error("database", exc)
        logger.error("database.operation_failed", operation=operation, error=str(exc), exc_info=True)
        raise PersistenceError(f"Database operation failed: {operation}") from exc
    finally:
        get_metrics().record_duration(DATABASE_OPERATION_DURATION, (perf_counter() - start) * 1000.0, operation)
    get_metrics().record_success("database.operations")


def save_user(db: Session, user: User) -> User:
    try:
        with _db_operation(db, "save_user"):
            db.add(user)
            db.commit()
    except PersistenceError as exc:
        if isinstance(exc.__cause__, IntegrityError):
            raise ConflictError(f"Username already exists: {user.username}") from exc.__cause__
        raise
    return user


def find_user_by_id(db: Session, user_id: str) -> User | None:
    with _db_operation(db, "find_user_by_id"):
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        return db.execute(stmt).scalar_one_or_none()


def find_active_users(db: Session) -> list[User]:
    with _db_operation(db, "find_active_users"):
        stmt = (
            select(User)
            .where(User.status == UserStatus.ACTIVE)
            .order_by(User.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(db.execute(stmt).scalars())


def save_order(db: Session, order: Order) -> Order:
    with _db_operation(db, "save_order"):
        db.add(order)
        db.commit()
    return order


def find_order_by_id(db: Session, order_id: str) -> Order | None:
    with _db_operation(db, "find_order_by_id"):
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        return db.execute(stmt).scalar_one_or_none()


def find_orders_by_customer(db: Session, customer_id: str) -> list[Order]:
    with _db_operation(db, "find_orders_by_customer"):
        stmt = (
            select(Order)
            .where(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(db.execute(stmt).scalars())


def update_order_status(
    db: Session,
    order_id: str,
    status: OrderStatus,
    expected: Iterable[OrderStatus] | None = None,
) -> None:
    """Single-statement status write.

    With `expected`, the write only applies while the row is in one of those
    statuses (compare-and-set). Raises NotFoundError when the order does not
    exist and ConflictError when it exists in another status.
    """
    allowed = list(expected) if expected is not None else None
    with _db_operation(db, "update_order_status"):
        stmt = update(Order).where(Order.id == order_id)
        if allowed is not None:
            stmt = stmt.where(Order.status.in_(allowed))
        stmt = stmt.values(status=status, updated_at=datetime.now(timezone.utc))
        result = db.execute(stmt.execution_options(synchronize_session=False))
        db.commit()
        updated = result.rowcount

    if updated:
        return

    current = find_order_by_id(db, order_id)
    if current is None:
        raise NotFoundError(f"Order not found: {order_id}")
    raise ConflictError(f"Order {order_id} is {current.status.value}, cannot move to {status.value}")
