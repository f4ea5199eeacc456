from __future__ import annotations

import uuid
from datetime import datetime, timezone
from time import perf_counter

import structlog
from sqlalchemy.orm import Session

from app.db import store
from app.db.models import User, UserStatus
from app.errors import DomainError, NotFoundError, ValidationError
from app.observability.catalog import USER_CREATED_TOTAL, USER_FOUND_TOTAL, USER_OPERATION_DURATION, USER_UPDATED_TOTAL
from app.observability.correlation import bind_entity_correlation
from app.observability.metrics import get_metrics
from app.observability.tracing import add_attribute, add_business_context, record_business_event, span_scope


logger = structlog.get_logger(__name__)


def _require(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    return cleaned


def _elapsed_ms(start: float) -> float:
    return (perf_counter() - start) * 1000.0


def create_user(db: Session, username: str | None, email: str | None) -> User:
    start = perf_counter()
    with span_scope("user.service.create") as span:
        with span_scope("user.validation"):
            clean_username = _require(username, "Username")
            clean_email = _require(email, "Email").lower()

        now = datetime.now(timezone.utc)
        user = User(
            id=f"user-{uuid.uuid4().hex}",
            username=clean_username,
            email=clean_email,
            status=UserStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        span.set_attribute("user.username", clean_username)
        add_business_context("user", user.id, "create")

        with bind_entity_correlation(user_id=user.id):
            try:
                with span_scope("user.repository.save"):
                    store.save_user(db, user)
            except DomainError as exc:
                get_metrics().record_error("user", exc)
                logger.warning("user.create_failed", username=clean_username, error=exc.message)
                raise

            get_metrics().increment(USER_CREATED_TOTAL)
            record_business_event("user.created", "user", user.id)
            logger.info("user.created", username=clean_username)

        get_metrics().record_duration(USER_OPERATION_DURATION, _elapsed_ms(start), "create")
        return user


def update_user_email(db: Session, user_id: str, email: str | None) -> User:
    start = perf_counter()
    with span_scope("user.service.update_email"):
        clean_email = _require(email, "Email").lower()
        add_business_context("user", user_id, "update_email")

        with bind_entity_correlation(user_id=user_id):
            user = store.find_user_by_id(db, user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")

            user.email = clean_email
            user.updated_at = datetime.now(timezone.utc)
            try:
                store.save_user(db, user)
            except DomainError as exc:
                get_metrics().record_error("user", exc)
                raise

            get_metrics().increment(USER_UPDATED_TOTAL)
            logger.info("user.email_updated")

        get_metrics().record_duration(USER_OPERATION_DURATION, _elapsed_ms(start), "update_email")
        return user


def get_user_by_id(db: Session, user_id: str) -> User:
    with span_scope("user.service.get"):
        add_business_context("user", user_id, "get")
        with bind_entity_correlation(user_id=user_id):
            user = store.find_user_by_id(db, user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")
            get_metrics().increment(USER_FOUND_TOTAL)
            logger.debug("user.found")
            return user


def get_active_users(db: Session) -> list[User]:
    start = perf_counter()
    with span_scope("user.service.list_active"):
        users = store.find_active_users(db)
        add_attribute("user.count", len(users))
        get_metrics().increment(USER_FOUND_TOTAL)
        logger.info("user.active_listed", count=len(users))
        get_metrics().record_duration(USER_OPERATION_DURATION, _elapsed_ms(start), "list_active")
        return users
