"""Domain error taxonomy shared by services, storage and the HTTP layer."""

from __future__ import annotations


class DomainError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Missing, empty or out-of-range input. Never retried."""

    status_code = 400


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """Illegal state transition or uniqueness violation."""

    status_code = 409


class PersistenceError(DomainError):
    status_code = 500


class ProcessingInterruptedError(DomainError):
    status_code = 500


class MetricCatalogError(ValueError):
    """Invalid metric catalog. Raised at startup and not meant to be handled."""
