# Overview: Domain error taxonomy shared by every service; routes map these onto HTTP responses.

from __future__ import annotations


class DomainError(Exception):
    """
    Base class for business-rule failures.

    Carries a machine-readable code, the HTTP status the API should answer
    with, and optional structured details so callers can react (for example
    remove the offending order line) instead of retrying blindly.
    """
    code = "domain_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidStateError(DomainError):
    """Transition attempted from a state that does not permit it."""
    code = "invalid_state"
    status_code = 409


class InsufficientStockError(DomainError):
    """A deduction would drive on-hand pieces below zero."""
    code = "insufficient_stock"
    status_code = 409


class InvalidArgumentError(DomainError, ValueError):
    """Malformed quantities, unknown enum values, missing reference numbers."""
    code = "invalid_argument"
    status_code = 400


class ForbiddenError(DomainError):
    """Caller lacks the privilege the operation requires."""
    code = "forbidden"
    status_code = 403


class NotFoundError(DomainError):
    code = "not_found"
    status_code = 404


class ConflictError(DomainError):
    """Uniqueness violation or a competing write that could not be reconciled."""
    code = "conflict"
    status_code = 409


class LockTimeoutError(ConflictError):
    """Row lock could not be acquired in time. Safe to retry."""
    code = "lock_timeout"
    status_code = 503
    retryable = True


class AuditLogImmutableError(RuntimeError):
    """Raised when code tries to rewrite history or write around the audit capture."""
