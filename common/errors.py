from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for business-rule failures raised by the ledgers and the coordinator."""

    status_code = 400
    default_code = "domain_error"

    def __init__(self, message: str, *, code: str | None = None, details: Any = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)


class ValidationError(DomainError):
    status_code = 400
    default_code = "validation_error"


class NotFoundError(DomainError):
    status_code = 404
    default_code = "not_found"


class StateConflictError(DomainError):
    status_code = 409
    default_code = "state_conflict"


class InternalError(DomainError):
    status_code = 500
    default_code = "internal_error"


class ConfigurationError(InternalError):
    default_code = "configuration_error"
