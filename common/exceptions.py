from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from common.errors import ConfigurationError, DomainError, InternalError

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

# Checked in order, so subclasses come before their parents.
API_ERROR_CODES: tuple[tuple[type[exceptions.APIException], str], ...] = (
    (exceptions.ValidationError, "validation_error"),
    (exceptions.NotAuthenticated, "not_authenticated"),
    (exceptions.AuthenticationFailed, "authentication_failed"),
    (exceptions.PermissionDenied, "permission_denied"),
    (exceptions.NotFound, "not_found"),
    (exceptions.MethodNotAllowed, "method_not_allowed"),
    (exceptions.NotAcceptable, "not_acceptable"),
    (exceptions.UnsupportedMediaType, "unsupported_media_type"),
    (exceptions.ParseError, "parse_error"),
    (exceptions.Throttled, "throttled"),
)


def envelope(code: str, message: str, errors: Any, status_code: int) -> Response:
    """Every API failure leaves as {code, message, errors, status}."""
    return Response(
        {"code": code, "message": message, "errors": errors, "status": status_code},
        status=status_code,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    if isinstance(exc, DomainError):
        return _domain_error(exc, context)

    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied()

    response = drf_exception_handler(exc, context)
    if response is None:
        logger.exception("Unhandled API exception in %s", _view_name(context))
        return envelope("internal_server_error", GENERIC_SERVER_ERROR_MESSAGE, None, status.HTTP_500_INTERNAL_SERVER_ERROR)

    code = next((value for exc_type, value in API_ERROR_CODES if isinstance(exc, exc_type)), None)
    if code is None:
        code = str(getattr(exc, "default_code", "api_error"))

    data = response.data
    if isinstance(exc, exceptions.ValidationError):
        message, errors = "Validation failed.", data
    elif isinstance(data, Mapping) and set(data) == {"detail"}:
        message, errors = str(data["detail"]), None
    else:
        message, errors = str(getattr(exc, "detail", "Request failed.")), data

    # Keep DRF's response so WWW-Authenticate and Retry-After survive.
    response.data = envelope(code, message, errors, response.status_code).data
    return response


def _domain_error(exc: DomainError, context: dict[str, Any]) -> Response:
    message = exc.message
    if isinstance(exc, InternalError):
        logger.error("Settlement failure in %s: %s", _view_name(context), exc.message, exc_info=exc)
        if not isinstance(exc, ConfigurationError):
            message = GENERIC_SERVER_ERROR_MESSAGE
    return envelope(exc.code, message, exc.details, exc.status_code)


def _view_name(context: dict[str, Any]) -> str:
    view = context.get("view")
    return view.__class__.__name__ if view is not None else "unknown"
