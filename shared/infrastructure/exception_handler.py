"""DRF exception handler translating domain errors into HTTP responses."""

import logging

from rest_framework import status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler  # type: ignore

from shared.domain.exceptions import (
    ConflictError,
    DomainError,
    ExternalGatewayError,
    ForbiddenError,
    NotFoundError,
    SignatureError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases
STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (SignatureError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalGatewayError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(error: DomainError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def domain_exception_handler(exc, context):
    if not isinstance(exc, DomainError):
        return exception_handler(exc, context)

    status_code = status_for(exc)
    view = context.get('view')
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{exc.__class__.__name__} in {view.__class__.__name__ if view else 'unknown view'}: {exc.message}")
    return Response(exc.to_dict(), status=status_code)
