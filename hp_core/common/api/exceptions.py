# hp_core/common/api/exceptions.py
from __future__ import annotations

import uuid
from typing import Any, Optional

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    NotAuthenticated,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from hp_core.common.errors import (
    GuardError,
    InvalidIdentity,
    PrincipalInactive,
    ProtectedFieldChange,
    StorageTimeout,
    UnknownField,
    UnsupportedTransition,
)
from hp_core.common.results import GuardResult, ResultKind


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    rid = ensure_request_id(request)
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": rid,
        }
    }


class ConflictError(APIException):
    """
    409 Conflict: the record's state blocks the action (hold, business lock,
    already terminal).
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail or self.default_detail, code=code or self.default_code)


class TransientFailure(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Storage temporarily unavailable; retry the request."
    default_code = "transient_failure"


_CONFLICT_KINDS = {
    ResultKind.COMPLIANCE_BLOCKED,
    ResultKind.BUSINESS_LOCKED,
    ResultKind.ALREADY_TERMINAL,
}


def exception_for_result(result: GuardResult) -> Optional[APIException]:
    """DRF exception for an unsuccessful GuardResult; None when it succeeded."""
    if result.ok:
        return None

    kind = result.kind
    reason = str(result.reason) or str(kind.label)

    if kind == ResultKind.RESOURCE_NOT_FOUND:
        return NotFound(code="not_found")
    if kind in (ResultKind.FORBIDDEN, ResultKind.OUT_OF_SCOPE):
        return PermissionDenied(detail=reason, code=kind.value)
    if kind in _CONFLICT_KINDS:
        detail: dict[str, Any] = {"detail": reason}
        if result.plan is not None and result.plan.blocking:
            detail["blocking"] = list(result.plan.blocking)
        return ConflictError(detail=detail, code=kind.value)
    if kind == ResultKind.PRINCIPAL_INACTIVE:
        return AuthenticationFailed(code=kind.value)
    return TransientFailure()


def raise_for_result(result: GuardResult) -> GuardResult:
    """
    Consumer-side seam for request handlers: returns successful results,
    raises the matching DRF exception otherwise.
    """
    exc = exception_for_result(result)
    if exc is not None:
        raise exc
    return result


def exception_for_guard_error(exc: GuardError) -> Optional[APIException]:
    if isinstance(exc, (PrincipalInactive, InvalidIdentity)):
        return AuthenticationFailed(detail=exc.message, code=exc.code)
    if isinstance(exc, (UnsupportedTransition, ProtectedFieldChange, UnknownField)):
        return ValidationError(detail={"detail": exc.message, **exc.details}, code=exc.code)
    if isinstance(exc, StorageTimeout):
        return TransientFailure()
    # misconfiguration (unknown resource type, append-only violation): server error
    return None


def _code_for(exc: Exception, http_status: int) -> str:
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, NotAuthenticated):
        return "not_authenticated"
    if isinstance(exc, PermissionDenied):
        return "permission_denied"
    if isinstance(exc, Http404):
        return "not_found"
    if isinstance(exc, APIException):
        return getattr(exc, "default_code", "api_error") or "api_error"
    if http_status >= 500:
        return "server_error"
    return "error"


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")

    if isinstance(exc, GuardError):
        exc = exception_for_guard_error(exc) or exc

    response = drf_exception_handler(exc, context)

    if response is None:
        return Response(
            build_error_envelope(
                request=request,
                code="server_error",
                message="Unexpected server error.",
                details=None,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    http_status = response.status_code
    code = _code_for(exc, http_status)

    # {"detail": msg, **rest} -> message=msg, details=rest or None
    data = response.data
    message = "Request failed."
    details = data

    if isinstance(data, dict) and "detail" in data:
        message = str(data.get("detail"))
        rest = {k: v for k, v in data.items() if k != "detail"}
        details = rest or None

    return Response(
        build_error_envelope(
            request=request,
            code=code,
            message=message,
            details=details,
        ),
        status=http_status,
        headers=response.headers,
    )
