# hp_core/common/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

from django.core.exceptions import ImproperlyConfigured

from hp_core.common.results import ResultKind


class GuardError(Exception):
    """
    Process-level failure. Expected business outcomes are GuardResult values;
    these are raised only for malformed input, misconfiguration or a principal
    that must re-authenticate.
    """
    code = "guard_error"
    kind: Optional[ResultKind] = None

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}


class PrincipalInactive(GuardError):
    """Account deactivated, deleted or revoked since the token was issued."""
    code = "principal_inactive"
    kind = ResultKind.PRINCIPAL_INACTIVE


class InvalidIdentity(GuardError, ValueError):
    code = "invalid_identity"


class UnknownResourceType(GuardError, ImproperlyConfigured):
    code = "unknown_resource_type"


class UnsupportedTransition(GuardError, ValueError):
    code = "unsupported_transition"


class ProtectedFieldChange(GuardError, ValueError):
    code = "protected_field_change"


class UnknownField(GuardError, ValueError):
    code = "unknown_field"


class StorageTimeout(GuardError):
    """Storage timeout or contention. Never escapes RecordGuard; mapped to a transient failure."""
    code = "storage_timeout"
    kind = ResultKind.TRANSIENT_FAILURE


class AppendOnlyViolation(GuardError):
    """Audit log entries are never updated or deleted."""
    code = "append_only_violation"
