# hp_core/common/results.py
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from django.db import models

if TYPE_CHECKING:
    from hp_core.lifecycle.guard import TransitionPlan
    from hp_core.rules.engine import PolicyDecision


class ResultKind(models.TextChoices):
    APPLIED = "applied", "Applied"
    ALLOWED = "allowed", "Allowed"
    IDEMPOTENT = "idempotent", "Idempotent"
    PRINCIPAL_INACTIVE = "principal_inactive", "Principal inactive"
    FORBIDDEN = "forbidden", "Forbidden"
    OUT_OF_SCOPE = "out_of_scope", "Out of scope"
    RESOURCE_NOT_FOUND = "resource_not_found", "Resource not found"
    ALREADY_TERMINAL = "already_terminal", "Already terminal"
    COMPLIANCE_BLOCKED = "compliance_blocked", "Compliance blocked"
    BUSINESS_LOCKED = "business_locked", "Business locked"
    TRANSIENT_FAILURE = "transient_failure", "Transient failure"


SUCCESS_KINDS = frozenset({ResultKind.APPLIED, ResultKind.ALLOWED, ResultKind.IDEMPOTENT})


@dataclass(frozen=True)
class GuardResult:
    """
    Typed outcome of a guarded action. Expected business conditions are
    returned as a GuardResult, never raised.
    """
    kind: ResultKind
    reason: str = ""
    matched_rule: str = ""
    decision: Optional["PolicyDecision"] = None
    plan: Optional["TransitionPlan"] = None
    audit_entry_id: Optional[UUID] = None

    @property
    def ok(self) -> bool:
        return self.kind in SUCCESS_KINDS

    @property
    def changed_state(self) -> bool:
        return self.kind == ResultKind.APPLIED

    @property
    def retryable(self) -> bool:
        return self.kind == ResultKind.TRANSIENT_FAILURE
