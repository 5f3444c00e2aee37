# hp_core/lifecycle/services.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from django.utils import timezone

from hp_core.audit.services import AuditRecorder, DecisionEvent
from hp_core.common.errors import StorageTimeout
from hp_core.common.results import GuardResult, ResultKind
from hp_core.common.types import ResourceRef
from hp_core.iam.principals import Principal, RoleType
from hp_core.iam.scope import ScopeResolver
from hp_core.lifecycle.models import ComplianceHold, HoldStatus
from hp_core.lifecycle.registry import ORGANIZATION
from hp_core.lifecycle.store import DjangoRecordStore, RecordStore
from hp_core.rules.predicates import DenyReason

logger = logging.getLogger(__name__)

HOLD_MANAGER_ROLES = frozenset({RoleType.SYSTEM_ADMIN, RoleType.ORGANIZATION_ADMIN})

ACTION_HOLD_IMPOSE = "hold_impose"
ACTION_HOLD_RELEASE = "hold_release"


@dataclass(frozen=True)
class HoldOutcome:
    result: GuardResult
    hold: Optional[ComplianceHold] = None


class ComplianceHoldService:
    """
    Imposes and releases compliance holds. Both operations are idempotent
    and audited; only admins in scope of the subject may manage holds.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], UUID]] = None,
        scope_resolver: Optional[ScopeResolver] = None,
    ):
        self.store = store or DjangoRecordStore()
        self.clock = clock or timezone.now
        self.id_factory = id_factory or uuid.uuid4
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.recorder = AuditRecorder(self.store, self.clock, self.id_factory)

    def _authorize(self, principal: Principal, ref: ResourceRef) -> Optional[GuardResult]:
        if principal.role_type not in HOLD_MANAGER_ROLES:
            return GuardResult(ResultKind.FORBIDDEN, reason=DenyReason.ROLE_NOT_PERMITTED)
        if not self.scope_resolver.resolve(principal, ref).in_scope:
            return GuardResult(ResultKind.OUT_OF_SCOPE, reason=DenyReason.OUT_OF_SCOPE)
        return None

    def _lock_subject(self, subject_type: str, subject_id: UUID) -> Optional[ResourceRef]:
        """Lock the hold subject until commit; deletes of it or beneath it wait."""
        if subject_type == ORGANIZATION:
            self.store.lock_subjects(((ORGANIZATION, subject_id),), exclusive=True)
            return ResourceRef(resource_type=ORGANIZATION, resource_id=subject_id, organization_id=subject_id)
        snapshot = self.store.fetch(subject_type, subject_id, for_update=True)
        return snapshot.ref if snapshot is not None else None

    def impose(self, principal: Principal, *, subject_type: str, subject_id: UUID, reason: str = "") -> HoldOutcome:
        try:
            with self.store.atomic():
                ref = self._lock_subject(subject_type, subject_id)
                if ref is None:
                    return HoldOutcome(GuardResult(ResultKind.RESOURCE_NOT_FOUND, reason="subject_not_found"))

                denied = self._authorize(principal, ref)
                if denied is not None:
                    return HoldOutcome(denied)

                existing = (
                    ComplianceHold.objects.select_for_update()
                    .filter(subject_type=subject_type, subject_id=subject_id, status=HoldStatus.ACTIVE)
                    .first()
                )
                if existing:
                    return HoldOutcome(GuardResult(ResultKind.IDEMPOTENT, reason="hold_already_active"), existing)

                hold = ComplianceHold.objects.create(
                    id=self.id_factory(),
                    organization_id=ref.organization_id,
                    department_id=ref.department_id,
                    subject_type=subject_type,
                    subject_id=subject_id,
                    reason=reason,
                    imposed_by=principal.id,
                )
                entry = self.recorder.record(
                    DecisionEvent(
                        principal=principal,
                        action=ACTION_HOLD_IMPOSE,
                        ref=ref,
                        outcome=ResultKind.APPLIED,
                        reason="hold_imposed",
                        extra={"hold_id": hold.id},
                    )
                )
        except StorageTimeout as exc:
            return HoldOutcome(GuardResult(exc.kind, reason=exc.code))

        logger.info("compliance hold %s imposed on %s:%s", hold.id, subject_type, subject_id)
        return HoldOutcome(GuardResult(ResultKind.APPLIED, reason="hold_imposed", audit_entry_id=entry.id), hold)

    def release(self, principal: Principal, *, hold_id: UUID) -> HoldOutcome:
        try:
            with self.store.atomic():
                hold = ComplianceHold.objects.select_for_update().filter(id=hold_id).first()
                if hold is None:
                    return HoldOutcome(GuardResult(ResultKind.RESOURCE_NOT_FOUND, reason="hold_not_found"))

                ref = ResourceRef(
                    resource_type=hold.subject_type,
                    resource_id=hold.subject_id,
                    organization_id=hold.organization_id,
                    department_id=hold.department_id,
                )
                denied = self._authorize(principal, ref)
                if denied is not None:
                    return HoldOutcome(denied, hold)

                if not hold.is_active:
                    return HoldOutcome(GuardResult(ResultKind.IDEMPOTENT, reason="hold_already_released"), hold)

                now = self.clock()
                ComplianceHold.objects.filter(id=hold.id, status=HoldStatus.ACTIVE).update(
                    status=HoldStatus.RELEASED,
                    released_at=now,
                    released_by=principal.id,
                    updated_at=now,
                )
                hold.refresh_from_db()

                entry = self.recorder.record(
                    DecisionEvent(
                        principal=principal,
                        action=ACTION_HOLD_RELEASE,
                        ref=ref,
                        outcome=ResultKind.APPLIED,
                        reason="hold_released",
                        extra={"hold_id": hold.id},
                    )
                )
        except StorageTimeout as exc:
            return HoldOutcome(GuardResult(exc.kind, reason=exc.code))

        logger.info("compliance hold %s released", hold.id)
        return HoldOutcome(GuardResult(ResultKind.APPLIED, reason="hold_released", audit_entry_id=entry.id), hold)
