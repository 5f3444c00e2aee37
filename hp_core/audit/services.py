# hp_core/audit/services.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional
from uuid import UUID

from hp_core.audit.models import AuditLogEntry
from hp_core.common.conf import guard_setting
from hp_core.common.results import ResultKind
from hp_core.common.types import ResourceRef
from hp_core.iam.principals import Principal

if TYPE_CHECKING:
    from hp_core.lifecycle.store import RecordStore


@dataclass(frozen=True)
class DecisionEvent:
    principal: Principal
    action: str
    ref: ResourceRef
    outcome: ResultKind
    reason: str = ""
    matched_rule: str = ""
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class AuditRecorder:
    """
    Single writer of the audit trail.

    Entries are appended through the store inside the caller's transaction,
    so they commit or roll back together with the guarded mutation.
    """

    def __init__(
        self,
        store: "RecordStore",
        clock: Callable[[], datetime],
        id_factory: Callable[[], UUID],
    ):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory

    @staticmethod
    def should_record_denial(action: str) -> bool:
        return str(action) in guard_setting("AUDIT_DENIED_ACTIONS")

    @staticmethod
    def should_record_allowed_read(action: str) -> bool:
        return str(action) in guard_setting("AUDIT_ALLOWED_READ_ACTIONS")

    def build_entry(self, event: DecisionEvent) -> AuditLogEntry:
        context: Dict[str, Any] = {
            "reason": str(event.reason),
            "matched_rule": event.matched_rule,
        }
        if event.ref.department_id is not None:
            context["department_id"] = event.ref.department_id
        if event.from_state is not None:
            context["from_state"] = str(event.from_state)
        if event.to_state is not None:
            context["to_state"] = str(event.to_state)
        context.update(event.extra)

        return AuditLogEntry(
            id=self.id_factory(),
            actor_id=event.principal.id,
            actor_role=str(event.principal.role_type),
            organization_id=event.ref.organization_id,
            action_type=str(event.action),
            entity_type=event.ref.resource_type,
            entity_id=event.ref.resource_id,
            outcome=str(event.outcome),
            timestamp=self.clock(),
            context=context,
        )

    def record(self, event: DecisionEvent) -> AuditLogEntry:
        return self.store.append_audit(self.build_entry(event))
