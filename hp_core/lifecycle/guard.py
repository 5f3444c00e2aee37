# hp_core/lifecycle/guard.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple
from uuid import UUID

from hp_core.common.conf import guard_setting
from hp_core.common.errors import ProtectedFieldChange, UnknownField, UnsupportedTransition
from hp_core.common.results import ResultKind
from hp_core.iam.principals import Principal
from hp_core.lifecycle.registry import DEFAULT_REGISTRY, ResourceRegistry, ResourceSpec
from hp_core.lifecycle.states import (
    DELETE_TRANSITIONS,
    LifecycleKind,
    LifecycleState,
    ResourceSnapshot,
    Transition,
)

OP_UPDATE = "update"
OP_DELETE = "delete"


@dataclass(frozen=True)
class MutationPlan:
    """
    Pure description of the write. conditions are ORM lookups the row must
    still satisfy; a conditional write that matches zero rows lost a race.
    """
    resource_type: str
    resource_id: UUID
    operation: str
    values: Dict[str, Any] = field(default_factory=dict)
    conditions: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HoldRef:
    hold_id: UUID
    subject_type: str
    subject_id: UUID


@dataclass(frozen=True)
class BlockingItem:
    code: str
    related_type: str
    related_id: UUID
    status: Optional[str] = None


@dataclass(frozen=True)
class TransitionPlan:
    outcome: ResultKind
    transition: Transition
    from_state: LifecycleState
    to_state: LifecycleState
    mutation: Optional[MutationPlan] = None
    reason: str = ""
    blocking: Tuple[str, ...] = ()

    @property
    def should_apply(self) -> bool:
        return self.outcome == ResultKind.APPLIED and self.mutation is not None


class LifecycleGuard:
    """
    Plans lifecycle transitions. Never writes: holds and blockers are read by
    the caller inside the same transaction and passed in.

    Check order: idempotency / admissibility, compliance holds, declared
    blockers, business lock.
    """

    def __init__(self, registry: Optional[ResourceRegistry] = None):
        self.registry = registry or DEFAULT_REGISTRY

    def spec_for(self, resource_type: str) -> ResourceSpec:
        return self.registry.get(resource_type)

    def plan(
        self,
        principal: Principal,
        transition: str,
        snapshot: ResourceSnapshot,
        *,
        at: datetime,
        holds: Sequence[HoldRef] = (),
        blockers: Sequence[BlockingItem] = (),
        changes: Optional[Dict[str, Any]] = None,
    ) -> TransitionPlan:
        spec = self.spec_for(snapshot.ref.resource_type)
        transition = Transition(transition)
        if not spec.supports(transition):
            raise UnsupportedTransition(
                f"{spec.resource_type} does not support {transition.value}.",
                details={"resource_type": spec.resource_type, "transition": transition.value},
            )

        current = snapshot.state

        def outcome(kind: ResultKind, reason: str, blocking: Tuple[str, ...] = ()) -> TransitionPlan:
            return TransitionPlan(
                outcome=kind,
                transition=transition,
                from_state=current,
                to_state=current,
                reason=reason,
                blocking=blocking,
            )

        early = self._check_state(spec, transition, current, changes)
        if early is not None:
            return outcome(*early)

        if transition in DELETE_TRANSITIONS:
            if holds:
                return outcome(
                    ResultKind.COMPLIANCE_BLOCKED,
                    "compliance_hold",
                    tuple(f"hold:{h.subject_type}:{h.subject_id}" for h in holds),
                )
            if blockers:
                return outcome(
                    ResultKind.COMPLIANCE_BLOCKED,
                    f"blocked_by:{blockers[0].code}",
                    tuple(f"{b.related_type}:{b.related_id}" for b in blockers),
                )

        if self._locked(spec, principal, transition, snapshot, changes):
            return outcome(ResultKind.BUSINESS_LOCKED, f"status_locked:{snapshot.status}")

        to_state, mutation = self._mutation(spec, transition, snapshot, at, changes or {})
        return TransitionPlan(
            outcome=ResultKind.APPLIED,
            transition=transition,
            from_state=current,
            to_state=to_state,
            mutation=mutation,
            reason=transition.value,
        )

    def reconcile(self, transition: str, snapshot_after: Optional[ResourceSnapshot]) -> TransitionPlan:
        """
        Classify a conditional write that matched zero rows: another request
        won the race. A soft delete that lost is idempotent; a hard delete
        that lost finds the resource already terminal.

        With DjangoRecordStore the guarded row is locked before planning, so
        a hard-delete loser blocks until the winner commits, re-reads no row
        and gets RESOURCE_NOT_FOUND instead. This path covers stores that plan
        without a row lock.
        """
        transition = Transition(transition)
        after = snapshot_after.state if snapshot_after is not None else LifecycleState.hard_deleted()

        target = {
            Transition.SOFT_DELETE: LifecycleKind.SOFT_DELETED,
            Transition.RESTORE: LifecycleKind.ACTIVE,
        }.get(transition)

        if transition != Transition.HARD_DELETE and not after.is_terminal and after.kind == target:
            kind, reason = ResultKind.IDEMPOTENT, "concurrent_transition"
        else:
            kind, reason = ResultKind.ALREADY_TERMINAL, "concurrent_transition"

        return TransitionPlan(outcome=kind, transition=transition, from_state=after, to_state=after, reason=reason)

    @staticmethod
    def _check_state(
        spec: ResourceSpec,
        transition,
        current: LifecycleState,
        changes,
    ) -> Optional[Tuple[ResultKind, str]]:
        if current.is_terminal:
            return ResultKind.ALREADY_TERMINAL, "hard_deleted"

        if transition == Transition.SOFT_DELETE:
            if current.kind == LifecycleKind.SOFT_DELETED:
                return ResultKind.IDEMPOTENT, "already_soft_deleted"
        elif transition == Transition.RESTORE:
            if current.is_active:
                return ResultKind.IDEMPOTENT, "already_active"
        elif transition == Transition.UPDATE:
            if not current.is_active:
                return ResultKind.ALREADY_TERMINAL, "not_active"
            requested = set(changes or {})
            unknown = sorted(requested - spec.field_names)
            if unknown:
                raise UnknownField(
                    f"{spec.resource_type} has no field(s) {', '.join(unknown)}.",
                    details={"fields": unknown},
                )
            protected = sorted(
                requested & (set(guard_setting("PROTECTED_UPDATE_FIELDS")) | spec.protected_fields)
            )
            if protected:
                raise ProtectedFieldChange(
                    "Update may not change lifecycle, scope or link fields.",
                    details={"fields": protected},
                )
            if not changes:
                return ResultKind.IDEMPOTENT, "no_changes"
        return None

    @staticmethod
    def _locked(
        spec: ResourceSpec,
        principal: Principal,
        transition: Transition,
        snapshot: ResourceSnapshot,
        changes: Optional[Dict[str, Any]],
    ) -> bool:
        lock = spec.business_lock
        if lock is None:
            return False
        if lock.locks(status=snapshot.status, transition=transition, role_type=principal.role_type):
            return True
        if transition == Transition.UPDATE and spec.status_field in (changes or {}):
            return lock.locks_status_change(
                status=snapshot.status,
                new_status=changes[spec.status_field],
                role_type=principal.role_type,
            )
        return False

    @staticmethod
    def _mutation(
        spec: ResourceSpec,
        transition: Transition,
        snapshot: ResourceSnapshot,
        at: datetime,
        changes: Dict[str, Any],
    ) -> Tuple[LifecycleState, MutationPlan]:
        ref = snapshot.ref
        if transition == Transition.SOFT_DELETE:
            return LifecycleState.soft_deleted(at), MutationPlan(
                ref.resource_type, ref.resource_id, OP_UPDATE,
                values={"deleted_at": at, "updated_at": at},
                conditions={"deleted_at__isnull": True},
            )
        if transition == Transition.HARD_DELETE:
            return LifecycleState.hard_deleted(), MutationPlan(ref.resource_type, ref.resource_id, OP_DELETE)
        if transition == Transition.RESTORE:
            return LifecycleState.active(), MutationPlan(
                ref.resource_type, ref.resource_id, OP_UPDATE,
                values={"deleted_at": None, "updated_at": at},
                conditions={"deleted_at__isnull": False},
            )

        conditions = {"deleted_at__isnull": True} if spec.soft_delete else {}
        return snapshot.state, MutationPlan(
            ref.resource_type, ref.resource_id, OP_UPDATE,
            values={**changes, "updated_at": at},
            conditions=conditions,
        )
