# hp_core/guard/services.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from hp_core.audit.services import AuditRecorder, DecisionEvent
from hp_core.common.conf import guard_setting
from hp_core.common.errors import StorageTimeout, UnsupportedTransition
from hp_core.common.results import GuardResult, ResultKind
from hp_core.common.types import STATE_CHANGING_ACTIONS, ActionRequest, ActionType, ResourceRef
from hp_core.iam.principals import Principal
from hp_core.iam.scope import ScopeResolver
from hp_core.lifecycle.guard import LifecycleGuard, TransitionPlan
from hp_core.lifecycle.registry import DEFAULT_REGISTRY, ResourceRegistry, ResourceSpec
from hp_core.lifecycle.states import DELETE_TRANSITIONS, TRANSITION_FOR_ACTION, ResourceSnapshot, Transition
from hp_core.lifecycle.store import RecordStore, hold_subjects
from hp_core.rules.engine import PolicyDecision, PolicyEvaluator

logger = logging.getLogger(__name__)

NEEDS_REF_ACTIONS = frozenset({ActionType.CREATE, ActionType.LIST})


class RecordGuard:
    """
    Composes principal scope, policy, lifecycle planning and audit into one
    guarded call.

    authorize(): read-only decisions (read, list, export, create).
    execute(): state-changing actions, one transaction per call.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime],
        id_factory: Callable[[], UUID],
        *,
        registry: Optional[ResourceRegistry] = None,
        scope_resolver: Optional[ScopeResolver] = None,
        evaluator: Optional[PolicyEvaluator] = None,
        lifecycle_guard: Optional[LifecycleGuard] = None,
        recorder: Optional[AuditRecorder] = None,
    ):
        self.store = store
        self.clock = clock
        self.registry = registry or DEFAULT_REGISTRY
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.evaluator = evaluator or PolicyEvaluator(registry=self.registry, scope_resolver=self.scope_resolver)
        self.lifecycle_guard = lifecycle_guard or LifecycleGuard(self.registry)
        self.recorder = recorder or AuditRecorder(store, clock, id_factory)

    # ------------------------------------------------------------------
    # read-only
    # ------------------------------------------------------------------
    def authorize(
        self,
        principal: Principal,
        request: ActionRequest,
        ref: Optional[ResourceRef] = None,
    ) -> GuardResult:
        """
        For create/list, pass a ref describing the target scope (and parent
        links); otherwise the resource is fetched fresh and must be active.
        """
        action = self.registry.resolve_action(request.action, request.resource_type)
        if action in STATE_CHANGING_ACTIONS:
            raise UnsupportedTransition(
                f"{action.value} changes state; use execute().",
                details={"action": action.value},
            )
        if ref is None and action in NEEDS_REF_ACTIONS:
            raise UnsupportedTransition(
                f"{action.value} needs an explicit target ref.",
                details={"action": action.value},
            )

        try:
            with self.store.atomic():
                if ref is None:
                    snapshot = self.store.fetch(request.resource_type, request.resource_id)
                    if snapshot is None or not snapshot.state.is_active:
                        return GuardResult(ResultKind.RESOURCE_NOT_FOUND, reason="not_found")
                    ref = snapshot.ref

                decision = self.evaluator.evaluate(principal, action, ref)
                if not decision.allowed:
                    result = self._deny(principal, request, action, ref, decision)
                else:
                    entry_id = None
                    if self.recorder.should_record_allowed_read(action):
                        entry_id = self.recorder.record(
                            DecisionEvent(
                                principal=principal,
                                action=action,
                                ref=ref,
                                outcome=ResultKind.ALLOWED,
                                reason=decision.reason,
                                matched_rule=decision.matched_rule,
                                extra=self._request_context(request),
                            )
                        ).id
                    result = GuardResult(
                        ResultKind.ALLOWED,
                        reason=decision.reason,
                        matched_rule=decision.matched_rule,
                        decision=decision,
                        audit_entry_id=entry_id,
                    )
        except StorageTimeout as exc:
            logger.error("authorize %s %s:%s failed: storage timeout", action, request.resource_type, request.resource_id)
            return GuardResult(exc.kind, reason=exc.code)

        self._log(principal, request, action, result)
        return result

    # ------------------------------------------------------------------
    # state-changing
    # ------------------------------------------------------------------
    def execute(
        self,
        principal: Principal,
        request: ActionRequest,
        timeout_ms: Optional[int] = None,
    ) -> GuardResult:
        spec = self.registry.get(request.resource_type)
        action = self.registry.resolve_action(request.action, request.resource_type)
        transition = TRANSITION_FOR_ACTION.get(action)
        if transition is None or not spec.supports(transition):
            raise UnsupportedTransition(
                f"{request.resource_type} does not support {action.value}.",
                details={"resource_type": request.resource_type, "action": action.value},
            )

        if timeout_ms is None:
            timeout_ms = guard_setting("DEFAULT_TIMEOUT_MS")

        try:
            with self.store.atomic(timeout_ms):
                result = self._execute(principal, request, spec, action, transition)
        except StorageTimeout as exc:
            logger.error(
                "%s %s:%s rolled back: storage timeout",
                action, request.resource_type, request.resource_id,
            )
            return GuardResult(exc.kind, reason=exc.code)

        self._log(principal, request, action, result)
        return result

    def _execute(
        self,
        principal: Principal,
        request: ActionRequest,
        spec: ResourceSpec,
        action: ActionType,
        transition: Transition,
    ) -> GuardResult:
        snapshot = self.store.fetch(request.resource_type, request.resource_id, for_update=True)
        if snapshot is None:
            return GuardResult(ResultKind.RESOURCE_NOT_FOUND, reason="not_found")

        decision = self.evaluator.evaluate(principal, action, snapshot.ref)
        if not decision.allowed:
            return self._deny(principal, request, action, snapshot.ref, decision)

        holds, blockers = (), ()
        if transition in DELETE_TRANSITIONS:
            subjects = hold_subjects(snapshot.ref)
            # the resource row is already locked; hold the parents and organization until commit
            self.store.lock_subjects(subjects[1:])
            holds = self.store.active_holds(subjects)
            blockers = self.store.find_blockers(spec, snapshot)

        plan = self.lifecycle_guard.plan(
            principal,
            transition,
            snapshot,
            at=self.clock(),
            holds=holds,
            blockers=blockers,
            changes=request.changes,
        )

        if plan.outcome == ResultKind.IDEMPOTENT:
            return self._result(plan, decision)

        if not plan.should_apply:
            entry_id = None
            if self.recorder.should_record_denial(action):
                entry_id = self._record(principal, request, action, snapshot, plan, decision).id
            return self._result(plan, decision, entry_id)

        rows = self.store.apply(plan.mutation)
        if rows == 0:
            # lost a race; the winner wrote the audit entry
            after = self.store.fetch(request.resource_type, request.resource_id)
            return self._result(self.lifecycle_guard.reconcile(transition, after), decision)

        entry = self._record(principal, request, action, snapshot, plan, decision)
        return self._result(plan, decision, entry.id)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _request_context(request: ActionRequest) -> dict:
        extra = {}
        if request.changes:
            extra["changed_fields"] = sorted(request.changes)
        if request.context:
            extra["request"] = dict(request.context)
        return extra

    @staticmethod
    def _result(plan: TransitionPlan, decision: PolicyDecision, audit_entry_id: Optional[UUID] = None) -> GuardResult:
        return GuardResult(
            plan.outcome,
            reason=plan.reason,
            matched_rule=decision.matched_rule,
            decision=decision,
            plan=plan,
            audit_entry_id=audit_entry_id,
        )

    def _record(
        self,
        principal: Principal,
        request: ActionRequest,
        action: ActionType,
        snapshot: ResourceSnapshot,
        plan: TransitionPlan,
        decision: PolicyDecision,
    ):
        extra = self._request_context(request)
        if plan.blocking:
            extra["blocking"] = list(plan.blocking)
        return self.recorder.record(
            DecisionEvent(
                principal=principal,
                action=action,
                ref=snapshot.ref,
                outcome=plan.outcome,
                reason=plan.reason,
                matched_rule=decision.matched_rule,
                from_state=plan.from_state.kind,
                to_state=plan.to_state.kind,
                extra=extra,
            )
        )

    def _deny(
        self,
        principal: Principal,
        request: ActionRequest,
        action: ActionType,
        ref: ResourceRef,
        decision: PolicyDecision,
    ) -> GuardResult:
        kind = decision.result_kind
        entry_id = None
        if self.recorder.should_record_denial(action):
            entry_id = self.recorder.record(
                DecisionEvent(
                    principal=principal,
                    action=action,
                    ref=ref,
                    outcome=kind,
                    reason=decision.reason,
                    matched_rule=decision.matched_rule,
                    extra=self._request_context(request),
                )
            ).id
        return GuardResult(
            kind,
            reason=decision.reason,
            matched_rule=decision.matched_rule,
            decision=decision,
            audit_entry_id=entry_id,
        )

    @staticmethod
    def _log(principal: Principal, request: ActionRequest, action: ActionType, result: GuardResult) -> None:
        msg = "%s %s:%s by %s (%s) -> %s [%s]"
        args = (action, request.resource_type, request.resource_id, principal.id, principal.role_type, result.kind, result.reason)
        if result.ok:
            logger.info(msg, *args)
        else:
            logger.warning(msg, *args)
