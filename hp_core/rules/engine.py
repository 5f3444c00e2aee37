# hp_core/rules/engine.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from hp_core.common.results import ResultKind
from hp_core.common.types import ActionType, ResourceRef
from hp_core.iam.principals import Principal, RoleType
from hp_core.iam.scope import ScopeResolver, ScopeResult
from hp_core.lifecycle.registry import DEFAULT_REGISTRY, ResourceRegistry
from hp_core.rules.capabilities import DEFAULT_TABLE, Capability, CapabilityTable
from hp_core.rules.predicates import DenyReason, PredicateKind, check_predicate

ALLOW = "allow"
DENY = "deny"


@dataclass(frozen=True)
class PolicyDecision:
    decision: str
    action: ActionType
    reason: str = ""
    matched_rule: str = ""

    @property
    def allowed(self) -> bool:
        return self.decision == ALLOW

    @property
    def result_kind(self) -> ResultKind:
        if self.allowed:
            return ResultKind.ALLOWED
        if self.reason == DenyReason.OUT_OF_SCOPE:
            return ResultKind.OUT_OF_SCOPE
        return ResultKind.FORBIDDEN


class PolicyEvaluator:
    """
    Single parameterized evaluator over the capability table.

    Order: capability (fast reject), scope, predicate (conditional only).
    The first failure short-circuits.
    """

    def __init__(
        self,
        table: Optional[CapabilityTable] = None,
        registry: Optional[ResourceRegistry] = None,
        scope_resolver: Optional[ScopeResolver] = None,
    ):
        self.table = table or DEFAULT_TABLE
        self.registry = registry or DEFAULT_REGISTRY
        self.scope_resolver = scope_resolver or ScopeResolver()

    def evaluate(
        self,
        principal: Principal,
        action: str,
        ref: ResourceRef,
        scope: Optional[ScopeResult] = None,
    ) -> PolicyDecision:
        spec = self.registry.get(ref.resource_type)
        action = self.registry.resolve_action(action, ref.resource_type)
        rule = self.table.rule_id(principal.role_type, action, ref.resource_type)

        capability = self.table.lookup(principal.role_type, action, ref.resource_type)
        if capability == Capability.DENIED:
            return PolicyDecision(DENY, action, DenyReason.ROLE_NOT_PERMITTED, rule)

        if scope is None:
            scope = self.scope_resolver.resolve(principal, ref)
        if not scope.in_scope:
            return PolicyDecision(DENY, action, DenyReason.OUT_OF_SCOPE, rule)

        if capability == Capability.CONDITIONAL:
            failed = check_predicate(spec.predicate, principal, ref)
            if failed is not None:
                return PolicyDecision(DENY, action, failed, rule)

        return PolicyDecision(ALLOW, action, capability.value, rule)

    def constrain_filter(self, principal: Principal, resource_type: str, filters: Dict[str, Any]) -> Dict[str, Any]:
        """
        Narrow a list query for self-only types (and for patients, on any
        owned type) to the principal's own rows, whatever owner was requested.
        """
        spec = self.registry.get(resource_type)
        constrained = dict(filters)
        if principal.is_system_admin or not spec.owner_field:
            return constrained
        if spec.predicate == PredicateKind.SELF_ONLY or principal.role_type == RoleType.PATIENT:
            constrained[spec.owner_field] = principal.id
        return constrained
