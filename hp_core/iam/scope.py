# hp_core/iam/scope.py
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple
from uuid import UUID

from hp_core.common.types import ResourceRef
from hp_core.iam.principals import OrgAssignment, Principal, RoleType

ScopePair = Tuple[UUID, Optional[UUID]]

REASON_GLOBAL = "global"
REASON_SELF = "self"
REASON_ASSIGNMENT = "assignment"
REASON_NO_ASSIGNMENT = "no_assignment"
REASON_NOT_SELF = "not_self"
REASON_NOT_PARTICIPANT = "not_participant"


@dataclass(frozen=True)
class ScopeResult:
    in_scope: bool
    matched_assignment: Optional[OrgAssignment] = None
    reason: str = ""


def assignment_covers(assignment: OrgAssignment, ref: ResourceRef) -> bool:
    """
    Organization-wide assignment (no department) covers every department of
    that organization; a department assignment covers only that department.
    """
    if not assignment.is_active:
        return False
    if assignment.organization_id != ref.organization_id:
        return False
    if assignment.department_id is None:
        return True
    return assignment.department_id == ref.department_id


class ScopeResolver:
    """
    Decides whether a resource falls inside the principal's organizational
    boundary. Absence of a matching assignment is always OutOfScope.
    """

    def scope_set(self, principal: Principal) -> FrozenSet[ScopePair]:
        return frozenset(
            (a.organization_id, a.department_id) for a in principal.active_assignments()
        )

    def resolve(self, principal: Principal, ref: ResourceRef) -> ScopeResult:
        if principal.is_system_admin:
            return ScopeResult(in_scope=True, reason=REASON_GLOBAL)

        matched = next(
            (a for a in principal.active_assignments() if assignment_covers(a, ref)),
            None,
        )
        if matched is None:
            return ScopeResult(in_scope=False, reason=REASON_NO_ASSIGNMENT)

        if principal.role_type == RoleType.PATIENT:
            if ref.owner_id is not None and ref.owner_id == principal.id:
                return ScopeResult(in_scope=True, matched_assignment=matched, reason=REASON_SELF)
            return ScopeResult(in_scope=False, matched_assignment=matched, reason=REASON_NOT_SELF)

        if principal.is_clinical and ref.has_clinical_linkage:
            if not self._participates(principal, ref):
                return ScopeResult(in_scope=False, matched_assignment=matched, reason=REASON_NOT_PARTICIPANT)

        return ScopeResult(in_scope=True, matched_assignment=matched, reason=REASON_ASSIGNMENT)

    @staticmethod
    def _participates(principal: Principal, ref: ResourceRef) -> bool:
        return (
            principal.id == ref.assigned_provider_id
            or principal.id in ref.participant_ids
            or principal.id == ref.owner_id
        )
