# hp_core/rules/predicates.py
from __future__ import annotations

from typing import Callable, Dict, Optional

from django.db import models

from hp_core.common.types import ResourceRef
from hp_core.iam.principals import Principal


class PredicateKind(models.TextChoices):
    NONE = "none", "None"
    OWNERSHIP = "ownership", "Ownership"
    ASSIGNMENT = "assignment", "Assignment"
    SELF_ONLY = "self_only", "Self only"


class DenyReason(models.TextChoices):
    ROLE_NOT_PERMITTED = "role_not_permitted", "Role not permitted"
    OUT_OF_SCOPE = "out_of_scope", "Out of scope"
    NOT_OWNER = "not_owner", "Not the owner"
    NOT_ASSIGNED_PROVIDER = "not_assigned_provider", "Not the assigned provider"
    NOT_SELF = "not_self", "Not the principal's own resource"


# A predicate returns None when it passes, or the DenyReason it failed with.
Predicate = Callable[[Principal, ResourceRef], Optional[DenyReason]]


def _no_predicate(principal: Principal, ref: ResourceRef) -> Optional[DenyReason]:
    return None


def _ownership(principal: Principal, ref: ResourceRef) -> Optional[DenyReason]:
    # dashboard preferences, amendments (submitter), images (uploader)
    if ref.owner_id is None or ref.owner_id != principal.id:
        return DenyReason.NOT_OWNER
    return None


def _assignment(principal: Principal, ref: ResourceRef) -> Optional[DenyReason]:
    # appointments, telemedicine sessions, vitals, lab results
    if ref.assigned_provider_id is None or ref.assigned_provider_id != principal.id:
        return DenyReason.NOT_ASSIGNED_PROVIDER
    return None


def _self_only(principal: Principal, ref: ResourceRef) -> Optional[DenyReason]:
    if ref.owner_id is None or ref.owner_id != principal.id:
        return DenyReason.NOT_SELF
    return None


PREDICATES: Dict[str, Predicate] = {
    PredicateKind.NONE: _no_predicate,
    PredicateKind.OWNERSHIP: _ownership,
    PredicateKind.ASSIGNMENT: _assignment,
    PredicateKind.SELF_ONLY: _self_only,
}


def check_predicate(kind: PredicateKind, principal: Principal, ref: ResourceRef) -> Optional[DenyReason]:
    return PREDICATES[kind](principal, ref)
