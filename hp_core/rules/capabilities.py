# hp_core/rules/capabilities.py
"""
role x action x resource_type -> Capability.

The default table is declared per resource type as {role: {actions: capability}}.
Anything not declared is DENIED. CONDITIONAL capabilities are further checked
by the resource type's predicate (see hp_core.rules.predicates).
"""
from __future__ import annotations

from typing import Dict, Iterable, Mapping, Tuple, Union

from django.db import models

from hp_core.common.types import ActionType
from hp_core.iam.principals import RoleType
from hp_core.lifecycle import registry as types


class Capability(models.TextChoices):
    ALLOWED = "allowed", "Allowed"
    CONDITIONAL = "conditional", "Conditional"
    DENIED = "denied", "Denied"


A = Capability.ALLOWED
C = Capability.CONDITIONAL

READ = ActionType.READ
LIST = ActionType.LIST
CREATE = ActionType.CREATE
UPDATE = ActionType.UPDATE
SOFT = ActionType.SOFT_DELETE
HARD = ActionType.HARD_DELETE
RESTORE = ActionType.RESTORE
EXPORT = ActionType.EXPORT

READS = (READ, LIST, EXPORT)
BROWSE = (READ, LIST)
ALL = (READ, LIST, EXPORT, CREATE, UPDATE, SOFT, HARD, RESTORE)

SA = RoleType.SYSTEM_ADMIN
OA = RoleType.ORGANIZATION_ADMIN
DH = RoleType.DEPARTMENT_HEAD
DOC = RoleType.MEDICAL_DOCTOR
NURSE = RoleType.NURSE
TECH = RoleType.TECHNICIAN
RECEP = RoleType.RECEPTIONIST
PATIENT = RoleType.PATIENT

ActionGroup = Union[str, Tuple[str, ...]]
Declaration = Mapping[str, Mapping[ActionGroup, Capability]]

_ADMINS = {SA: {ALL: A}, OA: {ALL: A}}


DEFAULT_DECLARATIONS: Dict[str, Declaration] = {
    types.PATIENT_RECORD: {
        **_ADMINS,
        DH: {READS: A, (CREATE, UPDATE, SOFT, RESTORE): A},
        DOC: {READS: A, (CREATE, UPDATE): A},
        NURSE: {READS: A, UPDATE: A},
        TECH: {READ: A},
        RECEP: {BROWSE: A, (CREATE, UPDATE): A},
        PATIENT: {(READ, EXPORT): C},
    },
    types.APPOINTMENT: {
        **_ADMINS,
        DH: {READS: A, (CREATE, UPDATE, SOFT, RESTORE): A},
        DOC: {READS: A, CREATE: A, (UPDATE, SOFT): C},
        NURSE: {READS: A, UPDATE: C},
        RECEP: {BROWSE: A, (CREATE, UPDATE, SOFT, RESTORE): A},
    },
    types.APPOINTMENT_REMINDER: {
        **_ADMINS,
        DOC: {BROWSE: A, CREATE: A, (UPDATE, SOFT): C},
        NURSE: {BROWSE: A, CREATE: A, (UPDATE, SOFT): C},
        RECEP: {BROWSE: A, (CREATE, UPDATE, SOFT, RESTORE): A},
    },
    types.LAB_RESULT: {
        **_ADMINS,
        DH: {READS: A, UPDATE: A},
        DOC: {READS: A, CREATE: A, (UPDATE, SOFT, HARD): C},
        NURSE: {READS: A},
        TECH: {BROWSE: A, (CREATE, UPDATE): A},
    },
    types.MEDICAL_IMAGE: {
        **_ADMINS,
        DH: {READS: A},
        DOC: {READS: A},
        NURSE: {BROWSE: A},
        TECH: {BROWSE: A, CREATE: A, (UPDATE, HARD): C},
    },
    types.BILLING_INVOICE: {
        **_ADMINS,
        DH: {READS: A},
        RECEP: {READS: A, (CREATE, UPDATE, SOFT, RESTORE): A},
    },
    types.INSURANCE_CLAIM: {
        **_ADMINS,
        DH: {READS: A},
        RECEP: {READS: A, (CREATE, UPDATE, SOFT, RESTORE): A},
    },
    types.DASHBOARD_PREFERENCE: {
        SA: {ALL: A},
        **{
            role: {(READ, LIST, CREATE, UPDATE, SOFT, RESTORE): C}
            for role in (OA, DH, DOC, NURSE, TECH, RECEP, PATIENT)
        },
    },
    types.MFA_FACTOR: {
        SA: {ALL: A},
        OA: {(READ, LIST, HARD): A, CREATE: C},
        **{role: {(READ, LIST, CREATE, HARD): C} for role in (DH, DOC, NURSE, TECH, RECEP, PATIENT)},
    },
    types.RECORD_AMENDMENT: {
        **_ADMINS,
        DH: {READS: A, UPDATE: A},
        DOC: {READS: A, CREATE: A, (UPDATE, SOFT, HARD): C},
        NURSE: {BROWSE: A, CREATE: A, (UPDATE, SOFT): C},
        PATIENT: {(READ, UPDATE, SOFT): C},
    },
    types.TELEMEDICINE_SESSION: {
        **_ADMINS,
        DH: {READS: A},
        DOC: {READS: A, CREATE: A, (UPDATE, SOFT): C},
        NURSE: {BROWSE: A},
        RECEP: {BROWSE: A, (CREATE, SOFT, RESTORE): A},
    },
    types.VITAL: {
        **_ADMINS,
        DH: {READS: A},
        DOC: {READS: A, CREATE: A, (UPDATE, SOFT): C},
        NURSE: {READS: A, CREATE: A, (UPDATE, SOFT): C},
    },
}


def _actions(group: ActionGroup) -> Iterable[str]:
    return (group,) if isinstance(group, str) else group


class CapabilityTable:
    def __init__(self, entries: Mapping[Tuple[str, str, str], Capability]):
        self._entries = dict(entries)

    @classmethod
    def from_declarations(cls, declarations: Mapping[str, Declaration]) -> "CapabilityTable":
        entries: Dict[Tuple[str, str, str], Capability] = {}
        for resource_type, roles in declarations.items():
            for role, groups in roles.items():
                for group, capability in groups.items():
                    for action in _actions(group):
                        entries[(str(role), str(action), resource_type)] = capability
        return cls(entries)

    def lookup(self, role: str, action: str, resource_type: str) -> Capability:
        return self._entries.get((str(role), str(action), resource_type), Capability.DENIED)

    @staticmethod
    def rule_id(role: str, action: str, resource_type: str) -> str:
        return f"{resource_type}.{action}.{role}"


DEFAULT_TABLE = CapabilityTable.from_declarations(DEFAULT_DECLARATIONS)
