# hp_core/iam/principals.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple
from uuid import UUID

from django.db import models


class RoleType(models.TextChoices):
    SYSTEM_ADMIN = "system_admin", "System admin"
    ORGANIZATION_ADMIN = "organization_admin", "Organization admin"
    DEPARTMENT_HEAD = "department_head", "Department head"
    MEDICAL_DOCTOR = "medical_doctor", "Medical doctor"
    NURSE = "nurse", "Nurse"
    TECHNICIAN = "technician", "Technician"
    RECEPTIONIST = "receptionist", "Receptionist"
    PATIENT = "patient", "Patient"


CLINICAL_ROLES = frozenset({RoleType.MEDICAL_DOCTOR, RoleType.NURSE})


class AssignmentStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


@dataclass(frozen=True)
class OrgAssignment:
    organization_id: UUID
    department_id: Optional[UUID] = None
    status: str = AssignmentStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE


@dataclass(frozen=True)
class VerifiedIdentity:
    """
    Claims of a token the auth collaborator has already verified.
    """
    subject_id: UUID
    role: str


@dataclass(frozen=True)
class Principal:
    """
    The authenticated actor for one request. Built by PrincipalResolver,
    immutable, never persisted or cached across requests.
    """
    id: UUID
    role_type: RoleType
    organization_assignments: Tuple[OrgAssignment, ...] = ()

    # DRF treats request.user as authenticated through this attribute.
    is_authenticated = True
    is_anonymous = False

    @property
    def is_system_admin(self) -> bool:
        return self.role_type == RoleType.SYSTEM_ADMIN

    @property
    def is_clinical(self) -> bool:
        return self.role_type in CLINICAL_ROLES

    def active_assignments(self) -> Tuple[OrgAssignment, ...]:
        return tuple(a for a in self.organization_assignments if a.is_active)
