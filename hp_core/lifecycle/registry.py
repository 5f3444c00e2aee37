# hp_core/lifecycle/registry.py
"""
Declarative state machine per resource type.

Each ResourceSpec says which lifecycle states the type supports, which
predicate guards conditional capabilities, how its columns map onto a
ResourceRef, and what blocks or locks its transitions.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from django.apps import apps

from hp_core.common.errors import UnknownResourceType
from hp_core.common.types import ActionType
from hp_core.lifecycle.states import DELETE_TRANSITIONS, LifecycleKind, Transition
from hp_core.records.models import ClaimStatus, InvoiceStatus, LabResultStatus, RecordStatus
from hp_core.rules.predicates import PredicateKind

PATIENT_RECORD = "patient_record"
APPOINTMENT = "appointment"
APPOINTMENT_REMINDER = "appointment_reminder"
LAB_RESULT = "lab_result"
MEDICAL_IMAGE = "medical_image"
BILLING_INVOICE = "billing_invoice"
INSURANCE_CLAIM = "insurance_claim"
DASHBOARD_PREFERENCE = "dashboard_preference"
MFA_FACTOR = "mfa_factor"
RECORD_AMENDMENT = "record_amendment"
TELEMEDICINE_SESSION = "telemedicine_session"
VITAL = "vital"

ORGANIZATION = "organization"

CHILDREN = "children"
PARENT = "parent"


@dataclass(frozen=True)
class Blocker:
    """
    Sibling state that blocks a delete.

    CHILDREN: rows of related_type whose link_field points at the resource.
    PARENT: the related_type row the resource's link_field points at.
    A related row blocks when its status is in blocking_statuses, or, when
    nonblocking_statuses is given instead, when its status is outside it.
    """
    code: str
    related_type: str
    direction: str
    link_field: str
    blocking_statuses: FrozenSet[str] = frozenset()
    nonblocking_statuses: FrozenSet[str] = frozenset()

    def blocks(self, status: Optional[str]) -> bool:
        if self.nonblocking_statuses:
            return status not in self.nonblocking_statuses
        return status in self.blocking_statuses


@dataclass(frozen=True)
class BusinessLock:
    statuses: FrozenSet[str]
    transitions: FrozenSet[str] = DELETE_TRANSITIONS
    exempt_roles: FrozenSet[str] = frozenset()

    def locks(self, *, status: Optional[str], transition: str, role_type: str) -> bool:
        if role_type in self.exempt_roles:
            return False
        return status in self.statuses and transition in self.transitions

    def locks_status_change(self, *, status: Optional[str], new_status: Optional[str], role_type: str) -> bool:
        """An update may not move a record out of a locked status."""
        if role_type in self.exempt_roles:
            return False
        return status in self.statuses and new_status not in self.statuses


@dataclass(frozen=True)
class ResourceSpec:
    resource_type: str
    model_label: str
    soft_delete: bool
    hard_delete: bool
    predicate: PredicateKind = PredicateKind.NONE
    owner_field: Optional[str] = None
    provider_field: Optional[str] = None
    participants_field: Optional[str] = None
    status_field: Optional[str] = None
    links: Tuple[Tuple[str, str], ...] = ()
    blockers: Tuple[Blocker, ...] = ()
    business_lock: Optional[BusinessLock] = None

    @property
    def model(self):
        return apps.get_model(self.model_label)

    @property
    def protected_fields(self) -> FrozenSet[str]:
        """Columns that place the record in scope or under a hold."""
        names = {self.owner_field, self.provider_field, self.participants_field}
        names.update(field_name for _, field_name in self.links)
        names.discard(None)
        return frozenset(names)

    @property
    def field_names(self) -> FrozenSet[str]:
        return frozenset(f.attname for f in self.model._meta.concrete_fields)

    @property
    def delete_transition(self) -> Transition:
        return Transition.SOFT_DELETE if self.soft_delete else Transition.HARD_DELETE

    @property
    def supported_kinds(self) -> FrozenSet[LifecycleKind]:
        kinds = {LifecycleKind.ACTIVE}
        if self.soft_delete:
            kinds.add(LifecycleKind.SOFT_DELETED)
        if self.hard_delete:
            kinds.add(LifecycleKind.HARD_DELETED)
        return frozenset(kinds)

    def supports(self, transition: str) -> bool:
        if transition == Transition.SOFT_DELETE:
            return self.soft_delete
        if transition == Transition.HARD_DELETE:
            return self.hard_delete
        if transition == Transition.RESTORE:
            return self.soft_delete
        return transition == Transition.UPDATE


class ResourceRegistry:
    def __init__(self, specs: Iterable[ResourceSpec]):
        self._specs: Dict[str, ResourceSpec] = {s.resource_type: s for s in specs}

    def __contains__(self, resource_type: str) -> bool:
        return resource_type in self._specs

    def types(self) -> Tuple[str, ...]:
        return tuple(self._specs)

    def get(self, resource_type: str) -> ResourceSpec:
        try:
            return self._specs[resource_type]
        except KeyError:
            raise UnknownResourceType(
                f"No resource spec registered for '{resource_type}'.",
                details={"resource_type": resource_type},
            ) from None

    def resolve_action(self, action: str, resource_type: str) -> ActionType:
        """DELETE is an alias for the type's own delete transition."""
        action = ActionType(action)
        if action != ActionType.DELETE:
            return action
        return ActionType(self.get(resource_type).delete_transition.value)


_DELETES = DELETE_TRANSITIONS
_DELETES_AND_UPDATE = DELETE_TRANSITIONS | {Transition.UPDATE}

DEFAULT_SPECS = (
    ResourceSpec(
        PATIENT_RECORD, "records.PatientRecord", soft_delete=True, hard_delete=True,
        predicate=PredicateKind.OWNERSHIP,
        owner_field="patient_id",
        status_field="status",
        business_lock=BusinessLock(statuses=frozenset({RecordStatus.LOCKED}), transitions=_DELETES),
    ),
    ResourceSpec(
        APPOINTMENT, "records.Appointment", soft_delete=True, hard_delete=False,
        predicate=PredicateKind.ASSIGNMENT,
        provider_field="provider_id",
        status_field="status",
        links=((PATIENT_RECORD, "patient_record_id"),),
        blockers=(
            Blocker(
                code="billed_appointment",
                related_type=BILLING_INVOICE,
                direction=CHILDREN,
                link_field="appointment_id",
                nonblocking_statuses=frozenset({InvoiceStatus.DRAFT}),
            ),
        ),
    ),
    ResourceSpec(
        APPOINTMENT_REMINDER, "records.AppointmentReminder", soft_delete=True, hard_delete=False,
        predicate=PredicateKind.OWNERSHIP,
        owner_field="created_by_id",
        links=((APPOINTMENT, "appointment_id"),),
    ),
    ResourceSpec(
        LAB_RESULT, "records.LabResult", soft_delete=True, hard_delete=True,
        predicate=PredicateKind.ASSIGNMENT,
        provider_field="ordering_provider_id",
        status_field="status",
        links=((PATIENT_RECORD, "patient_record_id"),),
        business_lock=BusinessLock(
            statuses=frozenset({LabResultStatus.COMPLETED, LabResultStatus.FINALIZED}),
            transitions=_DELETES,
        ),
    ),
    ResourceSpec(
        MEDICAL_IMAGE, "records.MedicalImage", soft_delete=False, hard_delete=True,
        predicate=PredicateKind.OWNERSHIP,
        owner_field="uploaded_by_id",
        links=((PATIENT_RECORD, "patient_record_id"),),
        blockers=(
            Blocker(
                code="locked_patient_record",
                related_type=PATIENT_RECORD,
                direction=PARENT,
                link_field="patient_record_id",
                blocking_statuses=frozenset({RecordStatus.LOCKED}),
            ),
        ),
    ),
    ResourceSpec(
        BILLING_INVOICE, "records.BillingInvoice", soft_delete=True, hard_delete=False,
        status_field="status",
        links=((PATIENT_RECORD, "patient_record_id"), (APPOINTMENT, "appointment_id")),
        business_lock=BusinessLock(
            statuses=frozenset({InvoiceStatus.FINALIZED, InvoiceStatus.PAID}),
            transitions=_DELETES_AND_UPDATE,
        ),
    ),
    ResourceSpec(
        INSURANCE_CLAIM, "records.InsuranceClaim", soft_delete=True, hard_delete=False,
        status_field="status",
        links=((BILLING_INVOICE, "billing_invoice_id"),),
        business_lock=BusinessLock(
            statuses=frozenset({ClaimStatus.SUBMITTED, ClaimStatus.APPROVED, ClaimStatus.PAID}),
            transitions=_DELETES,
        ),
    ),
    ResourceSpec(
        DASHBOARD_PREFERENCE, "records.DashboardPreference", soft_delete=True, hard_delete=False,
        predicate=PredicateKind.OWNERSHIP,
        owner_field="user_id",
    ),
    ResourceSpec(
        MFA_FACTOR, "records.MfaFactor", soft_delete=False, hard_delete=True,
        predicate=PredicateKind.SELF_ONLY,
        owner_field="user_id",
    ),
    ResourceSpec(
        RECORD_AMENDMENT, "records.RecordAmendment", soft_delete=True, hard_delete=True,
        predicate=PredicateKind.OWNERSHIP,
        owner_field="submitted_by_id",
        status_field="status",
        links=((PATIENT_RECORD, "patient_record_id"),),
    ),
    ResourceSpec(
        TELEMEDICINE_SESSION, "records.TelemedicineSession", soft_delete=True, hard_delete=False,
        predicate=PredicateKind.ASSIGNMENT,
        provider_field="provider_id",
        participants_field="participant_ids",
        status_field="status",
        links=((APPOINTMENT, "appointment_id"),),
    ),
    ResourceSpec(
        VITAL, "records.Vital", soft_delete=True, hard_delete=False,
        predicate=PredicateKind.ASSIGNMENT,
        provider_field="provider_id",
        links=((PATIENT_RECORD, "patient_record_id"),),
    ),
)

DEFAULT_REGISTRY = ResourceRegistry(DEFAULT_SPECS)
