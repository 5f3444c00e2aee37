# hp_core/guard/tests/test_record_guard.py
import uuid

import pytest
from django.db import DatabaseError

from hp_core.audit.models import AuditLogEntry
from hp_core.common.errors import ProtectedFieldChange, UnknownField, UnsupportedTransition
from hp_core.common.results import ResultKind
from hp_core.common.types import ActionRequest, ActionType, ResourceRef
from hp_core.iam.principals import RoleType
from hp_core.lifecycle import registry as types
from hp_core.records.models import (
    Appointment,
    AppointmentReminder,
    BillingInvoice,
    InvoiceStatus,
    LabResult,
    LabResultStatus,
    MedicalImage,
    MfaFactor,
    PatientRecord,
)

pytestmark = pytest.mark.django_db


@pytest.fixture
def appointment(org_id, patient_record, doctor):
    return Appointment.objects.create(organization_id=org_id, patient_record_id=patient_record.id, provider_id=doctor.id)


@pytest.fixture
def reminder(org_id, appointment, receptionist):
    return AppointmentReminder.objects.create(
        organization_id=org_id, appointment_id=appointment.id, created_by_id=receptionist.id
    )


@pytest.fixture
def image(org_id, patient_record, technician):
    return MedicalImage.objects.create(
        organization_id=org_id, patient_record_id=patient_record.id, uploaded_by_id=technician.id
    )


def _req(action, resource_type, resource_id, **kw):
    return ActionRequest(action=action, resource_type=resource_type, resource_id=resource_id, **kw)


# ----------------------------------------------------------------------
# scenarios
# ----------------------------------------------------------------------
def test_org_admin_cannot_delete_appointment_of_other_organization(guard, make_principal, other_org_id, org_id):
    foreign = Appointment.objects.create(organization_id=other_org_id, patient_record_id=uuid.uuid4())
    admin = make_principal(RoleType.ORGANIZATION_ADMIN, organization_id=org_id)

    result = guard.execute(admin, _req(ActionType.SOFT_DELETE, types.APPOINTMENT, foreign.id))

    assert result.kind == ResultKind.OUT_OF_SCOPE
    foreign.refresh_from_db()
    assert foreign.deleted_at is None
    entry = AuditLogEntry.objects.get(id=result.audit_entry_id)
    assert entry.outcome == ResultKind.OUT_OF_SCOPE
    assert entry.organization_id == other_org_id


def test_doctor_cannot_delete_completed_lab_result(guard, doctor, org_id, patient_record):
    lab_id = uuid.uuid4()
    prospective = ResourceRef(
        resource_type=types.LAB_RESULT,
        resource_id=lab_id,
        organization_id=org_id,
        assigned_provider_id=doctor.id,
        linked_subjects=((types.PATIENT_RECORD, patient_record.id),),
    )
    created = guard.authorize(doctor, _req(ActionType.CREATE, types.LAB_RESULT, lab_id), ref=prospective)
    assert created.kind == ResultKind.ALLOWED

    LabResult.objects.create(
        id=lab_id,
        organization_id=org_id,
        patient_record_id=patient_record.id,
        ordering_provider_id=doctor.id,
        test_name="CBC",
        status=LabResultStatus.COMPLETED,
    )

    result = guard.execute(doctor, _req(ActionType.DELETE, types.LAB_RESULT, lab_id))

    assert result.kind == ResultKind.BUSINESS_LOCKED
    assert LabResult.objects.get(id=lab_id).deleted_at is None
    assert AuditLogEntry.objects.get(id=result.audit_entry_id).outcome == ResultKind.BUSINESS_LOCKED


def test_hold_on_patient_record_blocks_linked_image(guard, hold_service, org_admin, patient_record, image):
    hold_service.impose(org_admin, subject_type=types.PATIENT_RECORD, subject_id=patient_record.id, reason="litigation")

    result = guard.execute(org_admin, _req(ActionType.DELETE, types.MEDICAL_IMAGE, image.id))

    assert result.kind == ResultKind.COMPLIANCE_BLOCKED
    assert MedicalImage.objects.filter(id=image.id).exists()
    entry = AuditLogEntry.objects.get(id=result.audit_entry_id)
    assert entry.context["blocking"] == [f"hold:patient_record:{patient_record.id}"]


def test_concurrent_reminder_deletes_transition_once(guard, store, receptionist, reminder, monkeypatch):
    stale = store.fetch(types.APPOINTMENT_REMINDER, reminder.id)
    request = _req(ActionType.DELETE, types.APPOINTMENT_REMINDER, reminder.id)

    first = guard.execute(receptionist, request)
    assert first.kind == ResultKind.APPLIED

    # second request read the row before the first committed
    real_fetch = store.fetch

    def fetch(resource_type, resource_id, *, for_update=False):
        if for_update:
            return stale
        return real_fetch(resource_type, resource_id, for_update=for_update)

    monkeypatch.setattr(store, "fetch", fetch)
    second = guard.execute(receptionist, request)

    assert second.kind == ResultKind.IDEMPOTENT
    assert second.audit_entry_id is None
    assert AuditLogEntry.objects.filter(entity_id=reminder.id).count() == 1


# ----------------------------------------------------------------------
# lifecycle properties
# ----------------------------------------------------------------------
def test_repeat_soft_delete_is_idempotent(guard, receptionist, reminder, clock):
    request = _req(ActionType.SOFT_DELETE, types.APPOINTMENT_REMINDER, reminder.id)

    first = guard.execute(receptionist, request)
    second = guard.execute(receptionist, request)

    assert first.kind == ResultKind.APPLIED
    assert second.kind == ResultKind.IDEMPOTENT
    reminder.refresh_from_db()
    assert reminder.deleted_at == clock()
    assert AuditLogEntry.objects.filter(entity_id=reminder.id).count() == 1


def test_restore_is_the_only_way_back(guard, org_admin, patient_record):
    delete = guard.execute(org_admin, _req(ActionType.SOFT_DELETE, types.PATIENT_RECORD, patient_record.id))
    update = guard.execute(
        org_admin, _req(ActionType.UPDATE, types.PATIENT_RECORD, patient_record.id, changes={"mrn": "MRN-2"})
    )
    restore = guard.execute(org_admin, _req(ActionType.RESTORE, types.PATIENT_RECORD, patient_record.id))

    assert delete.kind == ResultKind.APPLIED
    assert update.kind == ResultKind.ALREADY_TERMINAL
    assert restore.kind == ResultKind.APPLIED
    patient_record.refresh_from_db()
    assert patient_record.deleted_at is None
    assert patient_record.mrn == "MRN-0001"
    assert AuditLogEntry.objects.get(id=restore.audit_entry_id).context["to_state"] == "active"


def test_hard_delete_is_terminal(guard, org_admin, patient_record):
    request = _req(ActionType.HARD_DELETE, types.PATIENT_RECORD, patient_record.id)

    assert guard.execute(org_admin, request).kind == ResultKind.APPLIED
    assert not PatientRecord.objects.filter(id=patient_record.id).exists()

    assert guard.execute(org_admin, request).kind == ResultKind.RESOURCE_NOT_FOUND
    restore = _req(ActionType.RESTORE, types.PATIENT_RECORD, patient_record.id)
    assert guard.execute(org_admin, restore).kind == ResultKind.RESOURCE_NOT_FOUND


def test_hard_delete_zero_row_write_reconciles_as_terminal(guard, store, make_principal, org_id, monkeypatch):
    nurse = make_principal(RoleType.NURSE)
    factor = MfaFactor.objects.create(organization_id=org_id, user_id=nurse.id)
    stale = store.fetch(types.MFA_FACTOR, factor.id)
    request = _req(ActionType.DELETE, types.MFA_FACTOR, factor.id)

    assert guard.execute(nurse, request).kind == ResultKind.APPLIED

    real_fetch = store.fetch
    monkeypatch.setattr(
        store, "fetch", lambda t, i, *, for_update=False: stale if for_update else real_fetch(t, i)
    )

    assert guard.execute(nurse, request).kind == ResultKind.ALREADY_TERMINAL
    assert AuditLogEntry.objects.filter(entity_id=factor.id).count() == 1


def test_hard_delete_loser_waiting_on_row_lock_is_not_found(guard, make_principal, org_id):
    nurse = make_principal(RoleType.NURSE)
    factor = MfaFactor.objects.create(organization_id=org_id, user_id=nurse.id)
    request = _req(ActionType.DELETE, types.MFA_FACTOR, factor.id)

    assert guard.execute(nurse, request).kind == ResultKind.APPLIED
    # the loser re-reads after the winner commits and finds no row
    assert guard.execute(nurse, request).kind == ResultKind.RESOURCE_NOT_FOUND
    assert AuditLogEntry.objects.filter(entity_id=factor.id).count() == 1


def test_delete_locks_parents_and_organization_before_reading_holds(
    guard, store, org_id, technician, patient_record, image, monkeypatch
):
    events = []
    real_lock, real_holds = store.lock_subjects, store.active_holds

    def lock_spy(subjects, *, exclusive=False):
        subjects = tuple(subjects)
        events.append(("lock", subjects, exclusive))
        return real_lock(subjects, exclusive=exclusive)

    def holds_spy(subjects):
        events.append(("holds",))
        return real_holds(subjects)

    monkeypatch.setattr(store, "lock_subjects", lock_spy)
    monkeypatch.setattr(store, "active_holds", holds_spy)

    assert guard.execute(technician, _req(ActionType.DELETE, types.MEDICAL_IMAGE, image.id)).kind == ResultKind.APPLIED
    assert events == [
        ("lock", ((types.PATIENT_RECORD, patient_record.id), (types.ORGANIZATION, org_id)), False),
        ("holds",),
    ]


def test_hold_binds_system_admin(guard, hold_service, system_admin, patient_record):
    hold = hold_service.impose(system_admin, subject_type=types.PATIENT_RECORD, subject_id=patient_record.id).hold
    request = _req(ActionType.HARD_DELETE, types.PATIENT_RECORD, patient_record.id)

    assert guard.execute(system_admin, request).kind == ResultKind.COMPLIANCE_BLOCKED

    hold_service.release(system_admin, hold_id=hold.id)
    assert guard.execute(system_admin, request).kind == ResultKind.APPLIED


def test_organization_wide_hold(guard, hold_service, system_admin, receptionist, reminder, org_id):
    hold_service.impose(system_admin, subject_type=types.ORGANIZATION, subject_id=org_id)

    result = guard.execute(receptionist, _req(ActionType.DELETE, types.APPOINTMENT_REMINDER, reminder.id))
    assert result.kind == ResultKind.COMPLIANCE_BLOCKED


def test_billed_appointment_is_blocked(guard, org_admin, appointment, org_id):
    BillingInvoice.objects.create(organization_id=org_id, appointment_id=appointment.id, status=InvoiceStatus.ISSUED)

    result = guard.execute(org_admin, _req(ActionType.DELETE, types.APPOINTMENT, appointment.id))

    assert result.kind == ResultKind.COMPLIANCE_BLOCKED
    assert result.reason == "blocked_by:billed_appointment"


def test_update_applies_changes(guard, org_admin, patient_record):
    result = guard.execute(
        org_admin, _req(ActionType.UPDATE, types.PATIENT_RECORD, patient_record.id, changes={"mrn": "MRN-9"})
    )

    assert result.kind == ResultKind.APPLIED
    patient_record.refresh_from_db()
    assert patient_record.mrn == "MRN-9"
    assert AuditLogEntry.objects.get(id=result.audit_entry_id).context["changed_fields"] == ["mrn"]


def test_update_of_protected_field_is_rejected(guard, org_admin, patient_record):
    with pytest.raises(ProtectedFieldChange):
        guard.execute(
            org_admin,
            _req(ActionType.UPDATE, types.PATIENT_RECORD, patient_record.id, changes={"organization_id": uuid.uuid4()}),
        )


def test_update_cannot_unlock_completed_lab_result(guard, doctor, org_id, patient_record):
    lab = LabResult.objects.create(
        organization_id=org_id,
        patient_record_id=patient_record.id,
        ordering_provider_id=doctor.id,
        test_name="CBC",
        status=LabResultStatus.COMPLETED,
    )

    unlock = guard.execute(doctor, _req(ActionType.UPDATE, types.LAB_RESULT, lab.id, changes={"status": "pending"}))
    delete = guard.execute(doctor, _req(ActionType.DELETE, types.LAB_RESULT, lab.id))

    assert unlock.kind == ResultKind.BUSINESS_LOCKED
    assert delete.kind == ResultKind.BUSINESS_LOCKED
    lab.refresh_from_db()
    assert lab.status == LabResultStatus.COMPLETED
    assert lab.deleted_at is None


def test_update_cannot_move_image_off_held_record(guard, hold_service, org_admin, technician, patient_record, image):
    hold_service.impose(org_admin, subject_type=types.PATIENT_RECORD, subject_id=patient_record.id)

    with pytest.raises(ProtectedFieldChange):
        guard.execute(
            technician,
            _req(ActionType.UPDATE, types.MEDICAL_IMAGE, image.id, changes={"patient_record_id": uuid.uuid4()}),
        )

    image.refresh_from_db()
    assert image.patient_record_id == patient_record.id
    assert guard.execute(technician, _req(ActionType.DELETE, types.MEDICAL_IMAGE, image.id)).kind == (
        ResultKind.COMPLIANCE_BLOCKED
    )


def test_update_of_unknown_field_is_rejected(guard, org_admin, patient_record):
    with pytest.raises(UnknownField):
        guard.execute(
            org_admin, _req(ActionType.UPDATE, types.PATIENT_RECORD, patient_record.id, changes={"nickname": "x"})
        )


def test_unsupported_transition_is_rejected(guard, technician, image):
    with pytest.raises(UnsupportedTransition):
        guard.execute(technician, _req(ActionType.SOFT_DELETE, types.MEDICAL_IMAGE, image.id))


def test_only_uploader_may_delete_image(guard, make_principal, technician, image):
    other = make_principal(RoleType.TECHNICIAN)

    denied = guard.execute(other, _req(ActionType.DELETE, types.MEDICAL_IMAGE, image.id))
    assert denied.kind == ResultKind.FORBIDDEN
    assert denied.reason == "not_owner"

    assert guard.execute(technician, _req(ActionType.DELETE, types.MEDICAL_IMAGE, image.id)).kind == ResultKind.APPLIED


def test_unassigned_principal_is_out_of_scope(guard, make_principal, reminder):
    nobody = make_principal(RoleType.RECEPTIONIST, assignments=())
    result = guard.execute(nobody, _req(ActionType.DELETE, types.APPOINTMENT_REMINDER, reminder.id))
    assert result.kind == ResultKind.OUT_OF_SCOPE


# ----------------------------------------------------------------------
# storage failures
# ----------------------------------------------------------------------
def test_audit_failure_rolls_back_the_mutation(guard, store, receptionist, reminder, monkeypatch):
    def append_audit(entry):
        raise DatabaseError("disk full")

    monkeypatch.setattr(store, "append_audit", append_audit)

    result = guard.execute(receptionist, _req(ActionType.DELETE, types.APPOINTMENT_REMINDER, reminder.id))

    assert result.kind == ResultKind.TRANSIENT_FAILURE
    assert result.retryable
    reminder.refresh_from_db()
    assert reminder.deleted_at is None
    assert not AuditLogEntry.objects.exists()


def test_default_timeout_is_passed_to_storage(guard, store, receptionist, reminder, monkeypatch, settings):
    settings.HP_GUARD = {"DEFAULT_TIMEOUT_MS": 1234}
    seen = []
    real_atomic = store.atomic

    def atomic(timeout_ms=None):
        seen.append(timeout_ms)
        return real_atomic(timeout_ms)

    monkeypatch.setattr(store, "atomic", atomic)

    guard.execute(receptionist, _req(ActionType.DELETE, types.APPOINTMENT_REMINDER, reminder.id))
    guard.execute(receptionist, _req(ActionType.DELETE, types.APPOINTMENT_REMINDER, reminder.id), timeout_ms=50)

    assert seen == [1234, 50]


# ----------------------------------------------------------------------
# read-only decisions
# ----------------------------------------------------------------------
def test_read_is_allowed_without_audit(guard, patient, patient_record):
    result = guard.authorize(patient, _req(ActionType.READ, types.PATIENT_RECORD, patient_record.id))

    assert result.kind == ResultKind.ALLOWED
    assert result.audit_entry_id is None
    assert not AuditLogEntry.objects.exists()


def test_read_of_soft_deleted_record_is_not_found(guard, org_admin, patient_record, clock):
    PatientRecord.objects.filter(id=patient_record.id).update(deleted_at=clock())

    result = guard.authorize(org_admin, _req(ActionType.READ, types.PATIENT_RECORD, patient_record.id))
    assert result.kind == ResultKind.RESOURCE_NOT_FOUND


def test_patient_assigned_elsewhere_cannot_read_own_record(guard, make_principal, org_id, other_org_id):
    patient = make_principal(RoleType.PATIENT, organization_id=other_org_id)
    record = PatientRecord.objects.create(organization_id=org_id, patient_id=patient.id, mrn="MRN-0002")

    result = guard.authorize(patient, _req(ActionType.READ, types.PATIENT_RECORD, record.id))

    assert result.kind == ResultKind.OUT_OF_SCOPE


def test_exports_are_audited(guard, org_admin, receptionist, patient_record):
    allowed = guard.authorize(org_admin, _req(ActionType.EXPORT, types.PATIENT_RECORD, patient_record.id))
    denied = guard.authorize(receptionist, _req(ActionType.EXPORT, types.PATIENT_RECORD, patient_record.id))

    assert allowed.kind == ResultKind.ALLOWED
    assert denied.kind == ResultKind.FORBIDDEN
    outcomes = set(AuditLogEntry.objects.values_list("outcome", flat=True))
    assert outcomes == {ResultKind.ALLOWED, ResultKind.FORBIDDEN}


def test_authorize_rejects_state_changes_and_missing_refs(guard, org_admin, patient_record):
    with pytest.raises(UnsupportedTransition):
        guard.authorize(org_admin, _req(ActionType.DELETE, types.PATIENT_RECORD, patient_record.id))
    with pytest.raises(UnsupportedTransition):
        guard.authorize(org_admin, _req(ActionType.LIST, types.PATIENT_RECORD, patient_record.id))
