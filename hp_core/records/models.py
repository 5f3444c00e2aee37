# hp_core/records/models.py
"""
Resource catalog guarded by the lifecycle engine.

Only the columns the guard reads are modelled here (scope, ownership,
provider assignment, business status, parent links). Cross-record links are
plain UUIDs: a hard delete never cascades through the ORM.
"""
from django.db import models

from hp_core.common.models import ScopedModel, SoftDeletableModel


class RecordStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    LOCKED = "locked", "Locked"


class AppointmentStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class LabResultStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FINALIZED = "finalized", "Finalized"


class InvoiceStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    ISSUED = "issued", "Issued"
    FINALIZED = "finalized", "Finalized"
    PAID = "paid", "Paid"
    VOID = "void", "Void"


class ClaimStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    SUBMITTED = "submitted", "Submitted"
    APPROVED = "approved", "Approved"
    DENIED = "denied", "Denied"
    PAID = "paid", "Paid"


class AmendmentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class SessionStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"


class PatientRecord(SoftDeletableModel):
    patient_id = models.UUIDField(db_index=True)
    mrn = models.CharField(max_length=64)
    status = models.CharField(max_length=16, choices=RecordStatus.choices, default=RecordStatus.ACTIVE)

    class Meta:
        db_table = "records_patient_record"
        indexes = [models.Index(fields=["organization_id", "patient_id"])]

    def __str__(self) -> str:
        return self.mrn


class Appointment(SoftDeletableModel):
    patient_record_id = models.UUIDField(db_index=True)
    provider_id = models.UUIDField(null=True, blank=True, db_index=True)
    status = models.CharField(max_length=16, choices=AppointmentStatus.choices, default=AppointmentStatus.SCHEDULED)
    start_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "records_appointment"


class AppointmentReminder(SoftDeletableModel):
    appointment_id = models.UUIDField(db_index=True)
    created_by_id = models.UUIDField(db_index=True)
    remind_at = models.DateTimeField(null=True, blank=True)
    channel = models.CharField(max_length=16, default="sms")

    class Meta:
        db_table = "records_appointment_reminder"


class LabResult(SoftDeletableModel):
    patient_record_id = models.UUIDField(db_index=True)
    ordering_provider_id = models.UUIDField(null=True, blank=True, db_index=True)
    test_name = models.CharField(max_length=128)
    status = models.CharField(max_length=16, choices=LabResultStatus.choices, default=LabResultStatus.PENDING)

    class Meta:
        db_table = "records_lab_result"


class MedicalImage(ScopedModel):
    """Hard-delete only: no deleted_at column."""
    patient_record_id = models.UUIDField(db_index=True)
    uploaded_by_id = models.UUIDField(db_index=True)
    modality = models.CharField(max_length=32, blank=True, default="")
    storage_uri = models.CharField(max_length=512, blank=True, default="")

    class Meta:
        db_table = "records_medical_image"


class BillingInvoice(SoftDeletableModel):
    patient_record_id = models.UUIDField(null=True, blank=True, db_index=True)
    appointment_id = models.UUIDField(null=True, blank=True, db_index=True)
    status = models.CharField(max_length=16, choices=InvoiceStatus.choices, default=InvoiceStatus.DRAFT)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        db_table = "records_billing_invoice"


class InsuranceClaim(SoftDeletableModel):
    billing_invoice_id = models.UUIDField(null=True, blank=True, db_index=True)
    claim_number = models.CharField(max_length=64, blank=True, default="")
    status = models.CharField(max_length=16, choices=ClaimStatus.choices, default=ClaimStatus.DRAFT)

    class Meta:
        db_table = "records_insurance_claim"


class DashboardPreference(SoftDeletableModel):
    user_id = models.UUIDField(db_index=True)
    preferences = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "records_dashboard_preference"


class MfaFactor(ScopedModel):
    """Hard-delete only."""
    user_id = models.UUIDField(db_index=True)
    factor_type = models.CharField(max_length=16, default="totp")
    label = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        db_table = "records_mfa_factor"


class RecordAmendment(SoftDeletableModel):
    patient_record_id = models.UUIDField(db_index=True)
    submitted_by_id = models.UUIDField(db_index=True)
    status = models.CharField(max_length=16, choices=AmendmentStatus.choices, default=AmendmentStatus.PENDING)
    reason = models.TextField(blank=True, default="")

    class Meta:
        db_table = "records_record_amendment"


class TelemedicineSession(SoftDeletableModel):
    appointment_id = models.UUIDField(null=True, blank=True, db_index=True)
    provider_id = models.UUIDField(null=True, blank=True, db_index=True)
    participant_ids = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=16, choices=SessionStatus.choices, default=SessionStatus.SCHEDULED)

    class Meta:
        db_table = "records_telemedicine_session"


class Vital(SoftDeletableModel):
    patient_record_id = models.UUIDField(db_index=True)
    provider_id = models.UUIDField(null=True, blank=True, db_index=True)
    vital_type = models.CharField(max_length=32)
    value = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        db_table = "records_vital"
