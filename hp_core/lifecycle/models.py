# hp_core/lifecycle/models.py
from django.db import models

from hp_core.common.models import ScopedModel


class HoldStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    RELEASED = "released", "Released"


class ComplianceHold(ScopedModel):
    """
    Legal/regulatory lock preventing deletion of a subject.

    subject_type is a resource type, or "organization" for an
    organization-wide hold (subject_id == organization_id).
    Holds on a parent record also cover resources linked to it.
    """
    subject_type = models.CharField(max_length=64, db_index=True)
    subject_id = models.UUIDField(db_index=True)

    status = models.CharField(max_length=16, choices=HoldStatus.choices, default=HoldStatus.ACTIVE, db_index=True)
    reason = models.CharField(max_length=255, blank=True, default="")

    imposed_by = models.UUIDField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    released_by = models.UUIDField(null=True, blank=True)

    class Meta:
        db_table = "lifecycle_compliance_hold"
        indexes = [
            models.Index(fields=["subject_type", "subject_id", "status"]),
            models.Index(fields=["organization_id", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.subject_type}:{self.subject_id} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status == HoldStatus.ACTIVE
