# hp_core/audit/models.py
import uuid

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from hp_core.common.errors import AppendOnlyViolation
from hp_core.common.results import ResultKind


class AuditLogQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise AppendOnlyViolation("Audit log entries cannot be updated.")

    def delete(self):
        raise AppendOnlyViolation("Audit log entries cannot be deleted.")


class AuditLogEntry(models.Model):
    """
    Immutable audit record of a guarded decision.
    Ids only: clinical payloads never land in context.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    actor_id = models.UUIDField(null=True, blank=True, db_index=True)
    actor_role = models.CharField(max_length=32, blank=True, default="")
    organization_id = models.UUIDField(null=True, blank=True, db_index=True)

    action_type = models.CharField(max_length=32, db_index=True)  # ActionType value or e.g. "hold_impose"
    entity_type = models.CharField(max_length=64, db_index=True)
    entity_id = models.UUIDField(null=True, blank=True, db_index=True)

    outcome = models.CharField(max_length=32, choices=ResultKind.choices, db_index=True)
    timestamp = models.DateTimeField(db_index=True)
    context = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        db_table = "audit_log_entry"
        indexes = [
            models.Index(fields=["organization_id", "timestamp"]),
            models.Index(fields=["entity_type", "entity_id"]),
            models.Index(fields=["actor_id", "timestamp"]),
        ]

    def __str__(self) -> str:
        return f"{self.action_type} {self.entity_type}:{self.entity_id} -> {self.outcome}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AppendOnlyViolation("Audit log entries cannot be updated.")
        kwargs["force_insert"] = True
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AppendOnlyViolation("Audit log entries cannot be deleted.")
