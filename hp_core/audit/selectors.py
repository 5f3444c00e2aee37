# hp_core/audit/selectors.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from django.db.models import QuerySet

from hp_core.audit.models import AuditLogEntry


def list_audit_entries(
    *,
    organization_id: UUID,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    actor_id: Optional[UUID] = None,
    action_type: Optional[str] = None,
    outcome: Optional[str] = None,
    since: Optional[datetime] = None,
) -> QuerySet[AuditLogEntry]:
    qs = AuditLogEntry.objects.filter(organization_id=organization_id)

    if entity_type:
        qs = qs.filter(entity_type=entity_type)
    if entity_id:
        qs = qs.filter(entity_id=entity_id)
    if actor_id:
        qs = qs.filter(actor_id=actor_id)
    if action_type:
        qs = qs.filter(action_type=action_type)
    if outcome:
        qs = qs.filter(outcome=outcome)
    if since is not None:
        qs = qs.filter(timestamp__gte=since)

    return qs.order_by("-timestamp")
