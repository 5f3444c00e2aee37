# hp_core/lifecycle/selectors.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from django.db.models import QuerySet

from hp_core.lifecycle.models import ComplianceHold, HoldStatus


def list_active_holds(
    *,
    organization_id: UUID,
    subject_type: Optional[str] = None,
    subject_id: Optional[UUID] = None,
) -> QuerySet[ComplianceHold]:
    qs = ComplianceHold.objects.filter(organization_id=organization_id, status=HoldStatus.ACTIVE)

    if subject_type:
        qs = qs.filter(subject_type=subject_type)
    if subject_id:
        qs = qs.filter(subject_id=subject_id)

    return qs.order_by("-created_at")
