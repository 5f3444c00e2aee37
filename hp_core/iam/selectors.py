# hp_core/iam/selectors.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from django.db.models import QuerySet

from hp_core.iam.models import Account, OrganizationAssignment
from hp_core.iam.principals import AssignmentStatus


def get_account(*, account_id: UUID) -> Optional[Account]:
    return Account.objects.filter(id=account_id).first()


def list_active_assignments(*, account_id: UUID) -> QuerySet[OrganizationAssignment]:
    """
    Active, non-deleted assignments only. Inactive rows never grant scope.
    """
    return (
        OrganizationAssignment.objects.filter(
            account_id=account_id,
            status=AssignmentStatus.ACTIVE,
            deleted_at__isnull=True,
        )
        .order_by("created_at")
    )
