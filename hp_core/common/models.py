# hp_core/common/models.py
from __future__ import annotations

import uuid

from django.db import models


class TimeStampedModel(models.Model):
    """
    Standard timestamps for all entities.
    """
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ScopedModel(TimeStampedModel):
    """
    Enforces organization + department scope at the data layer.
    department_id is optional: organization-wide records leave it empty.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    organization_id = models.UUIDField(db_index=True)
    department_id = models.UUIDField(null=True, blank=True, db_index=True)

    class Meta:
        abstract = True


class SoftDeletableModel(ScopedModel):
    """
    Records that support the soft-deleted lifecycle state.
    deleted_at is only ever written through the lifecycle guard's conditional update.
    """
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True)

    class Meta:
        abstract = True
