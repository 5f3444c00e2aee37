# hp_core/common/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from django.db import models


class ActionType(models.TextChoices):
    READ = "read", "Read"
    LIST = "list", "List"
    CREATE = "create", "Create"
    UPDATE = "update", "Update"
    # Alias: resolved per resource type to its delete transition.
    DELETE = "delete", "Delete"
    SOFT_DELETE = "soft_delete", "Soft delete"
    HARD_DELETE = "hard_delete", "Hard delete"
    RESTORE = "restore", "Restore"
    EXPORT = "export", "Export"


STATE_CHANGING_ACTIONS = frozenset(
    {ActionType.UPDATE, ActionType.SOFT_DELETE, ActionType.HARD_DELETE, ActionType.RESTORE}
)


@dataclass(frozen=True)
class ResourceRef:
    """
    Lightweight descriptor of a stored record, fetched fresh for every decision.

    linked_subjects holds (subject_type, subject_id) pairs of parent records
    (e.g. the patient record a medical image belongs to).
    """
    resource_type: str
    resource_id: UUID
    organization_id: UUID
    department_id: Optional[UUID] = None
    owner_id: Optional[UUID] = None
    assigned_provider_id: Optional[UUID] = None
    participant_ids: Tuple[UUID, ...] = ()
    linked_subjects: Tuple[Tuple[str, UUID], ...] = ()

    @property
    def has_clinical_linkage(self) -> bool:
        return self.assigned_provider_id is not None or bool(self.participant_ids)

    def linked_id(self, subject_type: str) -> Optional[UUID]:
        for st, sid in self.linked_subjects:
            if st == subject_type:
                return sid
        return None


@dataclass(frozen=True)
class ActionRequest:
    action: ActionType
    resource_type: str
    resource_id: UUID
    changes: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
