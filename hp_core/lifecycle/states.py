# hp_core/lifecycle/states.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.db import models

from hp_core.common.types import ActionType, ResourceRef


class LifecycleKind(models.TextChoices):
    ACTIVE = "active", "Active"
    SOFT_DELETED = "soft_deleted", "Soft deleted"
    HARD_DELETED = "hard_deleted", "Hard deleted"


class Transition(models.TextChoices):
    SOFT_DELETE = "soft_delete", "Soft delete"
    HARD_DELETE = "hard_delete", "Hard delete"
    RESTORE = "restore", "Restore"
    UPDATE = "update", "Update"


DELETE_TRANSITIONS = frozenset({Transition.SOFT_DELETE, Transition.HARD_DELETE})

TRANSITION_FOR_ACTION = {
    ActionType.SOFT_DELETE: Transition.SOFT_DELETE,
    ActionType.HARD_DELETE: Transition.HARD_DELETE,
    ActionType.RESTORE: Transition.RESTORE,
    ActionType.UPDATE: Transition.UPDATE,
}


@dataclass(frozen=True)
class LifecycleState:
    kind: LifecycleKind
    deleted_at: Optional[datetime] = None

    @classmethod
    def active(cls) -> "LifecycleState":
        return cls(kind=LifecycleKind.ACTIVE)

    @classmethod
    def soft_deleted(cls, deleted_at: datetime) -> "LifecycleState":
        return cls(kind=LifecycleKind.SOFT_DELETED, deleted_at=deleted_at)

    @classmethod
    def hard_deleted(cls) -> "LifecycleState":
        return cls(kind=LifecycleKind.HARD_DELETED)

    @property
    def is_active(self) -> bool:
        return self.kind == LifecycleKind.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.kind == LifecycleKind.HARD_DELETED


@dataclass(frozen=True)
class ResourceSnapshot:
    """
    Resource descriptor + persisted lifecycle state + business status,
    as read inside the current transaction.
    """
    ref: ResourceRef
    state: LifecycleState
    status: Optional[str] = None
