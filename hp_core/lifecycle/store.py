# hp_core/lifecycle/store.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import ContextManager, Iterable, List, Optional, Protocol, Tuple
from uuid import UUID

from django.db import DatabaseError, connection, transaction
from django.db.models import Q

from hp_core.audit.models import AuditLogEntry
from hp_core.common.errors import StorageTimeout
from hp_core.common.types import ResourceRef
from hp_core.lifecycle.guard import OP_DELETE, BlockingItem, HoldRef, MutationPlan
from hp_core.lifecycle.models import ComplianceHold, HoldStatus
from hp_core.lifecycle.registry import (
    CHILDREN,
    DEFAULT_REGISTRY,
    ORGANIZATION,
    ResourceRegistry,
    ResourceSpec,
)
from hp_core.lifecycle.states import LifecycleState, ResourceSnapshot

logger = logging.getLogger(__name__)

Subject = Tuple[str, UUID]

# advisory lock keys are signed bigints
ADVISORY_KEY_MASK = (1 << 63) - 1


class RecordStore(Protocol):
    def atomic(self, timeout_ms: Optional[int] = None) -> ContextManager[None]: ...

    def fetch(self, resource_type: str, resource_id: UUID, *, for_update: bool = False) -> Optional[ResourceSnapshot]: ...

    def lock_subjects(self, subjects: Iterable[Subject], *, exclusive: bool = False) -> None: ...

    def active_holds(self, subjects: Iterable[Subject]) -> List[HoldRef]: ...

    def find_blockers(self, spec: ResourceSpec, snapshot: ResourceSnapshot) -> List[BlockingItem]: ...

    def apply(self, mutation: MutationPlan) -> int: ...

    def append_audit(self, entry: AuditLogEntry) -> AuditLogEntry: ...


def hold_subjects(ref: ResourceRef) -> Tuple[Subject, ...]:
    """The resource itself, its linked parents, and its organization."""
    return (
        (ref.resource_type, ref.resource_id),
        *ref.linked_subjects,
        (ORGANIZATION, ref.organization_id),
    )


class DjangoRecordStore:
    """
    ORM-backed RecordStore. All reads used for a decision happen inside
    atomic(), with the guarded row locked by select_for_update.
    """

    def __init__(self, registry: Optional[ResourceRegistry] = None):
        self.registry = registry or DEFAULT_REGISTRY

    @contextmanager
    def atomic(self, timeout_ms: Optional[int] = None):
        try:
            with transaction.atomic():
                if timeout_ms and connection.vendor == "postgresql":
                    with connection.cursor() as cursor:
                        # transaction-local; reset at commit/rollback
                        cursor.execute("SELECT set_config('statement_timeout', %s, true)", [str(int(timeout_ms))])
                yield
        except DatabaseError as exc:
            logger.error("storage error, transaction rolled back: %s", exc.__class__.__name__)
            raise StorageTimeout(
                "Storage unavailable or timed out.",
                details={"timeout_ms": timeout_ms, "error": exc.__class__.__name__},
            ) from exc

    def fetch(self, resource_type: str, resource_id: UUID, *, for_update: bool = False) -> Optional[ResourceSnapshot]:
        spec = self.registry.get(resource_type)
        qs = spec.model._default_manager.filter(pk=resource_id)
        if for_update:
            qs = qs.select_for_update()
        obj = qs.first()
        if obj is None:
            return None
        return self.snapshot(spec, obj)

    @staticmethod
    def snapshot(spec: ResourceSpec, obj) -> ResourceSnapshot:
        def value(field_name: Optional[str]):
            return getattr(obj, field_name) if field_name else None

        participants = value(spec.participants_field) or ()
        links = tuple(
            (subject_type, value(field_name))
            for subject_type, field_name in spec.links
            if value(field_name) is not None
        )
        ref = ResourceRef(
            resource_type=spec.resource_type,
            resource_id=obj.pk,
            organization_id=obj.organization_id,
            department_id=obj.department_id,
            owner_id=value(spec.owner_field),
            assigned_provider_id=value(spec.provider_field),
            participant_ids=tuple(UUID(str(p)) for p in participants),
            linked_subjects=links,
        )

        deleted_at = getattr(obj, "deleted_at", None) if spec.soft_delete else None
        state = LifecycleState.soft_deleted(deleted_at) if deleted_at else LifecycleState.active()
        return ResourceSnapshot(ref=ref, state=state, status=value(spec.status_field))

    def lock_subjects(self, subjects: Iterable[Subject], *, exclusive: bool = False) -> None:
        """
        Lock hold subjects until the transaction ends. Resource rows are
        locked with select_for_update. An organization takes a PostgreSQL
        advisory lock: shared for deletes, exclusive for imposing a hold.
        """
        for subject_type, subject_id in subjects:
            if subject_type == ORGANIZATION:
                self._lock_organization(subject_id, exclusive)
                continue
            model = self.registry.get(subject_type).model
            list(model._default_manager.select_for_update().filter(pk=subject_id).values_list("pk", flat=True))

    @staticmethod
    def _lock_organization(organization_id: UUID, exclusive: bool) -> None:
        if connection.vendor != "postgresql":
            return
        func = "pg_advisory_xact_lock" if exclusive else "pg_advisory_xact_lock_shared"
        key = organization_id.int & ADVISORY_KEY_MASK
        with connection.cursor() as cursor:
            cursor.execute(f"SELECT {func}(%s)", [key])

    def active_holds(self, subjects: Iterable[Subject]) -> List[HoldRef]:
        q = Q()
        for subject_type, subject_id in subjects:
            q |= Q(subject_type=subject_type, subject_id=subject_id)
        if not q:
            return []
        rows = (
            ComplianceHold.objects.filter(q, status=HoldStatus.ACTIVE)
            .order_by("created_at")
            .values_list("id", "subject_type", "subject_id")
        )
        return [HoldRef(hold_id=pk, subject_type=st, subject_id=sid) for pk, st, sid in rows]

    def find_blockers(self, spec: ResourceSpec, snapshot: ResourceSnapshot) -> List[BlockingItem]:
        ref = snapshot.ref
        items: List[BlockingItem] = []
        for blocker in spec.blockers:
            related = self.registry.get(blocker.related_type)
            manager = related.model._default_manager

            if blocker.direction == CHILDREN:
                qs = manager.filter(**{blocker.link_field: ref.resource_id})
            else:
                parent_id = ref.linked_id(blocker.related_type)
                if parent_id is None:
                    continue
                qs = manager.filter(pk=parent_id)

            if related.soft_delete:
                qs = qs.filter(deleted_at__isnull=True)

            for pk, status in qs.values_list("pk", related.status_field).order_by("pk"):
                if blocker.blocks(status):
                    items.append(BlockingItem(blocker.code, blocker.related_type, pk, status))
        return items

    def apply(self, mutation: MutationPlan) -> int:
        spec = self.registry.get(mutation.resource_type)
        qs = spec.model._default_manager.filter(pk=mutation.resource_id, **mutation.conditions)
        if mutation.operation == OP_DELETE:
            deleted, _ = qs.delete()
            return deleted
        return qs.update(**mutation.values)

    def append_audit(self, entry: AuditLogEntry) -> AuditLogEntry:
        entry.save(force_insert=True)
        return entry
