# hp_core/iam/models.py
import uuid

from django.db import models

from hp_core.iam.principals import AssignmentStatus, RoleType


class Account(models.Model):
    """
    Role-table row behind an identity token.
    The principal resolver re-reads this on every request: tokens are not
    re-validated against live account state otherwise.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    role_type = models.CharField(max_length=32, choices=RoleType.choices, db_index=True)
    email = models.EmailField(blank=True, default="")
    full_name = models.CharField(max_length=255, blank=True, default="")

    is_active = models.BooleanField(default=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "iam_account"
        indexes = [
            models.Index(fields=["role_type", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.email or self.id} ({self.role_type})"

    @property
    def is_usable(self) -> bool:
        return self.is_active and self.deleted_at is None and self.revoked_at is None


class OrganizationAssignment(models.Model):
    """
    Assigns an account to an organization (optionally one department).
    Sole source of truth for scope; there is no fallback to account ids.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    account = models.ForeignKey(Account, on_delete=models.CASCADE, related_name="assignments")
    organization_id = models.UUIDField(db_index=True)
    department_id = models.UUIDField(null=True, blank=True, db_index=True)

    status = models.CharField(
        max_length=16,
        choices=AssignmentStatus.choices,
        default=AssignmentStatus.ACTIVE,
        db_index=True,
    )
    deleted_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "iam_organization_assignment"
        constraints = [
            models.UniqueConstraint(
                fields=["account", "organization_id", "department_id"],
                name="uq_account_org_department_assignment",
            ),
        ]
        indexes = [
            models.Index(fields=["account", "status"]),
        ]
