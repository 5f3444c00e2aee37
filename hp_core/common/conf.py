# hp_core/common/conf.py
from __future__ import annotations

from typing import Any, Dict

from django.conf import settings

DEFAULTS: Dict[str, Any] = {
    # Token claim carrying the role type; the subject claim is SIMPLE_JWT["USER_ID_CLAIM"].
    "ROLE_CLAIM": "role",
    # Denials of these actions are written to the audit trail.
    "AUDIT_DENIED_ACTIONS": ("delete", "soft_delete", "hard_delete", "export"),
    # Read-only actions audited when allowed.
    "AUDIT_ALLOWED_READ_ACTIONS": ("export",),
    "DEFAULT_TIMEOUT_MS": 5000,
    # Fields an update request may never touch; lifecycle and scope columns.
    "PROTECTED_UPDATE_FIELDS": (
        "id",
        "organization_id",
        "department_id",
        "deleted_at",
        "created_at",
        "updated_at",
    ),
}


def guard_settings() -> Dict[str, Any]:
    """
    Effective HP_GUARD settings (defaults overlaid with settings.HP_GUARD).
    Read on every call so override_settings works in tests.
    """
    merged = dict(DEFAULTS)
    merged.update(getattr(settings, "HP_GUARD", None) or {})
    return merged


def guard_setting(name: str) -> Any:
    return guard_settings()[name]
