# hp_core/iam/services/principals.py
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from rest_framework_simplejwt.settings import api_settings as jwt_settings

from hp_core.common.conf import guard_setting
from hp_core.common.errors import InvalidIdentity, PrincipalInactive
from hp_core.iam import selectors
from hp_core.iam.principals import OrgAssignment, Principal, RoleType, VerifiedIdentity

logger = logging.getLogger(__name__)


class PrincipalResolver:
    """
    Turns a verified identity into a Principal.

    The account row is read fresh on every call: a token stays valid after its
    account is deactivated, deleted or revoked.
    """

    def __init__(
        self,
        *,
        account_lookup: Optional[Callable[..., Any]] = None,
        assignment_lookup: Optional[Callable[..., Iterable[Any]]] = None,
    ):
        self._account_lookup = account_lookup or selectors.get_account
        self._assignment_lookup = assignment_lookup or selectors.list_active_assignments

    def resolve(self, identity: VerifiedIdentity) -> Principal:
        account = self._account_lookup(account_id=identity.subject_id)

        if account is None:
            logger.warning("principal %s: no account row", identity.subject_id)
            raise PrincipalInactive("Account not found.", {"subject_id": str(identity.subject_id)})

        if not account.is_usable:
            logger.warning("principal %s: account deactivated or revoked", identity.subject_id)
            raise PrincipalInactive("Account is deactivated.", {"subject_id": str(identity.subject_id)})

        if account.role_type != identity.role:
            # Role changed since issuance; the token's role no longer applies.
            logger.warning(
                "principal %s: token role %s != account role %s",
                identity.subject_id,
                identity.role,
                account.role_type,
            )
            raise PrincipalInactive(
                "Account role no longer matches the token.",
                {"subject_id": str(identity.subject_id), "role": identity.role},
            )

        assignments = tuple(
            OrgAssignment(
                organization_id=a.organization_id,
                department_id=a.department_id,
                status=a.status,
            )
            for a in self._assignment_lookup(account_id=account.id)
        )

        return Principal(
            id=account.id,
            role_type=RoleType(account.role_type),
            organization_assignments=assignments,
        )

    @staticmethod
    def identity_from_claims(claims) -> VerifiedIdentity:
        """
        Reads subject + role claims from an already verified token (a
        simplejwt Token or any mapping of claims).
        """
        subject_claim = jwt_settings.USER_ID_CLAIM
        role_claim = guard_setting("ROLE_CLAIM")

        try:
            raw_subject = claims[subject_claim]
        except KeyError:
            raise InvalidIdentity(f"Token has no '{subject_claim}' claim.")

        try:
            subject_id = UUID(str(raw_subject))
        except ValueError:
            raise InvalidIdentity(f"Claim '{subject_claim}' is not a UUID.")

        try:
            raw_role = claims[role_claim]
        except KeyError:
            raise InvalidIdentity(f"Token has no '{role_claim}' claim.")

        if raw_role not in RoleType.values:
            raise InvalidIdentity(f"Unsupported role '{raw_role}'.")

        return VerifiedIdentity(subject_id=subject_id, role=RoleType(raw_role))

    def resolve_token(self, validated_token) -> Principal:
        return self.resolve(self.identity_from_claims(validated_token))
