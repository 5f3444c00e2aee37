# hp_core/iam/auth.py

from __future__ import annotations

from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication

from hp_core.common.errors import InvalidIdentity, PrincipalInactive
from hp_core.iam.services.principals import PrincipalResolver


class PrincipalJWTAuthentication(JWTAuthentication):
    """
    Authenticate using Authorization: Bearer <access>.

    Token signature/expiry is verified by simplejwt. The user is not a Django
    auth user but a Principal, resolved against live account state on every
    request (deactivated accounts are rejected even with a valid token).
    """

    resolver_class = PrincipalResolver

    def get_user(self, validated_token):
        try:
            return self.resolver_class().resolve_token(validated_token)
        except PrincipalInactive as exc:
            raise AuthenticationFailed(exc.message, code=exc.code)
        except InvalidIdentity as exc:
            raise AuthenticationFailed(exc.message, code=exc.code)
