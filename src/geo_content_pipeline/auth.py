"""
Identity and access policy.

Sign-in itself is handled by the hosting auth provider. This module only
turns a bearer token into an Identity and decides which identities hold
administrator rights.
"""

import logging
from typing import Iterable, Mapping, Optional

from .models import Identity

logger = logging.getLogger(__name__)


class AuthRequired(Exception):
    """Raised when an operation needs an authenticated identity."""
    pass


class PermissionDenied(Exception):
    """Raised when an identity lacks the capability an operation needs."""
    pass


class AccessPolicy:
    """
    Role checks driven by a configured set of administrator identities.

    Administrators may edit usage limits, reset counters and are created
    with an effectively unlimited cap.
    """

    def __init__(self, admin_emails: Iterable[str] = ()):
        self.admin_emails = {e.strip().lower() for e in admin_emails if e and e.strip()}

    def is_admin(self, email: Optional[str]) -> bool:
        if not email:
            return False
        return email.strip().lower() in self.admin_emails

    def identify(self, user_id: str, email: Optional[str] = None) -> Identity:
        """Build an Identity with its admin flag resolved."""
        return Identity(user_id=user_id, email=email, is_admin=self.is_admin(email))

    def require_admin(self, identity: Optional[Identity]) -> Identity:
        identity = require_identity(identity)
        if not identity.is_admin:
            raise PermissionDenied("Administrator privileges required")
        return identity


class TokenIdentityResolver:
    """
    Resolves bearer tokens to identities from a static token table.

    The table maps token -> (user_id, email). Deployments behind a hosted
    auth service swap this for a resolver that verifies the provider's
    session tokens.
    """

    def __init__(self, tokens: Mapping[str, tuple[str, Optional[str]]], policy: AccessPolicy):
        self._tokens = dict(tokens)
        self.policy = policy

    @classmethod
    def from_string(cls, value: Optional[str], policy: AccessPolicy) -> "TokenIdentityResolver":
        """Parse "token:user_id:email,token2:user_id2" into a resolver."""
        tokens: dict[str, tuple[str, Optional[str]]] = {}
        for entry in (value or "").split(","):
            parts = [p.strip() for p in entry.split(":")]
            if len(parts) < 2 or not parts[0] or not parts[1]:
                continue
            email = parts[2] if len(parts) > 2 and parts[2] else None
            tokens[parts[0]] = (parts[1], email)
        if not tokens:
            logger.info("No API tokens configured; bearer requests will be rejected")
        return cls(tokens, policy)

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        entry = self._tokens.get(token)
        if entry is None:
            return None
        user_id, email = entry
        return self.policy.identify(user_id, email)


def require_identity(identity: Optional[Identity]) -> Identity:
    """Return the identity or raise AuthRequired when there is none."""
    if identity is None or not identity.user_id:
        raise AuthRequired("Authentication required")
    return identity
