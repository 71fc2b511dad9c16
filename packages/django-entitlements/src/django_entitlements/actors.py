"""Actor resolution - bearer token to a role- and operator-scoped Actor.

Actors are recomputed on every request and never persisted. Scope is the
union of explicit role assignments, active memberships and active
entitlements, so removing any of those can only shrink it.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from django_entitlements.identity import IdentityProvider, get_identity_provider
from django_entitlements.models import (
    ROLE_LEVELS,
    Entitlement,
    Membership,
    PortalRole,
    RoleAssignment,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Resolved identity, role and operator scope for one request."""

    uid: str
    email: str
    role: str = PortalRole.CLIENT
    operator_ids: list[str] = field(default_factory=list)
    superadmin: bool = False

    @property
    def is_superadmin(self) -> bool:
        """Explicit superadmin flag, or an admin with no operator scope."""
        if self.role != PortalRole.ADMIN:
            return False
        return self.superadmin or not self.operator_ids

    def can_access_operator(self, operator_id: str) -> bool:
        if self.is_superadmin:
            return True
        return operator_id in self.operator_ids

    def has_role(self, min_role: str) -> bool:
        return ROLE_LEVELS[self.role] >= ROLE_LEVELS[min_role]

    def as_dict(self) -> dict:
        return {
            'uid': self.uid,
            'email': self.email,
            'role': str(self.role),
            'operatorIds': self.operator_ids,
            'isSuperadmin': self.is_superadmin,
        }


def highest_role(roles) -> str:
    """Highest role in the client < coach < admin hierarchy."""
    role = PortalRole.CLIENT
    for candidate in roles:
        if ROLE_LEVELS.get(candidate, 0) > ROLE_LEVELS[role]:
            role = PortalRole(candidate)
    return role


def role_assignments_for(uid: str) -> list[RoleAssignment]:
    return list(RoleAssignment.objects.filter(uid=uid))


def membership_operator_ids(uid: str) -> set[str]:
    return set(
        Membership.objects.filter(uid=uid, status=Membership.Status.ACTIVE)
        .values_list('operator_id', flat=True)
    )


def entitlement_operator_ids(uid: str) -> set[str]:
    return set(
        Entitlement.objects.filter(uid=uid, status=Entitlement.Status.ACTIVE)
        .values_list('operator_id', flat=True)
    )


def build_actor(uid: str, email: str) -> Actor:
    """Compute role and scope for a verified identity.

    Each lookup is non-fatal: a failure is logged and contributes nothing,
    so a broken role table degrades the actor to "client", never to an error.
    """
    role = PortalRole.CLIENT
    superadmin = False
    operator_ids = set()

    try:
        assignments = role_assignments_for(uid)
    except Exception as e:
        logger.warning('Role lookup failed for uid %s (non-fatal): %s', uid, e)
    else:
        role = highest_role(a.role for a in assignments)
        superadmin = any(a.is_superadmin for a in assignments)
        operator_ids.update(a.operator_id for a in assignments if a.operator_id)

    scope_lookups = (
        ('memberships', membership_operator_ids),
        ('entitlements', entitlement_operator_ids),
    )
    for source, lookup in scope_lookups:
        try:
            operator_ids.update(lookup(uid))
        except Exception as e:
            logger.warning('Scope lookup from %s failed for uid %s (non-fatal): %s',
                           source, uid, e)

    return Actor(
        uid=uid,
        email=email,
        role=role,
        operator_ids=sorted(operator_ids),
        superadmin=superadmin,
    )


def resolve_actor(token: str, provider: Optional[IdentityProvider] = None) -> Actor:
    """Verify a bearer token and resolve the Actor behind it.

    Raises:
        Unauthorized: If the token does not verify
        ServiceUnavailable: If no identity provider is configured
    """
    provider = provider or get_identity_provider()
    identity = provider.verify_token(token)
    return build_actor(identity.uid, identity.email)
