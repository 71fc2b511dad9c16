"""Read-side queries used by the portal endpoints."""

from typing import Optional

from django.db.models import Count, Q

from django_entitlements.models import Entitlement, Membership, PortalUser


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def active_entitlements(uid: str, operator_id: Optional[str] = None):
    qs = Entitlement.objects.filter(uid=uid, status=Entitlement.Status.ACTIVE)
    if operator_id:
        qs = qs.filter(operator_id=operator_id)
    return qs.order_by('-granted_at')


def serialize_entitlement(entitlement: Entitlement) -> dict:
    return {
        'id': entitlement.pk,
        'operatorId': entitlement.operator_id,
        'vertical': entitlement.vertical,
        'type': entitlement.entitlement_type,
        'resourceId': entitlement.resource_id,
        'status': entitlement.status,
        'source': entitlement.source,
        'sourceModule': entitlement.source_module,
        'createdAt': _iso(entitlement.created_at),
        'grantedAt': _iso(entitlement.granted_at),
        'expiresAt': _iso(entitlement.expires_at),
        'quota': entitlement.quota,
        'used': entitlement.used,
        'amountTotal': entitlement.amount_total,
        'currency': entitlement.currency,
        'engineVersion': entitlement.engine_version,
    }


def serialize_membership(membership: Membership) -> dict:
    return {
        'operatorId': membership.operator_id,
        'vertical': membership.vertical,
        'status': membership.status,
        'joinedAt': _iso(membership.joined_at),
    }


def user_summary(uid: str, email: str) -> dict:
    user = PortalUser.objects.filter(uid=uid).first()
    return {
        'uid': uid,
        'email': user.email if user else email,
        'profile': user.profile if user else {},
    }


def summary_counts(uid: str, operator_ids: list[str], claimed: int = 0) -> dict:
    """Lightweight dashboard counts. Counts only, never document lists."""
    return {
        'activeEntitlements': active_entitlements(uid).count(),
        'memberships': Membership.objects.filter(uid=uid, status=Membership.Status.ACTIVE).count(),
        'operators': len(operator_ids),
        'claimed': claimed,
    }


def operator_members(operator_id: str) -> list[dict]:
    """Members of an operator with their active entitlement count."""
    memberships = (
        Membership.objects.filter(operator_id=operator_id)
        .order_by('joined_at')
    )
    counts = dict(
        Entitlement.objects.filter(operator_id=operator_id)
        .values('uid')
        .annotate(active=Count('pk', filter=Q(status=Entitlement.Status.ACTIVE)))
        .values_list('uid', 'active')
    )
    emails = dict(
        PortalUser.objects.filter(uid__in=[m.uid for m in memberships])
        .values_list('uid', 'email')
    )
    return [
        {
            'uid': m.uid,
            'email': emails.get(m.uid, ''),
            'status': m.status,
            'joinedAt': _iso(m.joined_at),
            'activeEntitlements': counts.get(m.uid, 0),
        }
        for m in memberships
    ]
