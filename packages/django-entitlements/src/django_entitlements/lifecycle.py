"""Entitlement status transitions driven by expiry and admin action."""

import logging

from django.db import transaction
from django.utils import timezone

from django_entitlements.exceptions import NotFound
from django_entitlements.models import Entitlement

logger = logging.getLogger(__name__)


def expire_entitlements(now=None, dry_run: bool = False) -> int:
    """Expire active entitlements whose ``expires_at`` has passed.

    Returns:
        Number of entitlements expired (or that would be, with dry_run)
    """
    now = now or timezone.now()
    due = Entitlement.objects.filter(
        status=Entitlement.Status.ACTIVE,
        expires_at__isnull=False,
        expires_at__lte=now,
    )
    if dry_run:
        return due.count()

    expired = 0
    with transaction.atomic():
        for entitlement in due.select_for_update():
            entitlement.transition_to(Entitlement.Status.EXPIRED)
            expired += 1
    if expired:
        logger.info('Expired %d entitlements', expired)
    return expired


@transaction.atomic
def revoke_entitlement(entitlement_id: int) -> Entitlement:
    """Revoke one active entitlement.

    Raises:
        NotFound: If no such entitlement exists
        InvalidStatusTransition: If it is no longer active
    """
    try:
        entitlement = Entitlement.objects.select_for_update().get(pk=entitlement_id)
    except Entitlement.DoesNotExist:
        raise NotFound(f'Entitlement {entitlement_id} not found')
    entitlement.transition_to(Entitlement.Status.REVOKED)
    logger.info('Revoked entitlement %s for uid %s', entitlement.pk, entitlement.uid)
    return entitlement
