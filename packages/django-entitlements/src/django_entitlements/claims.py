"""Claim reconciliation - pending entitlements into an authenticated account.

Usage:
    from django_entitlements.claims import claim_pending_entitlements

    result = claim_pending_entitlements(uid='u1', email='new@x.com')
    result.claimed    # 1
    result.operators  # ['fit-1']
"""

import logging
from dataclasses import dataclass, field

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from django_entitlements.exceptions import BadRequest, TransientFulfillmentFailure
from django_entitlements.fulfillment import convert_waitlist_lead, ensure_membership
from django_entitlements.models import Entitlement, PendingEntitlement, PortalUser
from django_entitlements.utils import hash_email, normalize_email

logger = logging.getLogger(__name__)

# Payload copied verbatim from the pending grant onto the entitlement
CLAIM_FIELDS = (
    'operator_id', 'vertical', 'source', 'source_module', 'entitlement_type',
    'resource_id', 'created_at', 'granted_at', 'expires_at', 'quota', 'used',
    'session_id', 'event_id', 'payment_intent_id', 'subscription_id', 'mode',
    'amount_total', 'currency', 'platform_fee_cents', 'engine_version',
)


@dataclass
class ClaimResult:
    claimed: int = 0
    operators: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        if not self.claimed:
            return {'claimed': 0, 'operators': [], 'message': 'No pending entitlements'}
        return {
            'claimed': self.claimed,
            'operators': self.operators,
            'message': f'Claimed {self.claimed} entitlement(s)',
        }


def has_pending_entitlements(email: str) -> bool:
    return PendingEntitlement.objects.filter(
        email_hash=hash_email(email),
        claimed_at__isnull=True,
    ).exists()


def claim_pending_entitlements(uid: str, email: str) -> ClaimResult:
    """Move every unclaimed pending grant for ``email`` onto ``uid``.

    Idempotent: once claimed, a pending grant is never matched again, so a
    second call returns ``claimed=0``. Entitlements keep the purchase time,
    not the claim time.

    Raises:
        BadRequest: If the identity carries no email
        TransientFulfillmentFailure: If the atomic write fails
    """
    if not email:
        raise BadRequest('No email associated with account')

    if not has_pending_entitlements(email):
        return ClaimResult()

    email_hash = hash_email(email)
    now = timezone.now()

    try:
        with transaction.atomic():
            pending = list(
                PendingEntitlement.objects.select_for_update()
                .filter(email_hash=email_hash, claimed_at__isnull=True)
                .order_by('created_at', 'pk')
            )
            if not pending:
                # Claimed by a concurrent request between the check and the lock
                return ClaimResult()

            user, _ = PortalUser.objects.select_for_update().get_or_create(
                uid=uid,
                defaults={'email': email, 'email_lower': normalize_email(email)},
            )

            operators = {}
            spent = 0
            for grant in pending:
                Entitlement.objects.get_or_create(
                    event_id=grant.event_id,
                    defaults={
                        'uid': uid,
                        'status': Entitlement.Status.ACTIVE,
                        **{name: getattr(grant, name) for name in CLAIM_FIELDS if name != 'event_id'},
                    },
                )
                grant.claimed_at = now
                grant.claimed_by_uid = uid
                grant.save(update_fields=['claimed_at', 'claimed_by_uid'])

                operators.setdefault(grant.operator_id, grant.vertical)
                spent += grant.amount_total

            for operator_id, vertical in operators.items():
                ensure_membership(uid, operator_id, vertical, now)
                convert_waitlist_lead(email_hash, operator_id, uid, now)

            PortalUser.objects.filter(pk=user.pk).update(
                spent_cents=F('spent_cents') + spent,
                last_purchase_at=now,
                updated_at=now,
            )
    except DatabaseError as e:
        logger.exception('Claim failed for uid %s', uid)
        raise TransientFulfillmentFailure('Failed to claim entitlements') from e

    result = ClaimResult(claimed=len(pending), operators=list(operators))
    logger.info('Claimed %d entitlements for uid %s', result.claimed, uid)
    return result
