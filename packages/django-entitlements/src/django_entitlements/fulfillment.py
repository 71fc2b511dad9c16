"""Fulfillment services - processor events to entitlements, exactly once.

Flow for one inbound event:
1. Conditional create of the ledger entry (duplicate deliveries stop here)
2. Non-purchase events and malformed purchases are acknowledged
3. The purchaser is resolved to a uid, or not
4. One atomic transaction writes either the direct grant (user, membership,
   entitlement, waitlist conversion) or the pending grant, and flips the
   ledger entry to processed
5. After commit, the access email is sent best-effort

Every write is keyed on a natural key (event_id, uid, uid+operator), so
reprocessing an event whose earlier attempt crashed is safe.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from django_entitlements.conf import get_setting
from django_entitlements.events import (
    ProcessorEvent,
    PurchaseRecord,
    normalize_purchase,
    parse_event,
)
from django_entitlements.exceptions import MalformedEvent, TransientFulfillmentFailure
from django_entitlements.identity import IdentityProvider, resolve_uid
from django_entitlements.ledger import lock_event, mark_processed, record_event
from django_entitlements.models import (
    Entitlement,
    EntitlementFields,
    Membership,
    PaymentCustomerLink,
    PaymentMode,
    PendingEntitlement,
    PortalUser,
    WaitlistLead,
)
from django_entitlements.notifications import describe_resource, notify_access_ready
from django_entitlements.signatures import verify_signature
from django_entitlements.utils import sanitize

logger = logging.getLogger(__name__)


class Outcome:
    DIRECT = 'fulfilled'
    PENDING = 'pending'
    DUPLICATE = 'duplicate'
    IGNORED = 'ignored'
    MALFORMED = 'accepted_ignored'


@dataclass
class FulfillmentResult:
    """What happened to one inbound event."""

    outcome: str
    event_id: str
    uid: Optional[str] = None
    grant_id: Optional[int] = None
    missing: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        payload = {'status': self.outcome, 'eventId': self.event_id}
        if self.missing:
            payload['missing'] = self.missing
        return payload


def handle_webhook(body: bytes, signature_header: Optional[str]) -> FulfillmentResult:
    """Verify, parse and process a raw webhook delivery.

    Raises:
        ServiceUnavailable: Webhook secret not configured
        SignatureInvalid: Bad signature (terminal, never retried)
        BadRequest: Verified body is not a valid event envelope
        TransientFulfillmentFailure: Atomic write failed (retry-eligible)
    """
    verify_signature(body, signature_header)
    return process_event(parse_event(body))


def process_event(event: ProcessorEvent,
                  identity_provider: Optional[IdentityProvider] = None) -> FulfillmentResult:
    """Process one verified event exactly once."""
    entry, created = record_event(event.event_id, event.event_type)
    if not created:
        if entry.processed:
            logger.info('Duplicate event ignored: %s', event.event_id)
            return FulfillmentResult(Outcome.DUPLICATE, event.event_id)
        logger.info('Reprocessing unfinished event: %s', event.event_id)

    if not event.is_purchase_completed:
        _acknowledge(event.event_id)
        return FulfillmentResult(Outcome.IGNORED, event.event_id)

    try:
        record = normalize_purchase(event)
    except MalformedEvent as e:
        logger.warning('Event %s accepted without fulfillment: %s', event.event_id, e)
        _acknowledge(event.event_id)
        return FulfillmentResult(Outcome.MALFORMED, event.event_id, missing=e.missing)

    return fulfill_purchase(record, identity_provider=identity_provider)


def _acknowledge(event_id: str) -> None:
    with transaction.atomic():
        mark_processed(lock_event(event_id))


def fulfill_purchase(record: PurchaseRecord,
                     identity_provider: Optional[IdentityProvider] = None) -> FulfillmentResult:
    """Grant the purchase on exactly one path, then notify.

    The ledger entry for ``record.event_id`` must already exist.

    Raises:
        TransientFulfillmentFailure: If the atomic write fails. Nothing from
            this attempt is persisted and the ledger stays unprocessed.
    """
    uid = resolve_uid(record.customer_id, record.purchaser_email, provider=identity_provider)
    now = timezone.now()

    try:
        with transaction.atomic():
            entry = lock_event(record.event_id)
            if entry.processed:
                logger.info('Event %s fulfilled by a concurrent delivery', record.event_id)
                return FulfillmentResult(Outcome.DUPLICATE, record.event_id)

            if uid:
                grant = write_direct_entitlement(uid, record, now)
                result = FulfillmentResult(Outcome.DIRECT, record.event_id, uid=uid, grant_id=grant.pk)
            else:
                grant = write_pending_entitlement(record, now)
                result = FulfillmentResult(Outcome.PENDING, record.event_id, grant_id=grant.pk)

            mark_processed(entry)
    except DatabaseError as e:
        logger.exception('Fulfillment failed for event %s', record.event_id)
        raise TransientFulfillmentFailure('Fulfillment failed') from e

    if uid:
        logger.info('Created entitlement for uid %s resource %s/%s',
                    uid, record.operator_id, record.resource_id)
    else:
        logger.info('Created pending entitlement for %s resource %s/%s',
                    record.email_lower, record.operator_id, record.resource_id)

    notify_access_ready(
        record.purchaser_email,
        [describe_resource(record.operator_id, record.resource_id, fallback_label=record.item_name)],
    )
    return result


def entitlement_values(record: PurchaseRecord, now) -> dict:
    """Grant payload shared by both paths, sanitized for the write."""
    return sanitize({
        'operator_id': record.operator_id,
        'vertical': record.vertical,
        'source': EntitlementFields.Source.CHECKOUT,
        'source_module': record.source_module,
        'entitlement_type': record.entitlement_type,
        'resource_id': record.resource_id,
        'created_at': now,
        'granted_at': now,
        'expires_at': None,
        'quota': None,
        'used': None,
        'session_id': record.session_id,
        'event_id': record.event_id,
        'payment_intent_id': record.payment_intent_id,
        'subscription_id': record.subscription_id,
        'mode': record.mode,
        'amount_total': record.amount_total,
        'currency': record.currency,
        'platform_fee_cents': record.platform_fee_cents,
        'engine_version': get_setting('ENGINE_VERSION'),
    })


def write_direct_entitlement(uid: str, record: PurchaseRecord, now) -> Entitlement:
    """Direct path. Must run inside the fulfillment transaction."""
    if record.customer_id:
        PaymentCustomerLink.objects.update_or_create(
            customer_id=record.customer_id,
            defaults={'uid': uid, 'email_lower': record.email_lower},
        )

    upsert_user(uid, record, now)
    ensure_membership(uid, record.operator_id, record.vertical, now)
    entitlement = create_entitlement(uid, entitlement_values(record, now))
    convert_waitlist_lead(record.email_hash, record.operator_id, uid, now)
    return entitlement


def write_pending_entitlement(record: PurchaseRecord, now) -> PendingEntitlement:
    """Pending path: a single write under the purchaser's email hash."""
    values = entitlement_values(record, now)
    event_id = values.pop('event_id')
    pending, _ = PendingEntitlement.objects.get_or_create(
        event_id=event_id,
        defaults={
            **values,
            'email': record.purchaser_email,
            'email_lower': record.email_lower,
            'email_hash': record.email_hash,
        },
    )
    return pending


def upsert_user(uid: str, record: PurchaseRecord, now) -> PortalUser:
    """Create the user, or merge payment fields and accumulate totals."""
    is_subscription = record.mode == PaymentMode.SUBSCRIPTION
    user, created = PortalUser.objects.select_for_update().get_or_create(
        uid=uid,
        defaults=sanitize({
            'email': record.purchaser_email,
            'email_lower': record.email_lower,
            'customer_id': record.customer_id,
            'subscription_id': record.subscription_id,
            'subscription_status': (
                PortalUser.SubscriptionStatus.ACTIVE if is_subscription else None
            ),
            'spent_cents': record.amount_total,
            'last_purchase_at': now,
        }),
    )
    if created:
        return user

    updates = sanitize({
        'customer_id': record.customer_id,
        'subscription_id': record.subscription_id,
        'subscription_status': (
            PortalUser.SubscriptionStatus.ACTIVE if is_subscription else None
        ),
    })
    PortalUser.objects.filter(pk=user.pk).update(
        spent_cents=F('spent_cents') + record.amount_total,
        last_purchase_at=now,
        updated_at=now,
        **updates,
    )
    return user


def ensure_membership(uid: str, operator_id: str, vertical: str, now) -> Membership:
    membership, created = Membership.objects.get_or_create(
        uid=uid,
        operator_id=operator_id,
        defaults={
            'vertical': vertical,
            'status': Membership.Status.ACTIVE,
            'joined_at': now,
        },
    )
    if created:
        logger.info('Created membership %s @ %s', uid, operator_id)
    return membership


def create_entitlement(uid: str, values: dict) -> Entitlement:
    event_id = values.pop('event_id')
    entitlement, _ = Entitlement.objects.get_or_create(
        event_id=event_id,
        defaults={'uid': uid, **values},
    )
    return entitlement


def convert_waitlist_lead(email_hash: str, operator_id: str, uid: str, now) -> Optional[WaitlistLead]:
    """Mark the oldest unconverted lead for this email+operator as converted."""
    lead = (
        WaitlistLead.objects.select_for_update()
        .filter(email_hash=email_hash, operator_id=operator_id, uid__isnull=True)
        .order_by('created_at')
        .first()
    )
    if lead is None:
        return None
    lead.converted_at = now
    lead.uid = uid
    lead.save(update_fields=['converted_at', 'uid'])
    logger.info('Converted waitlist lead %s for uid %s', lead.pk, uid)
    return lead
