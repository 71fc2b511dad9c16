"""Processor event parsing and purchase normalization.

Loosely-typed processor payloads stop here. Everything downstream of
``normalize_purchase`` works with a validated ``PurchaseRecord``.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from django_entitlements.exceptions import BadRequest, MalformedEvent
from django_entitlements.models import EntitlementFields, PaymentMode, Vertical
from django_entitlements.utils import hash_email, normalize_email

logger = logging.getLogger(__name__)

PURCHASE_COMPLETED = 'checkout.session.completed'


@dataclass(frozen=True)
class ProcessorEvent:
    """Envelope of an inbound processor event."""

    event_id: str
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_purchase_completed(self) -> bool:
        return self.event_type == PURCHASE_COMPLETED


@dataclass(frozen=True)
class PurchaseRecord:
    """Validated, normalized "purchase completed" record."""

    event_id: str
    operator_id: str
    resource_id: str
    purchaser_email: str
    session_id: str
    source_module: str = 'unknown'
    vertical: str = Vertical.FITNESS
    entitlement_type: str = EntitlementFields.Kind.PROGRAM
    amount_total: int = 0
    currency: str = 'usd'
    mode: str = PaymentMode.PAYMENT
    payment_intent_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    platform_fee_cents: int = 0
    item_name: Optional[str] = None

    @property
    def email_lower(self) -> str:
        return normalize_email(self.purchaser_email)

    @property
    def email_hash(self) -> str:
        return hash_email(self.purchaser_email)


def parse_event(body: bytes) -> ProcessorEvent:
    """Parse the raw (already verified) body into a ProcessorEvent.

    Raises:
        BadRequest: If the body is not a JSON object with an id and type
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BadRequest('Invalid JSON payload')

    if not isinstance(payload, dict):
        raise BadRequest('Invalid event envelope')

    event_id = payload.get('id')
    event_type = payload.get('type')
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
        raise BadRequest('Event id and type are required')

    data = payload.get('data') or {}
    obj = data.get('object') if isinstance(data, dict) else None
    return ProcessorEvent(
        event_id=event_id,
        event_type=event_type,
        data=obj if isinstance(obj, dict) else {},
    )


def _str_or_none(value) -> Optional[str]:
    # Whitespace-only counts as absent
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _int_or_default(value, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _customer_reference(customer) -> Optional[str]:
    # Expanded customer objects carry their id
    if isinstance(customer, dict):
        return _str_or_none(customer.get('id'))
    return _str_or_none(customer)


def normalize_purchase(event: ProcessorEvent) -> PurchaseRecord:
    """Validate a purchase-completed event into a PurchaseRecord.

    Metadata comes from the checkout session the payment-session collaborator
    created: operatorId, resourceId (or productId), and optional vertical,
    sourceModule, entitlementType, platformFeeCents and itemName.

    Raises:
        MalformedEvent: If operatorId, resourceId or the purchaser email is
            missing. The caller acknowledges these without retry.
    """
    session = event.data
    metadata = session.get('metadata') or {}
    if not isinstance(metadata, dict):
        metadata = {}

    operator_id = _str_or_none(metadata.get('operatorId'))
    resource_id = _str_or_none(metadata.get('resourceId')) or _str_or_none(metadata.get('productId'))

    customer_details = session.get('customer_details') or {}
    email = None
    if isinstance(customer_details, dict):
        email = _str_or_none(customer_details.get('email'))
    email = email or _str_or_none(session.get('customer_email'))

    missing = [
        name for name, value in (
            ('operatorId', operator_id),
            ('resourceId', resource_id),
            ('purchaserEmail', email),
        )
        if not value
    ]
    if missing:
        raise MalformedEvent(
            f"Missing purchase metadata: {', '.join(missing)}",
            missing=missing,
        )

    vertical = metadata.get('vertical') or Vertical.FITNESS
    if vertical not in Vertical.values:
        logger.warning('Unknown vertical %r on event %s, using fitness', vertical, event.event_id)
        vertical = Vertical.FITNESS

    entitlement_type = metadata.get('entitlementType') or EntitlementFields.Kind.PROGRAM
    if entitlement_type not in EntitlementFields.Kind.values:
        logger.warning('Unknown entitlement type %r on event %s, using program',
                       entitlement_type, event.event_id)
        entitlement_type = EntitlementFields.Kind.PROGRAM

    mode = PaymentMode.SUBSCRIPTION if session.get('mode') == 'subscription' else PaymentMode.PAYMENT
    currency = _str_or_none(session.get('currency')) or 'usd'

    return PurchaseRecord(
        event_id=event.event_id,
        operator_id=operator_id,
        resource_id=resource_id,
        purchaser_email=email,
        session_id=_str_or_none(session.get('id')) or '',
        source_module=_str_or_none(metadata.get('sourceModule')) or 'unknown',
        vertical=vertical,
        entitlement_type=entitlement_type,
        amount_total=max(_int_or_default(session.get('amount_total')), 0),
        currency=currency.lower(),
        mode=mode,
        payment_intent_id=_str_or_none(session.get('payment_intent')),
        subscription_id=_str_or_none(session.get('subscription')),
        customer_id=_customer_reference(session.get('customer')),
        platform_fee_cents=max(_int_or_default(metadata.get('platformFeeCents')), 0),
        item_name=_str_or_none(metadata.get('itemName')),
    )
