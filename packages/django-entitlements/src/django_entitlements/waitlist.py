"""Waitlist lead capture.

Leads are unique per (email hash, operator). Capturing the same email twice
for one operator returns the existing lead.
"""

import logging

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction

from django_entitlements.conf import get_setting
from django_entitlements.exceptions import BadRequest, RateLimited
from django_entitlements.models import Vertical, WaitlistLead
from django_entitlements.utils import hash_email, normalize_email

logger = logging.getLogger(__name__)

MAX_TAGS = 10
MAX_TAG_LENGTH = 50


def check_rate_limit(client_key: str) -> None:
    """Allow WAITLIST_RATE_LIMIT captures per WAITLIST_RATE_WINDOW per client.

    Raises:
        RateLimited: If the client exceeded its limit
    """
    key = f'entitlements:waitlist:{client_key}'
    window = get_setting('WAITLIST_RATE_WINDOW')
    if cache.add(key, 1, timeout=window):
        return
    try:
        count = cache.incr(key)
    except ValueError:
        # Expired between add and incr
        cache.set(key, 1, timeout=window)
        return
    if count > get_setting('WAITLIST_RATE_LIMIT'):
        logger.warning('Waitlist rate limited: %s', client_key)
        raise RateLimited('Too many requests. Please try again later.')


def clean_tags(tags) -> list[str]:
    if not isinstance(tags, list):
        return []
    return [str(t)[:MAX_TAG_LENGTH] for t in tags[:MAX_TAGS]]


def capture_lead(email, operator_id, vertical, source, source_module=None, tags=None):
    """Validate and store a waitlist lead.

    Returns:
        Tuple of (lead, created)

    Raises:
        BadRequest: If a field is missing or invalid
    """
    if not email or not isinstance(email, str):
        raise BadRequest('Email is required')
    try:
        validate_email(email.strip())
    except ValidationError:
        raise BadRequest('Invalid email format')
    if not operator_id or not isinstance(operator_id, str):
        raise BadRequest('operatorId is required')
    if vertical not in Vertical.values:
        raise BadRequest('Invalid vertical')
    if not source or not isinstance(source, str):
        raise BadRequest('source is required')

    email = email.strip()
    email_hash = hash_email(email)
    try:
        with transaction.atomic():
            lead = WaitlistLead.objects.create(
                email=email,
                email_lower=normalize_email(email),
                email_hash=email_hash,
                operator_id=operator_id,
                vertical=vertical,
                source=source,
                source_module=source_module if isinstance(source_module, str) and source_module else source,
                tags=clean_tags(tags),
            )
    except IntegrityError:
        return WaitlistLead.objects.get(email_hash=email_hash, operator_id=operator_id), False

    logger.info('Created waitlist lead %s for operator %s', lead.pk, operator_id)
    return lead, True
