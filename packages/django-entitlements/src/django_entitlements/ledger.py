"""Event ledger - idempotency record for inbound processor events."""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from django_entitlements.models import EventLedgerEntry

logger = logging.getLogger(__name__)


def record_event(event_id: str, event_type: str) -> tuple[EventLedgerEntry, bool]:
    """Conditionally create the ledger entry for an event.

    This is a genuine create-if-absent: the INSERT runs in its own savepoint
    and the unique constraint on ``event_id`` decides the race. Two workers
    delivering the same event cannot both observe "absent".

    Args:
        event_id: Processor-assigned event id
        event_type: Processor event type

    Returns:
        (entry, created). When ``created`` is False the caller inspects
        ``entry.processed``: True means duplicate, False means a prior
        attempt did not finish and the event may be reprocessed.
    """
    try:
        with transaction.atomic():
            entry = EventLedgerEntry.objects.create(
                event_id=event_id,
                event_type=event_type,
            )
        return entry, True
    except IntegrityError:
        entry = EventLedgerEntry.objects.get(event_id=event_id)
        return entry, False


def lock_event(event_id: str) -> EventLedgerEntry:
    """Lock the ledger row for the rest of the current transaction.

    Must be called inside ``transaction.atomic()``. Concurrent reprocessing
    of the same event serializes here; the loser then sees processed=True.
    """
    return EventLedgerEntry.objects.select_for_update().get(event_id=event_id)


def mark_processed(entry: EventLedgerEntry) -> None:
    """Flip ``processed`` to True. A no-op if it already is."""
    if entry.processed:
        return
    entry.processed = True
    entry.processed_at = timezone.now()
    entry.save(update_fields=['processed', 'processed_at'])
    logger.debug('Ledger entry %s marked processed', entry.event_id)
