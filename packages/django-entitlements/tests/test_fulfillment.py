"""Tests for webhook fulfillment."""

import json
from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.db import DatabaseError

from django_entitlements.events import parse_event
from django_entitlements.exceptions import TransientFulfillmentFailure
from django_entitlements.fulfillment import Outcome, process_event
from django_entitlements.identity import IdentityProvider
from django_entitlements.models import (
    Entitlement,
    EventLedgerEntry,
    Membership,
    PaymentCustomerLink,
    PendingEntitlement,
    PortalUser,
    WaitlistLead,
)
from django_entitlements.utils import hash_email


class FixedIdentityProvider(IdentityProvider):
    """Resolves every email to the same uid (or to nobody)."""

    def __init__(self, uid=None):
        self.uid = uid

    def verify_token(self, token):
        raise NotImplementedError

    def get_uid_by_email(self, email_lower):
        return self.uid


class BrokenIdentityProvider(FixedIdentityProvider):

    def get_uid_by_email(self, email_lower):
        raise TimeoutError('identity provider timed out')


def as_event(payload):
    return parse_event(json.dumps(payload).encode())


@pytest.fixture(autouse=True)
def quiet_email():
    with patch('django_entitlements.fulfillment.notify_access_ready') as notify:
        yield notify


@pytest.mark.django_db
class TestPendingPath:
    """Purchases by unknown purchasers land in the pending bucket."""

    def test_unknown_purchaser_creates_pending_entitlement(self, checkout_event):
        """evt_1 for new@x.com with no account creates one pending grant."""
        event = as_event(checkout_event())

        result = process_event(event, identity_provider=FixedIdentityProvider(None))

        assert result.outcome == Outcome.PENDING
        pending = PendingEntitlement.objects.get()
        assert pending.email_hash == hash_email('new@x.com')
        assert pending.claimed_at is None
        assert pending.claimed_by_uid is None
        assert pending.operator_id == 'fit-1'
        assert pending.resource_id == 'prod-a'
        assert pending.amount_total == 9900
        assert pending.engine_version == '1.0.0'

    def test_pending_path_touches_no_user_or_membership(self, checkout_event):
        """The pending path is a single write."""
        process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider(None))

        assert PortalUser.objects.count() == 0
        assert Membership.objects.count() == 0
        assert Entitlement.objects.count() == 0

    def test_identity_failure_falls_back_to_pending(self, checkout_event):
        """A failing identity lookup selects the pending path instead of erroring."""
        result = process_event(as_event(checkout_event()), identity_provider=BrokenIdentityProvider())

        assert result.outcome == Outcome.PENDING
        assert PendingEntitlement.objects.count() == 1

    def test_ledger_marked_processed(self, checkout_event):
        """The ledger entry flips to processed with the write."""
        process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider(None))

        entry = EventLedgerEntry.objects.get(event_id='evt_1')
        assert entry.processed is True


@pytest.mark.django_db
class TestDirectPath:
    """Purchases by known purchasers grant access immediately."""

    def test_known_purchaser_gets_entitlement(self, checkout_event):
        """User, membership and an active entitlement are written."""
        result = process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider('u1'))

        assert result.outcome == Outcome.DIRECT
        assert result.uid == 'u1'
        user = PortalUser.objects.get(uid='u1')
        assert user.email_lower == 'new@x.com'
        assert user.spent_cents == 9900
        assert user.last_purchase_at is not None
        assert Membership.objects.filter(uid='u1', operator_id='fit-1', status='active').exists()
        entitlement = Entitlement.objects.get(uid='u1')
        assert entitlement.is_active
        assert entitlement.resource_id == 'prod-a'
        assert entitlement.payment_intent_id == 'pi_evt_1'
        assert entitlement.session_id == 'cs_evt_1'
        assert PendingEntitlement.objects.count() == 0

    def test_resolves_by_auth_user_email(self, checkout_event):
        """The default provider maps the purchaser email to the user's pk."""
        user = get_user_model().objects.create_user(username='buyer', email='New@X.com')

        result = process_event(as_event(checkout_event()))

        assert result.outcome == Outcome.DIRECT
        assert result.uid == str(user.pk)

    def test_resolves_by_customer_link_first(self, checkout_event):
        """A known processor customer wins over the email lookup."""
        PaymentCustomerLink.objects.create(customer_id='cus_1', uid='u7', email_lower='old@x.com')

        result = process_event(
            as_event(checkout_event(customer='cus_1')),
            identity_provider=FixedIdentityProvider('u1'),
        )

        assert result.uid == 'u7'

    def test_customer_link_upserted(self, checkout_event):
        """The direct path records customer -> uid for later purchases."""
        process_event(as_event(checkout_event(customer='cus_1')), identity_provider=FixedIdentityProvider('u1'))

        link = PaymentCustomerLink.objects.get(customer_id='cus_1')
        assert link.uid == 'u1'
        assert link.email_lower == 'new@x.com'

    def test_repeat_purchaser_accumulates_totals(self, checkout_event):
        """Totals add up across purchases; membership is created once."""
        provider = FixedIdentityProvider('u1')
        process_event(as_event(checkout_event(event_id='evt_1')), identity_provider=provider)
        process_event(
            as_event(checkout_event(event_id='evt_2', resource_id='prod-b', amount_total=100)),
            identity_provider=provider,
        )

        assert PortalUser.objects.get(uid='u1').spent_cents == 10000
        assert Membership.objects.filter(uid='u1').count() == 1
        assert Entitlement.objects.filter(uid='u1').count() == 2

    def test_subscription_mode_sets_subscription_status(self, checkout_event):
        """Subscription purchases mark the user's subscription active."""
        process_event(
            as_event(checkout_event(mode='subscription', subscription='sub_1')),
            identity_provider=FixedIdentityProvider('u1'),
        )

        user = PortalUser.objects.get(uid='u1')
        assert user.subscription_status == PortalUser.SubscriptionStatus.ACTIVE
        assert user.subscription_id == 'sub_1'

    def test_converts_waitlist_lead(self, checkout_event):
        """A matching unconverted lead for the operator is converted."""
        lead = WaitlistLead.objects.create(
            email='new@x.com', email_lower='new@x.com', email_hash=hash_email('new@x.com'),
            operator_id='fit-1', source='landing',
        )
        other = WaitlistLead.objects.create(
            email='new@x.com', email_lower='new@x.com', email_hash=hash_email('new@x.com'),
            operator_id='fit-2', source='landing',
        )

        process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider('u1'))

        lead.refresh_from_db()
        other.refresh_from_db()
        assert lead.uid == 'u1'
        assert lead.converted_at is not None
        assert other.is_converted is False

    def test_sends_access_email_after_commit(self, checkout_event, quiet_email):
        """The access email uses the operator's configured resource label."""
        process_event(
            as_event(checkout_event(metadata={'itemName': 'Strength'})),
            identity_provider=FixedIdentityProvider('u1'),
        )

        quiet_email.assert_called_once()
        to_email, resources = quiet_email.call_args.args
        assert to_email == 'new@x.com'
        assert resources[0].resource_label == '12 Week Strength'
        assert resources[0].resource_description == 'Strength program'

    def test_access_email_falls_back_to_item_name(self, checkout_event, quiet_email):
        """Resources without a configured label use the checkout item name."""
        process_event(
            as_event(checkout_event(operator_id='fit-2', metadata={'itemName': 'Mobility'})),
            identity_provider=FixedIdentityProvider('u1'),
        )

        _, resources = quiet_email.call_args.args
        assert resources[0].resource_label == 'Mobility'


@pytest.mark.django_db
class TestIdempotency:
    """Replaying an event never fulfills it twice."""

    def test_replay_creates_exactly_one_grant(self, checkout_event):
        """Five deliveries of evt_1 produce one pending grant."""
        event = as_event(checkout_event())
        provider = FixedIdentityProvider(None)

        outcomes = [process_event(event, identity_provider=provider).outcome for _ in range(5)]

        assert outcomes[0] == Outcome.PENDING
        assert set(outcomes[1:]) == {Outcome.DUPLICATE}
        assert PendingEntitlement.objects.count() == 1
        assert EventLedgerEntry.objects.count() == 1

    def test_replay_of_direct_grant_is_noop(self, checkout_event, quiet_email):
        """Duplicates neither add totals nor re-send email."""
        event = as_event(checkout_event())
        provider = FixedIdentityProvider('u1')

        process_event(event, identity_provider=provider)
        process_event(event, identity_provider=provider)

        assert Entitlement.objects.count() == 1
        assert PortalUser.objects.get(uid='u1').spent_cents == 9900
        assert quiet_email.call_count == 1

    def test_exactly_one_path(self, checkout_event):
        """A resolvable purchaser never also gets a pending grant."""
        process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider('u1'))

        assert Entitlement.objects.count() + PendingEntitlement.objects.count() == 1

    def test_unfinished_event_is_reprocessed(self, checkout_event):
        """A ledger entry left unprocessed by a crash is fulfilled on retry."""
        EventLedgerEntry.objects.create(event_id='evt_1', event_type='checkout.session.completed')

        result = process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider(None))

        assert result.outcome == Outcome.PENDING
        assert PendingEntitlement.objects.count() == 1


@pytest.mark.django_db
class TestAtomicity:
    """A failure mid-write leaves nothing behind."""

    def test_failure_after_user_upsert_rolls_back(self, checkout_event, quiet_email):
        """No user, membership or entitlement survives a failed write."""
        with patch(
            'django_entitlements.fulfillment.create_entitlement',
            side_effect=DatabaseError('disk full'),
        ):
            with pytest.raises(TransientFulfillmentFailure) as exc_info:
                process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider('u1'))

        assert exc_info.value.status_code == 500
        assert PortalUser.objects.count() == 0
        assert Membership.objects.count() == 0
        assert Entitlement.objects.count() == 0
        assert EventLedgerEntry.objects.get(event_id='evt_1').processed is False
        quiet_email.assert_not_called()

    def test_retry_after_failure_succeeds(self, checkout_event):
        """The processor's retry completes the fulfillment."""
        event = as_event(checkout_event())
        provider = FixedIdentityProvider('u1')
        with patch(
            'django_entitlements.fulfillment.create_entitlement',
            side_effect=DatabaseError('disk full'),
        ):
            with pytest.raises(TransientFulfillmentFailure):
                process_event(event, identity_provider=provider)

        result = process_event(event, identity_provider=provider)

        assert result.outcome == Outcome.DIRECT
        assert Entitlement.objects.count() == 1
        assert PortalUser.objects.get(uid='u1').spent_cents == 9900

    def test_email_failure_does_not_undo_fulfillment(self, checkout_event, quiet_email):
        """Notification runs after commit and is best-effort."""
        with patch(
            'django_entitlements.notifications.send_access_email',
            side_effect=RuntimeError('provider down'),
        ):
            from django_entitlements.notifications import notify_access_ready
            quiet_email.side_effect = notify_access_ready

            result = process_event(as_event(checkout_event()), identity_provider=FixedIdentityProvider('u1'))

        assert result.outcome == Outcome.DIRECT
        assert Entitlement.objects.count() == 1


@pytest.mark.django_db
class TestIgnoredEvents:
    """Events that are acknowledged without fulfillment."""

    def test_other_event_type_is_ignored(self):
        """Non-purchase events are recorded and acknowledged."""
        event = parse_event(b'{"id": "evt_9", "type": "invoice.paid", "data": {"object": {}}}')

        result = process_event(event)

        assert result.outcome == Outcome.IGNORED
        assert EventLedgerEntry.objects.get(event_id='evt_9').processed is True

    def test_malformed_purchase_is_accepted(self, checkout_event):
        """Missing metadata is logged and acknowledged, never retried."""
        result = process_event(as_event(checkout_event(operator_id=None)))

        assert result.outcome == Outcome.MALFORMED
        assert result.missing == ['operatorId']
        assert EventLedgerEntry.objects.get(event_id='evt_1').processed is True
        assert PendingEntitlement.objects.count() == 0

    def test_whitespace_email_never_matches_blank_account(self, checkout_event):
        """A blank purchaser email is not resolved to an account without one."""
        get_user_model().objects.create_superuser(username='root', email='', password='x')

        result = process_event(as_event(checkout_event(email='   ')))

        assert result.outcome == Outcome.MALFORMED
        assert result.missing == ['purchaserEmail']
        assert Entitlement.objects.count() == 0
        assert PendingEntitlement.objects.count() == 0

    def test_malformed_replay_is_duplicate(self, checkout_event):
        """A replayed malformed event short-circuits on the ledger."""
        event = as_event(checkout_event(email=None))
        process_event(event)

        assert process_event(event).outcome == Outcome.DUPLICATE
