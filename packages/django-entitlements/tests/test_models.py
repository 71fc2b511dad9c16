"""Tests for entitlement models."""

from datetime import timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone

from django_entitlements.exceptions import InvalidStatusTransition, NotFound
from django_entitlements.lifecycle import expire_entitlements, revoke_entitlement
from django_entitlements.models import (
    Entitlement,
    EventLedgerEntry,
    Membership,
    RoleAssignment,
)


def make_entitlement(event_id='evt_1', **fields):
    values = {'uid': 'u1', 'operator_id': 'fit-1', 'resource_id': 'prod-a', 'event_id': event_id}
    values.update(fields)
    return Entitlement.objects.create(**values)


@pytest.mark.django_db
class TestEntitlementTransitions:
    """Tests for Entitlement status transitions."""

    def test_active_can_expire(self):
        """active -> expired is allowed."""
        entitlement = make_entitlement()

        entitlement.transition_to(Entitlement.Status.EXPIRED)

        entitlement.refresh_from_db()
        assert entitlement.status == Entitlement.Status.EXPIRED
        assert entitlement.is_active is False

    def test_active_can_be_revoked(self):
        """active -> revoked is allowed."""
        entitlement = make_entitlement()

        entitlement.transition_to(Entitlement.Status.REVOKED)

        assert entitlement.status == Entitlement.Status.REVOKED

    @pytest.mark.parametrize('terminal', [Entitlement.Status.EXPIRED, Entitlement.Status.REVOKED])
    def test_terminal_states_are_final(self, terminal):
        """Expired and revoked never change again."""
        entitlement = make_entitlement(status=terminal)

        with pytest.raises(InvalidStatusTransition):
            entitlement.transition_to(Entitlement.Status.ACTIVE)


@pytest.mark.django_db
class TestLifecycle:
    """Tests for expiry and revocation services."""

    def test_expire_due_entitlements(self):
        """Only active entitlements past expires_at expire."""
        now = timezone.now()
        due = make_entitlement('evt_1', expires_at=now - timedelta(minutes=1))
        later = make_entitlement('evt_2', expires_at=now + timedelta(days=1))
        forever = make_entitlement('evt_3')

        assert expire_entitlements(now=now) == 1

        due.refresh_from_db()
        later.refresh_from_db()
        forever.refresh_from_db()
        assert due.status == Entitlement.Status.EXPIRED
        assert later.is_active
        assert forever.is_active

    def test_expire_dry_run_changes_nothing(self):
        """dry_run only counts."""
        entitlement = make_entitlement(expires_at=timezone.now() - timedelta(days=1))

        assert expire_entitlements(dry_run=True) == 1

        entitlement.refresh_from_db()
        assert entitlement.is_active

    def test_revoke_entitlement(self):
        """Revocation moves an active grant to revoked."""
        entitlement = make_entitlement()

        revoke_entitlement(entitlement.pk)

        entitlement.refresh_from_db()
        assert entitlement.status == Entitlement.Status.REVOKED

    def test_revoke_missing_is_not_found(self):
        """Unknown ids raise NotFound."""
        with pytest.raises(NotFound):
            revoke_entitlement(999)


@pytest.mark.django_db
class TestConstraints:
    """Tests for natural-key constraints."""

    def test_one_ledger_entry_per_event(self):
        """event_id is unique in the ledger."""
        EventLedgerEntry.objects.create(event_id='evt_1', event_type='x')

        with pytest.raises(IntegrityError):
            EventLedgerEntry.objects.create(event_id='evt_1', event_type='x')

    def test_one_entitlement_per_event(self):
        """A purchase grants at most one entitlement."""
        make_entitlement('evt_1')

        with pytest.raises(IntegrityError):
            make_entitlement('evt_1', uid='u2')

    def test_one_membership_per_operator(self):
        """Membership is unique per uid and operator."""
        Membership.objects.create(uid='u1', operator_id='fit-1')

        with pytest.raises(IntegrityError):
            Membership.objects.create(uid='u1', operator_id='fit-1')

    def test_superadmin_must_be_operatorless_admin(self):
        """Superadmin assignments cannot be scoped or be coaches."""
        with pytest.raises(IntegrityError):
            RoleAssignment.objects.create(uid='u1', operator_id='fit-1', role='admin', is_superadmin=True)

    def test_regular_assignment_needs_operator(self):
        """Non-superadmin assignments must name an operator."""
        with pytest.raises(IntegrityError):
            RoleAssignment.objects.create(uid='u1', operator_id='', role='coach')
