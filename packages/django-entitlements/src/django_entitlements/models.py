"""Entitlement models - purchases turned into durable access grants.

This module provides:
- EventLedgerEntry: Append-only idempotency record for processor events
- PaymentCustomerLink: Processor customer reference -> uid lookup
- PortalUser: Purchaser account record with accumulated totals
- Membership: Ongoing user <-> operator relationship
- Entitlement: Access grant for one resource, one user, one operator
- PendingEntitlement: Grant awaiting an authenticated identity (by email hash)
- WaitlistLead: Captured lead, converted when the same email purchases
- RoleAssignment: Explicit coach/admin elevation

Identities live in an external identity provider, so ``uid`` is an opaque
string rather than a foreign key to AUTH_USER_MODEL.

State machines:
- PendingEntitlement: unclaimed -> claimed (terminal, only via claim)
- Entitlement: active -> expired | revoked (both terminal)
"""

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from django_entitlements.exceptions import InvalidStatusTransition


class Vertical(models.TextChoices):
    FITNESS = 'fitness', _('Fitness')
    TOURS = 'tours', _('Tours')
    CONSULTANCY = 'consultancy', _('Consultancy')


class PaymentMode(models.TextChoices):
    PAYMENT = 'payment', _('One-time payment')
    SUBSCRIPTION = 'subscription', _('Subscription')


class PortalRole(models.TextChoices):
    CLIENT = 'client', _('Client')
    COACH = 'coach', _('Coach')
    ADMIN = 'admin', _('Admin')


# Fixed hierarchy: client < coach < admin
ROLE_LEVELS = {
    PortalRole.CLIENT: 0,
    PortalRole.COACH: 1,
    PortalRole.ADMIN: 2,
}


class TimeStampedModel(models.Model):
    """Abstract base model with created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class EventLedgerEntry(models.Model):
    """Append-only record of inbound processor events.

    At most one entry per event_id, enforced by the unique constraint.
    ``processed`` flips False -> True exactly once, inside the same
    transaction that applies the event's writes.

    Usage:
        entry, created = record_event('evt_1', 'checkout.session.completed')
        if not created and entry.processed:
            return  # duplicate delivery
    """

    event_id = models.CharField(
        _('event id'),
        max_length=255,
        unique=True,
        help_text=_('Processor-assigned event identifier'),
    )
    event_type = models.CharField(_('event type'), max_length=100)
    received_at = models.DateTimeField(auto_now_add=True)
    processed = models.BooleanField(_('processed'), default=False)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _('event ledger entry')
        verbose_name_plural = _('event ledger entries')
        ordering = ['-received_at']

    def __str__(self):
        state = 'processed' if self.processed else 'received'
        return f'{self.event_id} ({self.event_type}, {state})'


class PaymentCustomerLink(TimeStampedModel):
    """Maps a processor customer reference to a known uid."""

    customer_id = models.CharField(_('customer id'), max_length=255, unique=True)
    uid = models.CharField(_('uid'), max_length=128, db_index=True)
    email_lower = models.EmailField(_('email (normalized)'), blank=True)

    class Meta:
        verbose_name = _('payment customer link')
        verbose_name_plural = _('payment customer links')

    def __str__(self):
        return f'{self.customer_id} -> {self.uid}'


class PortalUser(TimeStampedModel):
    """Purchaser account record.

    Created on the first direct entitlement or first claim. Totals only
    accumulate; this app never deletes users.
    """

    class SubscriptionStatus(models.TextChoices):
        ACTIVE = 'active', _('Active')
        TRIALING = 'trialing', _('Trialing')
        PAST_DUE = 'past_due', _('Past due')
        CANCELED = 'canceled', _('Canceled')
        NONE = 'none', _('None')

    uid = models.CharField(_('uid'), max_length=128, unique=True)
    email = models.EmailField(_('email'))
    email_lower = models.EmailField(_('email (normalized)'), db_index=True)
    profile = models.JSONField(_('profile'), default=dict, blank=True)

    # Payment linkage
    customer_id = models.CharField(_('customer id'), max_length=255, blank=True)
    subscription_id = models.CharField(_('subscription id'), max_length=255, blank=True)
    subscription_status = models.CharField(
        _('subscription status'),
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.NONE,
    )

    # Totals
    spent_cents = models.PositiveBigIntegerField(_('total spent (cents)'), default=0)
    last_purchase_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _('portal user')
        verbose_name_plural = _('portal users')

    def __str__(self):
        return f'{self.email_lower} ({self.uid})'


class Membership(models.Model):
    """Ongoing relationship between a user and an operator.

    Created the first time a uid gets any entitlement for the operator.
    """

    class Status(models.TextChoices):
        ACTIVE = 'active', _('Active')
        CHURNED = 'churned', _('Churned')

    uid = models.CharField(_('uid'), max_length=128, db_index=True)
    operator_id = models.CharField(_('operator id'), max_length=100, db_index=True)
    vertical = models.CharField(
        _('vertical'),
        max_length=20,
        choices=Vertical.choices,
        default=Vertical.FITNESS,
    )
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    profile = models.JSONField(_('profile'), default=dict, blank=True)
    joined_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('membership')
        verbose_name_plural = _('memberships')
        constraints = [
            models.UniqueConstraint(
                fields=['uid', 'operator_id'],
                name='unique_membership_per_operator',
            ),
        ]

    def __str__(self):
        return f'{self.uid} @ {self.operator_id} ({self.status})'


class EntitlementFields(models.Model):
    """Grant payload shared by Entitlement and PendingEntitlement."""

    class Source(models.TextChoices):
        CHECKOUT = 'checkout', _('Checkout')
        GIFT = 'gift', _('Gift')
        MANUAL = 'manual', _('Manual')

    class Kind(models.TextChoices):
        PROGRAM = 'program', _('Program')
        SUBSCRIPTION = 'subscription', _('Subscription')
        SESSION_PACK = 'session-pack', _('Session pack')
        BOOKING = 'booking', _('Booking')

    operator_id = models.CharField(_('operator id'), max_length=100, db_index=True)
    vertical = models.CharField(
        _('vertical'),
        max_length=20,
        choices=Vertical.choices,
        default=Vertical.FITNESS,
    )
    source = models.CharField(
        _('source'),
        max_length=20,
        choices=Source.choices,
        default=Source.CHECKOUT,
    )
    source_module = models.CharField(_('source module'), max_length=100, default='unknown')

    entitlement_type = models.CharField(
        _('type'),
        max_length=20,
        choices=Kind.choices,
        default=Kind.PROGRAM,
    )
    resource_id = models.CharField(_('resource id'), max_length=255)

    # Purchase time, preserved when a pending grant is claimed
    created_at = models.DateTimeField(default=timezone.now)
    granted_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(null=True, blank=True)

    quota = models.PositiveIntegerField(null=True, blank=True)
    used = models.PositiveIntegerField(null=True, blank=True)

    # Payment linkage
    session_id = models.CharField(_('checkout session id'), max_length=255, blank=True)
    event_id = models.CharField(
        _('event id'),
        max_length=255,
        unique=True,
        help_text=_('Source processor event; one grant per purchase'),
    )
    payment_intent_id = models.CharField(max_length=255, blank=True)
    subscription_id = models.CharField(max_length=255, blank=True)

    # Commission fields
    mode = models.CharField(
        _('mode'),
        max_length=20,
        choices=PaymentMode.choices,
        default=PaymentMode.PAYMENT,
    )
    amount_total = models.PositiveBigIntegerField(_('amount total (cents)'), default=0)
    currency = models.CharField(_('currency'), max_length=3, default='usd')
    platform_fee_cents = models.PositiveBigIntegerField(default=0)
    engine_version = models.CharField(max_length=20, blank=True)

    class Meta:
        abstract = True


class Entitlement(EntitlementFields):
    """Durable grant of access to one resource for one user+operator pair.

    Immutable except for status transitions. Use ``transition_to`` rather
    than assigning ``status`` directly.
    """

    class Status(models.TextChoices):
        ACTIVE = 'active', _('Active')
        EXPIRED = 'expired', _('Expired')
        REVOKED = 'revoked', _('Revoked')

    ALLOWED_TRANSITIONS = {
        Status.ACTIVE: {Status.EXPIRED, Status.REVOKED},
        Status.EXPIRED: set(),
        Status.REVOKED: set(),
    }

    uid = models.CharField(_('uid'), max_length=128, db_index=True)
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True,
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('entitlement')
        verbose_name_plural = _('entitlements')
        ordering = ['-granted_at']
        indexes = [
            models.Index(fields=['uid', 'status']),
            models.Index(fields=['uid', 'operator_id']),
        ]

    def __str__(self):
        return f'{self.uid}: {self.operator_id}/{self.resource_id} ({self.status})'

    @property
    def is_active(self):
        return self.status == self.Status.ACTIVE

    def transition_to(self, target: str) -> None:
        """Move to a new status, enforcing the terminal states.

        Raises:
            InvalidStatusTransition: If the move is not allowed.
        """
        if target not in self.ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidStatusTransition(self.status, target)
        self.status = target
        self.save(update_fields=['status', 'updated_at'])


class PendingEntitlement(EntitlementFields):
    """Grant for a purchaser with no account yet, bucketed by email hash.

    Created once per unresolved purchase. Mutated exactly once, when the
    matching identity authenticates and claims it.
    """

    email = models.EmailField(_('email'))
    email_lower = models.EmailField(_('email (normalized)'))
    email_hash = models.CharField(_('email hash'), max_length=64, db_index=True)

    claimed_at = models.DateTimeField(null=True, blank=True)
    claimed_by_uid = models.CharField(max_length=128, null=True, blank=True)

    class Meta:
        verbose_name = _('pending entitlement')
        verbose_name_plural = _('pending entitlements')
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['email_hash', 'claimed_at']),
        ]

    def __str__(self):
        state = f'claimed by {self.claimed_by_uid}' if self.is_claimed else 'unclaimed'
        return f'{self.email_lower}: {self.operator_id}/{self.resource_id} ({state})'

    @property
    def is_claimed(self):
        return self.claimed_at is not None


class WaitlistLead(models.Model):
    """Lead captured before purchase.

    Converted (uid set) as a side effect of fulfillment or claim for the
    same operator and email.
    """

    email = models.EmailField(_('email'))
    email_lower = models.EmailField(_('email (normalized)'))
    email_hash = models.CharField(_('email hash'), max_length=64)
    operator_id = models.CharField(_('operator id'), max_length=100)
    vertical = models.CharField(
        _('vertical'),
        max_length=20,
        choices=Vertical.choices,
        default=Vertical.FITNESS,
    )
    source = models.CharField(_('source'), max_length=100, blank=True)
    source_module = models.CharField(_('source module'), max_length=100, blank=True)
    tags = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    converted_at = models.DateTimeField(null=True, blank=True)
    uid = models.CharField(_('uid'), max_length=128, null=True, blank=True)

    class Meta:
        verbose_name = _('waitlist lead')
        verbose_name_plural = _('waitlist leads')
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['email_hash', 'operator_id'],
                name='unique_waitlist_lead_per_operator',
            ),
        ]

    def __str__(self):
        state = 'converted' if self.is_converted else 'open'
        return f'{self.email_lower} @ {self.operator_id} ({state})'

    @property
    def is_converted(self):
        return self.uid is not None


class RoleAssignment(models.Model):
    """Explicit role elevation for a uid.

    Any uid without an assignment is a client. A superadmin assignment is
    an admin assignment flagged ``is_superadmin`` with no operator: it grants
    access to every operator regardless of the actor's other relationships.

    Examples:
        # Coach for one operator
        RoleAssignment.objects.create(uid='u1', operator_id='fit-1', role='coach')

        # Platform-wide admin
        RoleAssignment.objects.create(uid='ops', role='admin', is_superadmin=True)
    """

    uid = models.CharField(_('uid'), max_length=128, db_index=True)
    operator_id = models.CharField(
        _('operator id'),
        max_length=100,
        blank=True,
        help_text=_('Blank only for superadmin assignments'),
    )
    role = models.CharField(
        _('role'),
        max_length=20,
        choices=[(PortalRole.COACH, PortalRole.COACH.label), (PortalRole.ADMIN, PortalRole.ADMIN.label)],
    )
    is_superadmin = models.BooleanField(
        _('superadmin'),
        default=False,
        help_text=_('Admin with access to all operators'),
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('role assignment')
        verbose_name_plural = _('role assignments')
        constraints = [
            models.UniqueConstraint(
                fields=['uid', 'operator_id', 'role'],
                name='unique_role_assignment',
            ),
            models.CheckConstraint(
                condition=(
                    (models.Q(is_superadmin=True) & models.Q(role='admin') & models.Q(operator_id='')) |
                    (models.Q(is_superadmin=False) & ~models.Q(operator_id=''))
                ),
                name='role_assignment_scope_explicit',
            ),
        ]

    def __str__(self):
        scope = 'all operators' if self.is_superadmin else self.operator_id
        return f'{self.uid}: {self.role} ({scope})'
