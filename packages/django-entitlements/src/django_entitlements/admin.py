"""Django admin configuration for entitlements."""

from django.contrib import admin, messages

from .exceptions import InvalidStatusTransition
from .lifecycle import revoke_entitlement
from .models import (
    Entitlement,
    EventLedgerEntry,
    Membership,
    PaymentCustomerLink,
    PendingEntitlement,
    PortalUser,
    RoleAssignment,
    WaitlistLead,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Records written only by fulfillment and claim."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(EventLedgerEntry)
class EventLedgerEntryAdmin(ReadOnlyAdmin):
    list_display = ['event_id', 'event_type', 'processed', 'received_at', 'processed_at']
    list_filter = ['processed', 'event_type']
    search_fields = ['event_id']
    date_hierarchy = 'received_at'


@admin.register(Entitlement)
class EntitlementAdmin(admin.ModelAdmin):
    """Entitlements are immutable; only status moves, through the revoke action."""

    list_display = ['uid', 'operator_id', 'resource_id', 'entitlement_type', 'status', 'granted_at', 'expires_at']
    list_filter = ['status', 'vertical', 'entitlement_type', 'source']
    search_fields = ['uid', 'operator_id', 'resource_id', 'event_id', 'session_id']
    date_hierarchy = 'granted_at'
    actions = ['revoke_selected']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    @admin.action(description='Revoke selected entitlements')
    def revoke_selected(self, request, queryset):
        revoked = 0
        for entitlement in queryset:
            try:
                revoke_entitlement(entitlement.pk)
                revoked += 1
            except InvalidStatusTransition as e:
                self.message_user(request, str(e), level=messages.WARNING)
        self.message_user(request, f'Revoked {revoked} entitlement(s).')


@admin.register(PendingEntitlement)
class PendingEntitlementAdmin(ReadOnlyAdmin):
    list_display = ['email_lower', 'operator_id', 'resource_id', 'created_at', 'is_claimed', 'claimed_by_uid']
    list_filter = ['operator_id']
    search_fields = ['email_lower', 'email_hash', 'event_id']

    def is_claimed(self, obj):
        return obj.is_claimed
    is_claimed.boolean = True


@admin.register(PortalUser)
class PortalUserAdmin(admin.ModelAdmin):
    list_display = ['email_lower', 'uid', 'subscription_status', 'spent_cents', 'last_purchase_at']
    list_filter = ['subscription_status']
    search_fields = ['uid', 'email_lower', 'customer_id']
    readonly_fields = ['uid', 'spent_cents', 'last_purchase_at', 'created_at', 'updated_at']


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ['uid', 'operator_id', 'vertical', 'status', 'joined_at']
    list_filter = ['status', 'vertical']
    search_fields = ['uid', 'operator_id']


@admin.register(PaymentCustomerLink)
class PaymentCustomerLinkAdmin(ReadOnlyAdmin):
    list_display = ['customer_id', 'uid', 'email_lower', 'updated_at']
    search_fields = ['customer_id', 'uid', 'email_lower']


@admin.register(WaitlistLead)
class WaitlistLeadAdmin(admin.ModelAdmin):
    list_display = ['email_lower', 'operator_id', 'vertical', 'source', 'created_at', 'converted_at']
    list_filter = ['vertical', 'operator_id']
    search_fields = ['email_lower', 'operator_id']
    readonly_fields = ['email_hash', 'converted_at', 'uid', 'created_at']


@admin.register(RoleAssignment)
class RoleAssignmentAdmin(admin.ModelAdmin):
    list_display = ['uid', 'operator_id', 'role', 'is_superadmin', 'created_at']
    list_filter = ['role', 'is_superadmin']
    search_fields = ['uid', 'operator_id']
