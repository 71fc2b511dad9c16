"""Django Entitlements - exactly-once purchase fulfillment and portal authorization."""

__version__ = '0.1.0'

# Lazy imports to avoid AppRegistryNotReady errors
def __getattr__(name):
    if name in ('Entitlement', 'PendingEntitlement', 'Membership', 'RoleAssignment'):
        from django_entitlements import models
        return getattr(models, name)
    if name in ('handle_webhook', 'process_event'):
        from django_entitlements import fulfillment
        return getattr(fulfillment, name)
    if name == 'claim_pending_entitlements':
        from django_entitlements.claims import claim_pending_entitlements
        return claim_pending_entitlements
    if name in ('Actor', 'resolve_actor'):
        from django_entitlements import actors
        return getattr(actors, name)
    if name == 'portal_endpoint':
        from django_entitlements.guards import portal_endpoint
        return portal_endpoint
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    'Entitlement',
    'PendingEntitlement',
    'Membership',
    'RoleAssignment',
    'handle_webhook',
    'process_event',
    'claim_pending_entitlements',
    'Actor',
    'resolve_actor',
    'portal_endpoint',
]
