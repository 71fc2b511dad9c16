"""Django Entitlements configuration.

All settings can be overridden in your Django settings.py using the
ENTITLEMENTS_ prefix.

Example:
    # settings.py
    ENTITLEMENTS_WEBHOOK_SECRET = env('PAYMENTS_WEBHOOK_SECRET')
    ENTITLEMENTS_EMAIL_PROVIDER = 'django_entitlements.notifications.BrevoEmailProvider'
    ENTITLEMENTS_OPERATORS = {
        'fit-1': {
            'features': ['dashboard', 'programs', 'sessions', 'profile'],
            'branding': {'name': 'Fit One', 'accent': '#ff5500'},
            'resources': {'prod-a': {'label': '12 Week Strength', 'description': '...'}},
        },
    }
"""

from django.conf import settings


DEFAULTS = {
    'WEBHOOK_SECRET': '',
    'SIGNATURE_TOLERANCE': 300,
    'IDENTITY_PROVIDER': 'django_entitlements.identity.SignedTokenIdentityProvider',
    'TOKEN_MAX_AGE': 3600,
    'EMAIL_PROVIDER': 'django_entitlements.notifications.ConsoleEmailProvider',
    'FROM_EMAIL': '',
    'FROM_NAME': 'Portal',
    'BCC_EMAIL': '',
    'BREVO_API_KEY': '',
    'BREVO_TIMEOUT': 10.0,
    'PORTAL_URL': '/portal',
    'ENGINE_VERSION': '1.0.0',
    'DEFAULT_FEATURES': ['dashboard', 'programs', 'profile'],
    'OPERATORS': {},
    'RESEND_COOLDOWN': 60,
    'WAITLIST_RATE_LIMIT': 5,
    'WAITLIST_RATE_WINDOW': 60,
}


def get_setting(name: str, default=None):
    """Get a setting with ENTITLEMENTS_ prefix, falling back to DEFAULTS."""
    if default is None:
        default = DEFAULTS.get(name)
    return getattr(settings, f'ENTITLEMENTS_{name}', default)


def get_operator_config(operator_id: str) -> dict:
    """Get the configuration block for one operator (empty dict if unknown)."""
    operators = get_setting('OPERATORS') or {}
    return operators.get(operator_id) or {}


def get_resource_definition(operator_id: str, resource_id: str) -> dict:
    """Label/description for a resource from the operator's ``resources`` block."""
    resources = get_operator_config(operator_id).get('resources') or {}
    return resources.get(resource_id) or {}
