"""Portal feature and branding resolution per operator.

Fallback chain: ENTITLEMENTS_OPERATORS[operator_id]['features'] ->
ENTITLEMENTS_DEFAULT_FEATURES. Everything beyond the defaults is opt-in.
"""

from dataclasses import dataclass, field

from django_entitlements.conf import get_operator_config, get_setting

PORTAL_FEATURES = (
    'dashboard',
    'sessions',
    'programs',
    'entries',
    'timeline',
    'goals',
    'messaging',
    'reports',
    'profile',
)

NAV_LABELS = {
    'dashboard': 'Dashboard',
    'sessions': 'Sessions',
    'programs': 'Programs',
    'entries': 'Updates',
    'timeline': 'Timeline',
    'goals': 'Goals',
    'messaging': 'Messages',
    'reports': 'Reports',
    'profile': 'Profile',
}


@dataclass
class ResolvedPortalFeatures:
    operator_id: str
    enabled: bool = True
    features: list[str] = field(default_factory=list)

    def __contains__(self, feature: str) -> bool:
        return self.enabled and feature in self.features

    @property
    def nav(self) -> list[dict]:
        # Canonical display order, filtered to enabled features
        return [
            {'id': f, 'label': NAV_LABELS[f], 'href': f'{get_setting("PORTAL_URL")}/{f}'}
            for f in PORTAL_FEATURES
            if f in self.features
        ]

    def as_dict(self) -> dict:
        return {
            'operatorId': self.operator_id,
            'enabled': self.enabled,
            'features': self.features,
            'nav': self.nav,
        }


def resolve_portal_features(operator_id: str = '') -> ResolvedPortalFeatures:
    """Resolve the enabled portal features for an operator.

    Unknown operators and operators without a ``features`` list get the
    defaults. Unknown feature names are dropped.
    """
    config = get_operator_config(operator_id) if operator_id else {}
    features = config.get('features')
    if features is None:
        features = get_setting('DEFAULT_FEATURES')
    return ResolvedPortalFeatures(
        operator_id=operator_id,
        enabled=config.get('portal_enabled', True),
        features=[f for f in features if f in PORTAL_FEATURES],
    )


def operator_branding(operator_id: str) -> dict:
    """Branding block for an operator, defaulting the name to its id."""
    branding = dict(get_operator_config(operator_id).get('branding') or {})
    branding.setdefault('name', operator_id)
    return branding
