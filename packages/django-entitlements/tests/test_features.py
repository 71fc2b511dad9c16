"""Tests for portal feature and branding resolution."""

from django_entitlements.features import operator_branding, resolve_portal_features


class TestResolvePortalFeatures:
    """Tests for resolve_portal_features."""

    def test_configured_operator(self):
        """Configured features are returned."""
        resolved = resolve_portal_features('fit-1')

        assert resolved.features == ['dashboard', 'programs', 'sessions', 'profile']
        assert 'sessions' in resolved

    def test_unknown_operator_gets_defaults(self):
        """Operators without config use the default features."""
        assert resolve_portal_features('unknown').features == ['dashboard', 'programs', 'profile']

    def test_unknown_feature_names_dropped(self, settings):
        """Only known portal features survive."""
        settings.ENTITLEMENTS_OPERATORS = {'x': {'features': ['dashboard', 'teleport']}}

        assert resolve_portal_features('x').features == ['dashboard']

    def test_nav_in_canonical_order(self):
        """Navigation follows the canonical order, not config order."""
        nav = resolve_portal_features('fit-1').nav

        assert [item['id'] for item in nav] == ['dashboard', 'sessions', 'programs', 'profile']
        assert nav[0]['href'] == 'https://example.com/portal/dashboard'

    def test_disabled_portal_has_no_features(self, settings):
        """A disabled portal fails every feature check."""
        settings.ENTITLEMENTS_OPERATORS = {'x': {'features': ['dashboard'], 'portal_enabled': False}}

        assert 'dashboard' not in resolve_portal_features('x')


class TestOperatorBranding:
    """Tests for operator_branding."""

    def test_configured_branding(self):
        """Configured branding is returned."""
        assert operator_branding('fit-1') == {'name': 'Fit One', 'accent': '#ff5500'}

    def test_name_defaults_to_operator_id(self):
        """Unbranded operators are named by id."""
        assert operator_branding('tours-1') == {'name': 'tours-1'}
