"""Django app configuration for django-entitlements."""

from django.apps import AppConfig


class DjangoEntitlementsConfig(AppConfig):
    """App configuration for django-entitlements."""

    name = 'django_entitlements'
    verbose_name = 'Entitlements'
    default_auto_field = 'django.db.models.BigAutoField'
