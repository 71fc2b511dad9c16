"""Identity provider boundary and purchaser identity resolution.

The identity provider is an external collaborator. This app only needs it
to verify bearer tokens and to look up an existing account by email.
Configure the provider with ENTITLEMENTS_IDENTITY_PROVIDER.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from django.contrib.auth import get_user_model
from django.core import signing
from django.utils.module_loading import import_string

from django_entitlements.conf import get_setting
from django_entitlements.exceptions import ServiceUnavailable, Unauthorized
from django_entitlements.models import PaymentCustomerLink
from django_entitlements.utils import normalize_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """A verified identity."""

    uid: str
    email: str


class IdentityProvider(ABC):
    """Abstract base class for identity providers."""

    provider_name: str = 'base'

    @abstractmethod
    def verify_token(self, token: str) -> Identity:
        """Verify a bearer token.

        Raises:
            Unauthorized: If the token is invalid or expired
        """
        raise NotImplementedError

    @abstractmethod
    def get_uid_by_email(self, email_lower: str) -> Optional[str]:
        """Return the uid of the account with this email, or None."""
        raise NotImplementedError


class SignedTokenIdentityProvider(IdentityProvider):
    """Identity provider backed by Django's signing and auth user model.

    Tokens are ``django.core.signing`` payloads of ``{uid, email}`` bound to
    SECRET_KEY. Accounts are AUTH_USER_MODEL rows; the uid is the user's pk.
    """

    provider_name = 'signed'
    salt = 'django_entitlements.identity'

    def issue_token(self, uid: str, email: str) -> str:
        return signing.dumps({'uid': str(uid), 'email': email}, salt=self.salt)

    def verify_token(self, token: str) -> Identity:
        try:
            payload = signing.loads(token, salt=self.salt, max_age=get_setting('TOKEN_MAX_AGE'))
        except signing.SignatureExpired:
            raise Unauthorized('Token expired')
        except signing.BadSignature:
            raise Unauthorized('Invalid token')

        uid = payload.get('uid') if isinstance(payload, dict) else None
        if not uid:
            raise Unauthorized('Invalid token')
        return Identity(uid=str(uid), email=payload.get('email') or '')

    def get_uid_by_email(self, email_lower: str) -> Optional[str]:
        if not email_lower:
            return None
        User = get_user_model()
        user = User.objects.filter(email__iexact=email_lower).order_by('pk').first()
        return str(user.pk) if user else None


def get_identity_provider() -> IdentityProvider:
    """Instantiate the configured identity provider.

    Raises:
        ServiceUnavailable: If the configured path cannot be imported
    """
    path = get_setting('IDENTITY_PROVIDER')
    try:
        provider_class = import_string(path)
    except ImportError:
        logger.error('Identity provider %s could not be imported', path)
        raise ServiceUnavailable('Identity provider not configured')
    return provider_class()


def extract_bearer_token(authorization: str | None) -> str:
    """Pull the token out of an ``Authorization: Bearer <token>`` header.

    Raises:
        Unauthorized: If the header is missing or not a bearer token
    """
    if not authorization or not authorization.startswith('Bearer '):
        raise Unauthorized('Missing authorization token')
    token = authorization[len('Bearer '):].strip()
    if not token:
        raise Unauthorized('Missing authorization token')
    return token


def resolve_uid(customer_id: Optional[str], email: str,
                provider: Optional[IdentityProvider] = None) -> Optional[str]:
    """Map a purchaser to an existing account, if any.

    Resolution order:
    1. Processor customer reference in the payment-link table
    2. Normalized email via the identity provider

    Lookup failures are logged and treated as "not found", so a slow or
    broken identity provider sends the purchase down the pending path
    instead of failing the webhook.

    Returns:
        The uid, or None when the purchaser is unknown
    """
    if customer_id:
        try:
            link = PaymentCustomerLink.objects.filter(customer_id=customer_id).first()
            if link:
                logger.info('Resolved uid %s from customer %s', link.uid, customer_id)
                return link.uid
        except Exception:
            logger.warning('Customer link lookup failed for %s', customer_id, exc_info=True)

    email_lower = normalize_email(email or '')
    if not email_lower:
        return None

    try:
        provider = provider or get_identity_provider()
        uid = provider.get_uid_by_email(email_lower)
    except Exception:
        logger.warning('Identity lookup by email failed, using pending path', exc_info=True)
        return None

    if uid:
        logger.info('Resolved uid %s from identity provider', uid)
    return uid
