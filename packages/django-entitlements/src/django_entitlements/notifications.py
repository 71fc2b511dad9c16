"""Access email notifications.

Sends the "your access is ready" email through a pluggable provider
(ENTITLEMENTS_EMAIL_PROVIDER). Fulfillment calls ``notify_access_ready``
after commit; its failures are logged and never undo fulfillment.
"""

import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Optional

import httpx
from django.core.cache import cache
from django.template.loader import render_to_string
from django.utils.module_loading import import_string

from django_entitlements.conf import get_operator_config, get_resource_definition, get_setting
from django_entitlements.exceptions import BadRequest, ProviderError, RateLimited
from django_entitlements.models import Entitlement

logger = logging.getLogger(__name__)

ACCESS_EMAIL_SUBJECT = 'Your access is ready'
BREVO_ENDPOINT = 'https://api.brevo.com/v3/smtp/email'


@dataclass
class AccessEmailResource:
    """One resource listed in the access email."""

    operator_id: str
    resource_id: str
    resource_label: str
    operator_name: Optional[str] = None
    resource_description: Optional[str] = None


@dataclass
class SendResult:
    """Result of a send operation."""

    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, provider: str, message_id: str = '') -> 'SendResult':
        return cls(success=True, provider=provider, message_id=message_id)

    @classmethod
    def fail(cls, provider: str, error: str) -> 'SendResult':
        return cls(success=False, provider=provider, error=error)


class BaseEmailProvider(ABC):
    """Abstract base class for transactional email providers."""

    provider_name: str = 'base'

    @abstractmethod
    def send(self, to_email: str, subject: str, body_html: str, body_text: str,
             bcc: Optional[str] = None) -> SendResult:
        """Send one email.

        Raises:
            ProviderError: If the provider rejects the message
        """
        raise NotImplementedError


class ConsoleEmailProvider(BaseEmailProvider):
    """Email provider that logs instead of sending (for development)."""

    provider_name = 'console'

    def send(self, to_email, subject, body_html, body_text, bcc=None):
        message_id = f'console-{uuid.uuid4().hex[:12]}'
        logger.info('CONSOLE EMAIL (not sent) to=%s subject=%s\n%s', to_email, subject, body_text)
        return SendResult.ok(provider=self.provider_name, message_id=message_id)


class BrevoEmailProvider(BaseEmailProvider):
    """Email provider using the Brevo transactional email API."""

    provider_name = 'brevo'

    def __init__(self, client: Optional[httpx.Client] = None):
        self.api_key = get_setting('BREVO_API_KEY')
        self.from_email = get_setting('FROM_EMAIL')
        self.from_name = get_setting('FROM_NAME')
        self.client = client

    def send(self, to_email, subject, body_html, body_text, bcc=None):
        if not self.api_key:
            raise ProviderError('BREVO_API_KEY not configured', provider=self.provider_name)
        if not self.from_email:
            raise ProviderError('FROM_EMAIL not configured', provider=self.provider_name)

        payload = {
            'sender': {'name': self.from_name, 'email': self.from_email},
            'to': [{'email': to_email}],
            'subject': subject,
            'htmlContent': body_html,
            'textContent': body_text,
        }
        if bcc:
            payload['bcc'] = [{'email': bcc}]

        try:
            if self.client is not None:
                response = self._post(self.client, payload)
            else:
                with httpx.Client(timeout=get_setting('BREVO_TIMEOUT')) as client:
                    response = self._post(client, payload)
        except httpx.HTTPError as e:
            raise ProviderError(str(e), provider=self.provider_name, original_error=e)

        if response.status_code >= 400:
            raise ProviderError(
                f'HTTP {response.status_code}: {response.text}',
                provider=self.provider_name,
            )

        return SendResult.ok(
            provider=self.provider_name,
            message_id=response.json().get('messageId', ''),
        )

    def _post(self, client: httpx.Client, payload: dict) -> httpx.Response:
        return client.post(
            BREVO_ENDPOINT,
            json=payload,
            headers={'api-key': self.api_key, 'Accept': 'application/json'},
        )


def describe_resource(operator_id: str, resource_id: str,
                      fallback_label: Optional[str] = None) -> AccessEmailResource:
    """Access email entry for a resource.

    The operator's configured resource label wins, then ``fallback_label``,
    then the bare resource id.
    """
    definition = get_resource_definition(operator_id, resource_id)
    return AccessEmailResource(
        operator_id=operator_id,
        resource_id=resource_id,
        resource_label=definition.get('label') or fallback_label or resource_id,
        resource_description=definition.get('description'),
    )


def get_email_provider() -> BaseEmailProvider:
    """Instantiate the configured email provider."""
    return import_string(get_setting('EMAIL_PROVIDER'))()


def send_access_email(to_email: str, resources: list[AccessEmailResource],
                      portal_url: Optional[str] = None) -> SendResult:
    """Render and send the access email.

    Raises:
        ProviderError: If the provider fails to send
    """
    for resource in resources:
        if not resource.operator_name:
            branding = get_operator_config(resource.operator_id).get('branding') or {}
            resource.operator_name = branding.get('name')

    context = {
        'to_email': to_email,
        'resources': [asdict(r) for r in resources],
        'portal_url': portal_url or get_setting('PORTAL_URL'),
        'support_email': get_setting('FROM_EMAIL'),
    }
    body_html = render_to_string('django_entitlements/emails/access_ready.html', context)
    body_text = render_to_string('django_entitlements/emails/access_ready.txt', context)

    provider = get_email_provider()
    return provider.send(
        to_email=to_email,
        subject=ACCESS_EMAIL_SUBJECT,
        body_html=body_html,
        body_text=body_text,
        bcc=get_setting('BCC_EMAIL') or None,
    )


def resend_access_email(uid: str, email: str) -> SendResult:
    """Re-send the access email listing every active entitlement.

    One send per ENTITLEMENTS_RESEND_COOLDOWN seconds per uid.

    Raises:
        BadRequest: If the identity has no email or nothing is active
        RateLimited: If called again within the cooldown
        ProviderError: If the provider fails to send
    """
    if not email:
        raise BadRequest('No email associated with account')

    cooldown = get_setting('RESEND_COOLDOWN')
    key = f'entitlements:resend:{uid}'
    now = time.time()
    last_sent = cache.get(key)
    if last_sent is not None and now - last_sent < cooldown:
        wait = math.ceil(cooldown - (now - last_sent))
        raise RateLimited(f'Please wait {wait} seconds before requesting another email')

    entitlements = Entitlement.objects.filter(uid=uid, status=Entitlement.Status.ACTIVE)
    resources = []
    for entitlement in entitlements.order_by('-granted_at'):
        resources.append(describe_resource(entitlement.operator_id, entitlement.resource_id))
    if not resources:
        raise BadRequest('No active access to send')

    result = send_access_email(email, resources)
    cache.set(key, now, timeout=cooldown)
    logger.info('Resent access email to %s with %d resources', email, len(resources))
    return result


def notify_access_ready(to_email: str, resources: list[AccessEmailResource]) -> Optional[SendResult]:
    """Best-effort access email after a committed fulfillment.

    Never raises and never retries: a down email provider must not undo or
    repeat fulfillment. Returns None when sending failed.
    """
    try:
        result = send_access_email(to_email, resources)
    except Exception as e:
        logger.error('Access email to %s failed: %s', to_email, e)
        return None
    logger.info('Access email sent to %s via %s', to_email, result.provider)
    return result
