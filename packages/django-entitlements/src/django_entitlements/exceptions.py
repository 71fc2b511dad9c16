"""Exceptions for django-entitlements.

Every HTTP-facing error carries a status code, a machine-readable reason
and a human hint. Views turn them into JSON with ``as_dict()``.
"""


class EntitlementsError(Exception):
    """Base exception for entitlement errors."""

    status_code = 500
    reason = 'error'

    def __init__(self, message: str = '', hint: str = ''):
        self.message = message or self.__class__.__doc__.strip().splitlines()[0].rstrip('.')
        self.hint = hint
        super().__init__(self.message)

    def as_dict(self) -> dict:
        payload = {'error': self.message, 'reason': self.reason}
        if self.hint:
            payload['hint'] = self.hint
        return payload


class SignatureInvalid(EntitlementsError):
    """Webhook signature verification failed."""

    status_code = 400
    reason = 'signature_invalid'


class ServiceUnavailable(EntitlementsError):
    """Service unavailable."""

    status_code = 503
    reason = 'service_unavailable'


class Unauthorized(EntitlementsError):
    """Missing or invalid authorization token."""

    status_code = 401
    reason = 'unauthorized'


class NotFound(EntitlementsError):
    """Resource not found."""

    status_code = 404
    reason = 'not_found'


class TransientFulfillmentFailure(EntitlementsError):
    """Fulfillment failed, retry later."""

    status_code = 500
    reason = 'fulfillment_failed'


class MalformedEvent(EntitlementsError):
    """Event accepted but ignored: processor metadata is incomplete.

    Retrying cannot repair bad metadata, so the event is acknowledged.
    """

    status_code = 200
    reason = 'accepted_ignored'

    def __init__(self, message: str, missing: list[str] | None = None):
        self.missing = missing or []
        super().__init__(message)

    def as_dict(self) -> dict:
        payload = super().as_dict()
        payload['missing'] = self.missing
        return payload


class Forbidden(EntitlementsError):
    """Access denied."""

    status_code = 403
    reason = 'forbidden'


class FeatureNotEnabled(Forbidden):
    """Raised when a required portal feature is not enabled."""

    reason = 'feature_not_enabled'

    def __init__(self, features: list[str]):
        self.features = list(features)
        if len(self.features) == 1:
            hint = f'The operator has not enabled the "{self.features[0]}" portal feature.'
        else:
            hint = 'None of the required portal features are enabled.'
        super().__init__('Feature not enabled', hint)

    def as_dict(self) -> dict:
        payload = super().as_dict()
        if len(self.features) == 1:
            payload['feature'] = self.features[0]
        else:
            payload['required'] = self.features
        return payload


class OperatorAccessDenied(Forbidden):
    """Raised when an actor has no relationship with an operator."""

    reason = 'operator_access_denied'

    def __init__(self, operator_id: str, role: str):
        self.operator_id = operator_id
        self.role = role
        super().__init__(
            'Operator access denied',
            f'Role "{role}" has no membership, entitlement, or role assignment '
            f'for operator "{operator_id}".',
        )

    def as_dict(self) -> dict:
        payload = super().as_dict()
        payload['operatorId'] = self.operator_id
        return payload


class InsufficientRole(Forbidden):
    """Raised when an actor's role is below the required level."""

    reason = 'insufficient_role'

    def __init__(self, required: str, actual: str):
        self.required = required
        self.actual = actual
        super().__init__(
            'Insufficient role',
            f'This action requires at least "{required}" role. Actor has "{actual}".',
        )

    def as_dict(self) -> dict:
        payload = super().as_dict()
        payload['required'] = self.required
        payload['actual'] = self.actual
        return payload


class RateLimited(EntitlementsError):
    """Too many requests."""

    status_code = 429
    reason = 'rate_limited'


class BadRequest(EntitlementsError):
    """Invalid request."""

    status_code = 400
    reason = 'bad_request'


class InvalidStatusTransition(EntitlementsError):
    """Entitlement status transition is not allowed."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition entitlement from '{current}' to '{target}'")


class ProviderError(EntitlementsError):
    """Error from an email provider."""

    reason = 'email_failed'

    def __init__(self, message: str, provider: str, original_error: Exception = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(f'[{provider}] {message}')
