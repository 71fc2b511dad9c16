"""Authorization guards for portal endpoints.

Guard stack, always in this order, stopping at the first denial:
    1. authenticate()            - 401 if the bearer token does not verify
    2. require_feature()         - 403 if the operator has not enabled the feature
    3. require_operator_access() - 403 if the actor has no relationship with the operator
    4. require_role()            - 403 if the actor's role is too low

Usage:
    @require_GET
    @portal_endpoint(feature='dashboard', min_role='coach')
    def operator_members(request, operator_id):
        request.actor     # Actor
        request.features  # ResolvedPortalFeatures for operator_id
        ...
"""

import logging
from functools import wraps
from typing import Iterable, Optional

from django.http import JsonResponse

from django_entitlements.actors import Actor, resolve_actor
from django_entitlements.exceptions import (
    BadRequest,
    EntitlementsError,
    FeatureNotEnabled,
    InsufficientRole,
    OperatorAccessDenied,
)
from django_entitlements.features import resolve_portal_features
from django_entitlements.identity import extract_bearer_token

logger = logging.getLogger(__name__)


def error_response(exc: EntitlementsError) -> JsonResponse:
    """Translate an EntitlementsError into its JSON response."""
    return JsonResponse(exc.as_dict(), status=exc.status_code)


def authenticate(request) -> Actor:
    """Resolve the Actor behind the request's bearer token.

    Raises:
        Unauthorized: If the token is missing or invalid
    """
    token = extract_bearer_token(request.headers.get('Authorization'))
    return resolve_actor(token)


def require_feature(feature: str, features: Iterable[str]) -> None:
    if feature not in features:
        raise FeatureNotEnabled([feature])


def require_any_feature(required: Iterable[str], features: Iterable[str]) -> None:
    """OR semantics, for endpoints shared by several features."""
    required = list(required)
    if not any(f in features for f in required):
        raise FeatureNotEnabled(required)


def require_operator_access(actor: Actor, operator_id: str) -> None:
    if not actor.can_access_operator(operator_id):
        logger.info('Operator access denied: uid %s role %s operator %s',
                    actor.uid, actor.role, operator_id)
        raise OperatorAccessDenied(operator_id, actor.role)


def require_role(actor: Actor, min_role: str) -> None:
    if not actor.has_role(min_role):
        raise InsufficientRole(min_role, actor.role)


def portal_endpoint(feature: Optional[str] = None,
                    any_features: Optional[list[str]] = None,
                    min_role: Optional[str] = None,
                    operator_param: str = 'operatorId'):
    """Decorator applying the guard stack to a function-based view.

    The operator comes from the ``operator_id`` URL kwarg, else from the
    ``operator_param`` query parameter. Feature checks need an operator;
    without one the request is rejected with 400.

    Sets ``request.actor``, ``request.operator_id`` and ``request.features``
    before calling the view. Any EntitlementsError raised by the guards or
    the view becomes a JSON error response.

    Args:
        feature: Portal feature that must be enabled
        any_features: Portal features of which at least one must be enabled
        min_role: Minimum role ('client', 'coach', 'admin')
        operator_param: Query parameter naming the operator
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            try:
                actor = authenticate(request)
                operator_id = kwargs.get('operator_id') or request.GET.get(operator_param, '')

                features = resolve_portal_features(operator_id)
                if feature or any_features:
                    if not operator_id:
                        raise BadRequest(f'{operator_param} is required')
                    if feature:
                        require_feature(feature, features)
                    if any_features:
                        require_any_feature(any_features, features)

                if operator_id:
                    require_operator_access(actor, operator_id)
                if min_role:
                    require_role(actor, min_role)

                request.actor = actor
                request.operator_id = operator_id
                request.features = features
                return view_func(request, *args, **kwargs)
            except EntitlementsError as e:
                return error_response(e)
        return wrapper
    return decorator
