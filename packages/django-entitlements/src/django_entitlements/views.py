"""HTTP endpoints: payment webhook, portal API and waitlist capture."""

import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from django_entitlements.actors import build_actor
from django_entitlements.claims import claim_pending_entitlements
from django_entitlements.conf import get_setting
from django_entitlements.exceptions import BadRequest, EntitlementsError, ProviderError
from django_entitlements.features import operator_branding, resolve_portal_features
from django_entitlements.fulfillment import handle_webhook
from django_entitlements.guards import error_response, portal_endpoint, require_operator_access
from django_entitlements.identity import extract_bearer_token, get_identity_provider
from django_entitlements.models import Membership
from django_entitlements.notifications import resend_access_email
from django_entitlements.selectors import (
    active_entitlements,
    operator_members,
    serialize_entitlement,
    serialize_membership,
    summary_counts,
    user_summary,
)
from django_entitlements.signatures import SIGNATURE_HEADER
from django_entitlements.waitlist import capture_lead, check_rate_limit

logger = logging.getLogger(__name__)


# =============================================================================
# Payment webhook
# =============================================================================


@csrf_exempt
@require_POST
def payment_webhook(request):
    """Signed processor webhook. 200 unless the signature or the write fails."""
    try:
        result = handle_webhook(request.body, request.META.get(SIGNATURE_HEADER))
    except EntitlementsError as e:
        if e.status_code == 400:
            logger.warning('Webhook rejected: %s', e)
        return error_response(e)
    return JsonResponse({'received': True, **result.as_dict()})


# =============================================================================
# Portal API
# =============================================================================


@csrf_exempt
@require_POST
@portal_endpoint()
def claim(request):
    """Claim pending entitlements for the authenticated identity."""
    result = claim_pending_entitlements(request.actor.uid, request.actor.email)
    return JsonResponse(result.as_dict())


@require_GET
def bootstrap(request):
    """Load portal state, claiming any pending entitlements first.

    The actor is resolved after the claim so freshly claimed operators are
    already in scope.
    """
    try:
        token = extract_bearer_token(request.headers.get('Authorization'))
        identity = get_identity_provider().verify_token(token)

        claimed = 0
        if identity.email:
            try:
                claimed = claim_pending_entitlements(identity.uid, identity.email).claimed
            except EntitlementsError as e:
                # Claim is retried on the next bootstrap
                logger.warning('Bootstrap claim failed for uid %s: %s', identity.uid, e)

        actor = build_actor(identity.uid, identity.email)
        operator_id = request.GET.get('operatorId', '')
        if operator_id:
            require_operator_access(actor, operator_id)
    except EntitlementsError as e:
        return error_response(e)

    branded = [operator_id] if operator_id else actor.operator_ids
    memberships = Membership.objects.filter(uid=actor.uid).order_by('joined_at')
    response = JsonResponse({
        'actor': actor.as_dict(),
        'user': user_summary(actor.uid, actor.email),
        'resolvedFeatures': resolve_portal_features(operator_id).as_dict(),
        'operatorBranding': {op: operator_branding(op) for op in branded},
        'summaryCounts': summary_counts(actor.uid, actor.operator_ids, claimed=claimed),
        'memberships': [serialize_membership(m) for m in memberships],
        'entitlements': [serialize_entitlement(e) for e in active_entitlements(actor.uid, operator_id)],
        'engineVersion': get_setting('ENGINE_VERSION'),
    })
    response['Cache-Control'] = 'private, no-cache'
    return response


@require_GET
@portal_endpoint(feature='programs')
def entitlement_list(request):
    """Active entitlements of the actor for one operator."""
    entitlements = active_entitlements(request.actor.uid, request.operator_id)
    return JsonResponse({
        'operatorId': request.operator_id,
        'entitlements': [serialize_entitlement(e) for e in entitlements],
    })


@require_GET
@portal_endpoint(feature='dashboard', min_role='coach')
def members(request, operator_id):
    """Members of an operator, for its coaches and admins."""
    return JsonResponse({
        'operatorId': operator_id,
        'members': operator_members(operator_id),
    })


@csrf_exempt
@require_POST
@portal_endpoint()
def resend(request):
    """Re-send the access email to the authenticated identity."""
    try:
        resend_access_email(request.actor.uid, request.actor.email)
    except ProviderError as e:
        logger.error('Resend failed for uid %s: %s', request.actor.uid, e)
        return JsonResponse({'ok': False, 'error': 'Failed to send email'}, status=500)
    return JsonResponse({'ok': True})


# =============================================================================
# Waitlist
# =============================================================================


def _client_address(request) -> str:
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR') or 'unknown'


@csrf_exempt
@require_POST
def waitlist(request):
    """Capture a waitlist lead."""
    client = _client_address(request)
    try:
        check_rate_limit(client)
        try:
            body = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise BadRequest('Invalid JSON body')
        if not isinstance(body, dict):
            raise BadRequest('Invalid JSON body')

        # Hidden field only bots fill in; answer as if it worked
        if body.get('_hp'):
            logger.warning('Waitlist honeypot triggered from %s', client)
            return JsonResponse({'success': True})

        lead, created = capture_lead(
            email=body.get('email'),
            operator_id=body.get('operatorId'),
            vertical=body.get('vertical'),
            source=body.get('source'),
            source_module=body.get('sourceModule'),
            tags=body.get('tags'),
        )
    except EntitlementsError as e:
        return error_response(e)

    if not created:
        return JsonResponse({'success': True, 'message': 'Already registered'})
    return JsonResponse({'success': True, 'leadId': lead.pk}, status=201)
