"""
Authentication and tenancy operations.

Views stay thin: they validate input with serializers and delegate here.
Expected failures raise ActionError.
"""
import logging
import time

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import ProtectedError

from .authentication import get_membership, issue_session_tokens
from .errors import get_error_presentation
from .models import Company, Membership, User
from .results import (
    ActionError, CONFLICT, INTERNAL, INVALID_INPUT, NOT_FOUND, UNAUTHENTICATED,
    DEFAULT_INTERNAL_MESSAGE,
)
from .utils import log_activity

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = 'Incorrect username or password.'


def _fail_login(username, reason):
    logger.info(f"Login failed for '{username}': {reason}")
    delay = getattr(settings, 'LOGIN_FAILURE_DELAY_SECONDS', 0)
    if delay:
        time.sleep(delay)
    raise ActionError(UNAUTHENTICATED, INVALID_CREDENTIALS_MESSAGE)


def login(request, username, password):
    """
    Verify credentials and open a session.

    - Superadmins get no active company (they impersonate explicitly).
    - Everyone else needs an ACTIVE membership; its company becomes the scope.
    - Wrong passwords of company members are recorded as `auth.login_failed`.
    """
    username = (username or '').strip()
    try:
        user = User.objects.select_related('membership__company').filter(username=username).first()
        if user is None or not user.is_active:
            _fail_login(username, 'unknown or inactive user')

        membership = get_membership(user)
        active_membership = membership if membership and membership.status == Membership.STATUS_ACTIVE else None

        if not user.check_password(password):
            if active_membership is not None:
                log_activity(
                    active_membership.company,
                    actor=user,
                    action='auth.login_failed',
                    meta={'reason': 'invalid_password'},
                    request=request,
                )
            _fail_login(username, 'invalid password')

        if user.is_superadmin:
            return {'user': user, **issue_session_tokens(user, None)}

        if active_membership is None:
            _fail_login(username, 'no active membership')

        log_activity(active_membership.company, actor=user, action='auth.login_success', request=request)
        return {'user': user, **issue_session_tokens(user, active_membership.company_id)}
    except DatabaseError as e:
        presentation = get_error_presentation(e)
        logger.error(f"AUTH_LOGIN_ERROR {presentation['developer']}")
        raise ActionError(INTERNAL, DEFAULT_INTERNAL_MESSAGE) from e


def set_impersonation(request, session, company_id):
    """Scope a superadmin session to a company and audit it"""
    company = Company.objects.filter(pk=company_id).first()
    if company is None:
        raise ActionError(NOT_FOUND, 'Company not found.')

    log_activity(company, actor=session.user, action='superadmin.impersonate.set', request=request)
    logger.info(f"Superadmin {session.user.username} impersonating company {company.slug}")
    return {'company': company, **issue_session_tokens(session.user, company.id)}


def clear_impersonation(request, session):
    """Drop the superadmin's company scope; audited only when a company was active"""
    if session.active_company_id:
        company = Company.objects.filter(pk=session.active_company_id).first()
        if company is not None:
            log_activity(company, actor=session.user, action='superadmin.impersonate.clear', request=request)
    return issue_session_tokens(session.user, None)


def create_company(validated_data):
    if Company.objects.filter(slug=validated_data['slug']).exists():
        raise ActionError(CONFLICT, 'Company slug already in use.')
    return Company.objects.create(**validated_data)


def update_company(company, validated_data):
    slug = validated_data.get('slug')
    if slug and Company.objects.filter(slug=slug).exclude(pk=company.pk).exists():
        raise ActionError(CONFLICT, 'Company slug already in use.')
    for field, value in validated_data.items():
        setattr(company, field, value)
    company.save()
    return company


def delete_company(company):
    try:
        with transaction.atomic():
            company.delete()
    except ProtectedError as e:
        raise ActionError(CONFLICT, 'Company still has stock transactions.') from e


def delete_user(user):
    try:
        with transaction.atomic():
            user.delete()
    except ProtectedError as e:
        raise ActionError(CONFLICT, 'User still has stock transactions.') from e


@transaction.atomic
def create_user(serializer):
    """Create a user and, when requested, its membership"""
    membership_data = serializer.validated_data.get('membership')
    user = serializer.save()
    if membership_data:
        Membership.objects.create(
            user=user,
            company_id=membership_data['company_id'],
            role=membership_data['role'],
            status=membership_data['status'],
        )
    return user


def set_membership(user, validated_data):
    if user.is_superadmin:
        raise ActionError(INVALID_INPUT, 'Superadmins cannot belong to a company.')
    membership, _ = Membership.objects.update_or_create(
        user=user,
        defaults={
            'company_id': validated_data['company_id'],
            'role': validated_data['role'],
            'status': validated_data['status'],
        },
    )
    return membership


def get_capabilities(session):
    """Feature flags for the current session (what the UI may offer)"""
    membership = get_membership(session.user)
    is_company_admin = bool(
        membership
        and membership.status == Membership.STATUS_ACTIVE
        and membership.role == Membership.ROLE_ADMIN
    )
    has_company = bool(session.active_company_id)
    return {
        'can_manage_products': has_company and not session.is_staff_role,
        'can_manage_inventory': has_company and not session.is_staff_role,
        'can_view_activity_logs': has_company and (session.is_superadmin or is_company_admin),
        'can_view_system_logs': session.is_superadmin,
    }
