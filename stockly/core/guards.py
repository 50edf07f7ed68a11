"""
Authorization guards.

Every guard either returns the resolved context or raises ActionError, which the
API exception handler renders as the error envelope.
"""
from .authentication import get_membership, get_session
from .models import Membership
from .results import ActionError, FORBIDDEN, UNAUTHENTICATED, DEFAULT_FORBIDDEN_MESSAGE, DEFAULT_UNAUTHENTICATED_MESSAGE

SUPERADMIN_MISSING_COMPANY_MESSAGE = 'Choose a company to impersonate first.'
MISSING_COMPANY_MESSAGE = 'Your account is not linked to an active company.'


class CompanyScope:
    """Session plus the company id every query must be filtered by"""

    def __init__(self, session, company_id):
        self.session = session
        self.company_id = company_id

    @property
    def user(self):
        return self.session.user


def require_session(request):
    session = get_session(request)
    if session is None:
        raise ActionError(UNAUTHENTICATED, DEFAULT_UNAUTHENTICATED_MESSAGE)
    return session


def require_superadmin(request):
    session = require_session(request)
    if not session.is_superadmin:
        raise ActionError(FORBIDDEN, DEFAULT_FORBIDDEN_MESSAGE)
    return session


def resolve_active_company_scope(session, messages=None):
    """
    Resolve the company scope of a session.

    Superadmins are scoped only through impersonation.
    """
    messages = messages or {}
    if not session.active_company_id:
        if session.is_superadmin:
            raise ActionError(FORBIDDEN, messages.get('superadmin_missing_company', SUPERADMIN_MISSING_COMPANY_MESSAGE))
        raise ActionError(FORBIDDEN, messages.get('missing_company', MISSING_COMPANY_MESSAGE))
    return CompanyScope(session, session.active_company_id)


def require_active_company_scope(request, messages=None):
    return resolve_active_company_scope(require_session(request), messages)


def require_non_staff_active_company_scope(request, messages=None):
    """Active company scope for write operations; STAFF is read-only"""
    messages = messages or {}
    session = require_session(request)
    if session.is_staff_role:
        raise ActionError(FORBIDDEN, messages.get('staff_forbidden', DEFAULT_FORBIDDEN_MESSAGE))
    return resolve_active_company_scope(session, messages)


def require_company_admin_or_superadmin_scope(request, messages=None):
    """Company scope for a superadmin, or for an ACTIVE company ADMIN member"""
    session = require_session(request)
    scope = resolve_active_company_scope(session, messages)
    if session.is_superadmin:
        return scope

    membership = get_membership(session.user)
    if (
        membership is None
        or membership.status != Membership.STATUS_ACTIVE
        or membership.role != Membership.ROLE_ADMIN
        or str(membership.company_id) != scope.company_id
    ):
        raise ActionError(FORBIDDEN, DEFAULT_FORBIDDEN_MESSAGE)
    return scope
