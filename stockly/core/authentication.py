"""
Session handling on top of simplejwt.

A session is a JWT pair whose claims carry the user's scope:
`user_id`, `username`, `system_role` and `active_company_id`.
"""
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.settings import api_settings as jwt_settings
from rest_framework_simplejwt.tokens import RefreshToken

from .models import Membership

ACTIVE_COMPANY_CLAIM = 'active_company_id'


class SessionContext:
    """Authenticated user plus the company the session is scoped to"""

    def __init__(self, user, active_company_id=None):
        self.user = user
        self.system_role = user.system_role
        self.active_company_id = str(active_company_id) if active_company_id else None

    @property
    def is_superadmin(self):
        return self.system_role == self.user.SYSTEM_ROLE_SUPERADMIN

    @property
    def is_staff_role(self):
        return self.system_role == self.user.SYSTEM_ROLE_STAFF

    def __repr__(self):
        return f"SessionContext(user={self.user.username!r}, role={self.system_role}, company={self.active_company_id})"


class CompanyJWTAuthentication(JWTAuthentication):
    """Bearer JWT authentication that also resolves the session's company scope"""

    def authenticate(self, request):
        result = super().authenticate(request)
        if result is None:
            return None
        user, token = result
        django_request = getattr(request, '_request', request)
        django_request.stockly_session = SessionContext(user, token.get(ACTIVE_COMPANY_CLAIM))
        return user, token


def get_membership(user):
    """Return the user's membership or None"""
    return getattr(user, 'membership', None)


def get_active_membership_company_id(user):
    membership = get_membership(user)
    if membership is None or membership.status != Membership.STATUS_ACTIVE:
        return None
    return membership.company_id


def get_session(request):
    """
    Return the SessionContext for the request, or None when unauthenticated.

    Cookie-authenticated users (admin, browsable API) are scoped to their
    active membership; superadmins get no company.
    """
    django_request = getattr(request, '_request', request)
    session = getattr(django_request, 'stockly_session', None)
    if session is not None:
        return session

    user = getattr(request, 'user', None)
    if user is None or not user.is_authenticated:
        return None

    company_id = None if user.is_superadmin else get_active_membership_company_id(user)
    session = SessionContext(user, company_id)
    django_request.stockly_session = session
    return session


def issue_session_tokens(user, active_company_id=None):
    """Create a refresh/access pair carrying the session claims"""
    refresh = RefreshToken.for_user(user)
    refresh['username'] = user.username
    refresh['system_role'] = user.system_role
    refresh[ACTIVE_COMPANY_CLAIM] = str(active_company_id) if active_company_id else None
    access = refresh.access_token
    return {
        'access': str(access),
        'refresh': str(refresh),
        'active_company_id': refresh[ACTIVE_COMPANY_CLAIM],
        'expires_in': int(jwt_settings.ACCESS_TOKEN_LIFETIME.total_seconds()),
    }
