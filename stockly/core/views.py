import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer

from stockly.datatable.params import get_data_table_query_from_request

from . import services
from .authentication import get_membership
from .guards import (
    require_company_admin_or_superadmin_scope,
    require_session,
    require_superadmin,
)
from .logs import fetch_activity_logs_page, fetch_system_logs_page
from .models import ActivityLog, Company, Membership, User
from .results import ActionError, CONFLICT, UNAUTHENTICATED, err_from_validation, ok
from .serializers import (
    ActivityLogSerializer,
    CompanySerializer,
    ImpersonationSerializer,
    LoginSerializer,
    MembershipSerializer,
    MembershipWriteSerializer,
    UserCreateSerializer,
    UserSerializer,
)

logger = logging.getLogger(__name__)


def _validated(serializer):
    if not serializer.is_valid():
        raise err_from_validation(serializer.errors)
    return serializer.validated_data


# Auth endpoints
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def login(request):
    """Exchange username/password for a company-scoped token pair"""
    data = _validated(LoginSerializer(data=request.data))
    result = services.login(request, data['username'], data['password'])
    user = result.pop('user')
    return Response(ok({**result, 'user': UserSerializer(user).data}))


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def token_refresh(request):
    """Refresh an access token; session claims are carried over"""
    serializer = TokenRefreshSerializer(data=request.data)
    try:
        serializer.is_valid(raise_exception=True)
    except (InvalidToken, TokenError):
        raise ActionError(UNAUTHENTICATED, 'Session expired. Please log in again.')
    except User.DoesNotExist:
        raise ActionError(UNAUTHENTICATED, 'Session is invalid. User no longer exists.')
    return Response(ok(serializer.validated_data))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Current user with company scope and capability flags"""
    session = require_session(request)
    user_data = UserSerializer(session.user).data

    active_company = None
    if session.active_company_id:
        company = Company.objects.filter(pk=session.active_company_id).first()
        active_company = CompanySerializer(company).data if company else None

    membership = get_membership(session.user)
    user_data['active_company'] = active_company
    user_data['membership'] = {'role': membership.role, 'status': membership.status} if membership else None
    user_data.update(services.get_capabilities(session))
    return Response(ok(user_data))


@api_view(['POST', 'DELETE'])
@permission_classes([IsAuthenticated])
def impersonation(request):
    """Set (POST) or clear (DELETE) the superadmin's impersonated company"""
    session = require_superadmin(request)
    if request.method == 'POST':
        data = _validated(ImpersonationSerializer(data=request.data))
        result = services.set_impersonation(request, session, data['company_id'])
        company = result.pop('company')
        return Response(ok({**result, 'company': CompanySerializer(company).data}))
    return Response(ok({**services.clear_impersonation(request, session), 'cleared': True}))


# Company endpoints (superadmin)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def company_list_create(request):
    """List all companies or create a new company"""
    require_superadmin(request)
    if request.method == 'GET':
        companies = Company.objects.order_by('-created_at')
        return Response(ok(CompanySerializer(companies, many=True).data))

    data = _validated(CompanySerializer(data=request.data))
    company = services.create_company(data)
    logger.info(f"Company created: {company.slug}")
    return Response(ok(CompanySerializer(company).data), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def company_detail(request, pk):
    """Retrieve, update or delete a company"""
    require_superadmin(request)
    company = get_object_or_404(Company, pk=pk)

    if request.method == 'GET':
        return Response(ok(CompanySerializer(company).data))
    elif request.method == 'PATCH':
        data = _validated(CompanySerializer(company, data=request.data, partial=True))
        company = services.update_company(company, data)
        return Response(ok(CompanySerializer(company).data))
    else:  # DELETE
        services.delete_company(company)
        return Response(status=status.HTTP_204_NO_CONTENT)


# User endpoints (superadmin)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def user_list_create(request):
    """List all users or create a new user"""
    require_superadmin(request)
    if request.method == 'GET':
        users = User.objects.select_related('membership__company').order_by('username')
        return Response(ok(UserSerializer(users, many=True).data))

    serializer = UserCreateSerializer(data=request.data)
    _validated(serializer)
    user = services.create_user(serializer)
    user = User.objects.select_related('membership__company').get(pk=user.pk)
    return Response(ok(UserSerializer(user).data), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def user_detail(request, pk):
    """Retrieve, update or delete a user"""
    session = require_superadmin(request)
    user = get_object_or_404(User.objects.select_related('membership__company'), pk=pk)

    if request.method == 'GET':
        return Response(ok(UserSerializer(user).data))
    elif request.method == 'PATCH':
        data = _validated(UserSerializer(user, data=request.data, partial=True))
        for field, value in data.items():
            setattr(user, field, value)
        user.save()
        return Response(ok(UserSerializer(user).data))
    else:  # DELETE
        if user.pk == session.user.pk:
            raise ActionError(CONFLICT, 'You cannot delete your own account.')
        services.delete_user(user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
def user_membership(request, pk):
    """Set or remove a user's company membership"""
    require_superadmin(request)
    user = get_object_or_404(User, pk=pk)

    if request.method == 'PUT':
        data = _validated(MembershipWriteSerializer(data=request.data))
        membership = services.set_membership(user, data)
        membership = Membership.objects.select_related('company').get(pk=membership.pk)
        return Response(ok(MembershipSerializer(membership).data))

    Membership.objects.filter(user=user).delete()
    return Response(status=status.HTTP_204_NO_CONTENT)


# Activity log endpoints
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def activity_log_list(request):
    """Company-scoped activity logs as a data table page"""
    payload = get_data_table_query_from_request(request)
    page = fetch_activity_logs_page(payload, lambda: require_company_admin_or_superadmin_scope(request))
    return Response(ok(page))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def activity_log_detail(request, pk):
    """Retrieve one activity log of the active company"""
    scope = require_company_admin_or_superadmin_scope(request)
    log = get_object_or_404(ActivityLog.objects.select_related('actor_user'), pk=pk, company_id=scope.company_id)
    return Response(ok(ActivityLogSerializer(log).data))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def system_log_list(request):
    """Activity logs across all companies (superadmin only)"""
    payload = get_data_table_query_from_request(request)
    page = fetch_system_logs_page(payload, lambda: require_superadmin(request))
    return Response(ok(page))
