from django.urls import path
from .views import (
    login, token_refresh, user_me, impersonation,
    company_list_create, company_detail,
    user_list_create, user_detail, user_membership,
    activity_log_list, activity_log_detail,
    system_log_list,
)

urlpatterns = [
    # Auth endpoints
    path('auth/login/', login, name='login'),
    path('auth/refresh/', token_refresh, name='token_refresh'),
    path('auth/me/', user_me, name='user-me'),
    path('auth/impersonation/', impersonation, name='impersonation'),

    # Company endpoints
    path('companies/', company_list_create, name='company-list-create'),
    path('companies/<uuid:pk>/', company_detail, name='company-detail'),

    # User endpoints
    path('users/', user_list_create, name='user-list-create'),
    path('users/<uuid:pk>/', user_detail, name='user-detail'),
    path('users/<uuid:pk>/membership/', user_membership, name='user-membership'),

    # Log endpoints
    path('activity-logs/', activity_log_list, name='activity-log-list'),
    path('activity-logs/<uuid:pk>/', activity_log_detail, name='activity-log-detail'),
    path('system-logs/', system_log_list, name='system-log-list'),
]
