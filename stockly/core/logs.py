"""
Activity log tables.

Company logs are visible to company admins (and impersonating superadmins);
system logs span every company and are superadmin only.
"""
from django.db import transaction
from django.db.models import F

from stockly.datatable.fetch import fetch_data_table_page
from stockly.datatable.query import (
    build_data_table_icontains_search,
    get_data_table_order_by,
    get_data_table_search_term,
    parse_data_table_query,
)

from .cache_utils import cache_system_logs_page, get_cached_system_logs_page
from .models import ActivityLog

DEFAULT_LOGS_SORT = [{'id': 'created_at', 'desc': True}]

BASE_LOGS_ORDER_BY_MAP = {
    'created_at': 'created_at',
    'action': 'action',
    'actor_username': 'actor_user__username',
}

BASE_LOGS_SEARCH_COLUMNS = [
    'action',
    'actor_user__username',
    'target_type',
    'target_id',
]

SYSTEM_LOGS_ORDER_BY_MAP = {
    **BASE_LOGS_ORDER_BY_MAP,
    'company_name': 'company__name',
    'company_slug': 'company__slug',
}

SYSTEM_LOGS_SEARCH_COLUMNS = BASE_LOGS_SEARCH_COLUMNS + ['company__name', 'company__slug']

BASE_LOG_FIELDS = ('id', 'created_at', 'action', 'target_type', 'target_id', 'meta')


def serialize_log_row(row, ctx=None):
    serialized = dict(row)
    serialized['id'] = str(row['id'])
    serialized['created_at'] = row['created_at'].isoformat()
    if 'company_id' in row:
        serialized['company_id'] = str(row['company_id'])
    return serialized


def fetch_activity_logs_page(payload, authorize):
    """Company-scoped activity logs; `authorize` returns a CompanyScope"""
    return fetch_data_table_page(
        payload=payload,
        authorize=authorize,
        build_queryset=lambda scope, query: (
            ActivityLog.objects
            .filter(company_id=scope.company_id, actor_user__isnull=False)
            .values(*BASE_LOG_FIELDS, actor_username=F('actor_user__username'))
        ),
        build_where=lambda scope, query: build_data_table_icontains_search(
            get_data_table_search_term(query), BASE_LOGS_SEARCH_COLUMNS,
        ),
        build_order_by=lambda scope, query: get_data_table_order_by(
            query['sorting'], BASE_LOGS_ORDER_BY_MAP, DEFAULT_LOGS_SORT,
        ),
        serialize_row=serialize_log_row,
        error_tag='ACTIVITY_LOGS_FETCH_ERROR',
    )


def fetch_system_logs_page(payload, authorize):
    """Activity logs across all companies, cached until the next log is written"""
    query = parse_data_table_query(payload)
    authorize()

    cached_page, cache_key = get_cached_system_logs_page(query)
    if cached_page is not None:
        return cached_page

    page = fetch_data_table_page(
        payload=query,
        build_queryset=lambda ctx, q: (
            ActivityLog.objects
            .filter(actor_user__isnull=False)
            .values(
                *BASE_LOG_FIELDS,
                'company_id',
                actor_username=F('actor_user__username'),
                company_name=F('company__name'),
                company_slug=F('company__slug'),
            )
        ),
        build_where=lambda ctx, q: build_data_table_icontains_search(
            get_data_table_search_term(q), SYSTEM_LOGS_SEARCH_COLUMNS,
        ),
        build_order_by=lambda ctx, q: get_data_table_order_by(
            q['sorting'], SYSTEM_LOGS_ORDER_BY_MAP, DEFAULT_LOGS_SORT,
        ),
        serialize_row=serialize_log_row,
        error_tag='SYSTEM_LOGS_FETCH_ERROR',
    )
    # A page read inside a transaction may hold rows that are later rolled back
    if not transaction.get_connection().in_atomic_block:
        cache_system_logs_page(cache_key, page)
    return page
