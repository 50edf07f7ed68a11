"""
Page fetchers for server-driven tables.

Both fetchers follow the same flow: validate the query, authorize, run a scoped
count + slice, serialize rows. Expected failures surface as ActionError;
anything unexpected is logged under the caller's error tag and reported as
INTERNAL without leaking details.
"""
import logging
import math

from stockly.core.errors import get_error_presentation
from stockly.core.results import ActionError, INTERNAL, DEFAULT_INTERNAL_MESSAGE

from .query import get_data_table_pagination, parse_data_table_query, parse_table_query

logger = logging.getLogger(__name__)

ROW_COUNT_EXACT = 'exact'
ROW_COUNT_NONE = 'none'


def _raise_internal(error, error_tag, user_error_message):
    presentation = get_error_presentation(error)
    logger.error(f"{error_tag} {presentation['developer']}")
    raise ActionError(INTERNAL, user_error_message or DEFAULT_INTERNAL_MESSAGE) from error


def fetch_data_table_page(*, payload, build_queryset, serialize_row, error_tag, authorize=None,
                          build_where=None, build_order_by=None, user_error_message=None):
    """
    Fetch one page for a DataTable query.

    Args:
        payload: untrusted query payload (see `DataTableQuerySerializer`)
        authorize: callable returning the auth context or raising ActionError
        build_queryset: (ctx, query) -> base queryset, already tenant-scoped
        build_where: (ctx, query) -> Q or None
        build_order_by: (ctx, query) -> list of `order_by()` arguments
        serialize_row: (row, ctx) -> JSON-safe dict
        error_tag: log tag used when the database fails

    Returns:
        {'rows': [...], 'rowCount': int}
    """
    query = parse_data_table_query(payload)
    ctx = authorize() if authorize else None
    pagination = get_data_table_pagination(query)

    try:
        queryset = build_queryset(ctx, query)
        where = build_where(ctx, query) if build_where else None
        if where is not None:
            queryset = queryset.filter(where)
        if build_order_by:
            queryset = queryset.order_by(*build_order_by(ctx, query))

        row_count = queryset.count()
        offset = pagination['offset']
        rows = list(queryset[offset:offset + pagination['limit']])
        return {
            'rows': [serialize_row(row, ctx) for row in rows],
            'rowCount': row_count,
        }
    except ActionError:
        raise
    except Exception as e:
        _raise_internal(e, error_tag, user_error_message)


def _exact_meta(row_count, pagination):
    page_count = 0 if row_count == 0 else math.ceil(row_count / pagination['pageSize'])
    return {
        'pageCount': page_count,
        'hasNextPage': pagination['pageIndex'] + 1 < page_count,
        'hasPrevPage': pagination['pageIndex'] > 0,
    }


def _approximate_meta(pagination, rows_length):
    has_next_page = rows_length == pagination['pageSize']
    return {
        'pageCount': pagination['pageIndex'] + 2 if has_next_page else pagination['pageIndex'] + 1,
        'hasNextPage': has_next_page,
        'hasPrevPage': pagination['pageIndex'] > 0,
    }


def fetch_table(*, payload, build_queryset, serialize_row, error_tag, authorize=None,
                build_where=None, order_by=None, max_page_size=None,
                row_count_mode=ROW_COUNT_EXACT, user_error_message=None):
    """
    Fetch one page for a simple `{pageIndex, pageSize, q}` query.

    `row_count_mode='none'` skips the count query; the meta is then best-effort.

    Returns:
        {'data': [...], 'meta': {pageIndex, pageSize, rowCount, pageCount,
                                 hasNextPage, hasPrevPage, rowCountMode}}
    """
    query = parse_table_query(payload)
    if max_page_size and query['pageSize'] > max_page_size:
        query['pageSize'] = max_page_size
    ctx = authorize() if authorize else None
    pagination = get_data_table_pagination(query)

    try:
        queryset = build_queryset(ctx, query)
        where = build_where(ctx, query) if build_where else None
        if where is not None:
            queryset = queryset.filter(where)
        if order_by:
            queryset = queryset.order_by(*order_by)

        offset = pagination['offset']
        rows = list(queryset[offset:offset + pagination['limit']])

        if row_count_mode == ROW_COUNT_NONE:
            row_count = offset + len(rows)
            meta = _approximate_meta(pagination, len(rows))
        else:
            row_count = queryset.count()
            meta = _exact_meta(row_count, pagination)

        return {
            'data': [serialize_row(row, ctx) for row in rows],
            'meta': {
                'pageIndex': pagination['pageIndex'],
                'pageSize': pagination['pageSize'],
                'rowCount': row_count,
                'rowCountMode': row_count_mode,
                **meta,
            },
        }
    except ActionError:
        raise
    except Exception as e:
        _raise_internal(e, error_tag, user_error_message)
