"""
URL search param helpers for table pages.

Pages are 1-based in URLs and 0-based in queries. A table can namespace its params
with a URL state key: `logs_page`, `logs_pageSize`, `logs_q`.
"""
import math

from .tokens import decrypt_data_table_query_token

TABLE_PAGE_SIZE_OPTIONS = (10, 20, 50, 100)
DEFAULT_TABLE_PAGE_SIZE = TABLE_PAGE_SIZE_OPTIONS[0]
DEFAULT_TEXT_QUERY_MAX_LENGTH = 100


def get_search_param(params, key):
    """Read a param, taking the first item of multi-valued params; None when missing"""
    if params is None:
        return None
    if hasattr(params, 'getlist'):
        values = params.getlist(key)
        return values[0] if values else None
    value = params.get(key)
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _to_number(value):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_page_size(value, fallback=DEFAULT_TABLE_PAGE_SIZE, options=TABLE_PAGE_SIZE_OPTIONS):
    """Page size from a param, falling back unless the value is one of `options`"""
    if not value:
        return fallback
    number = _to_number(value)
    if number is None or not number.is_integer() or int(number) not in options:
        return fallback
    return int(number)


def parse_page_index(value):
    """Convert a 1-based page param into a 0-based page index"""
    if not value:
        return 0
    number = _to_number(value)
    if number is None or number <= 0:
        return 0
    return max(0, math.floor(number) - 1)


def get_data_table_search_params(params, url_state_key=None, options=TABLE_PAGE_SIZE_OPTIONS,
                                 default_page_size=None):
    """Read `page`, `pageSize` and `q` (optionally prefixed) into a page query"""
    prefix = f'{url_state_key}_' if url_state_key else ''
    default_page_size = default_page_size or (options[0] if options else DEFAULT_TABLE_PAGE_SIZE)
    return {
        'pageIndex': parse_page_index(get_search_param(params, f'{prefix}page')),
        'pageSize': parse_page_size(get_search_param(params, f'{prefix}pageSize'), default_page_size, options),
        'q': get_text_query_from_search_params(params, f'{prefix}q'),
    }


def get_text_query_from_search_params(params, key='q', max_length=DEFAULT_TEXT_QUERY_MAX_LENGTH):
    """Trimmed text param; None when blank, truncated to `max_length` (<= 0 means unlimited)"""
    raw_value = get_search_param(params, key)
    value = raw_value.strip() if isinstance(raw_value, str) else None
    if not value:
        return None
    if max_length <= 0:
        return value
    return value[:max_length]


def parse_sort_param(value):
    """`-created_at,action` -> [{'id': 'created_at', 'desc': True}, {'id': 'action', 'desc': False}]"""
    sorting = []
    for part in (value or '').split(','):
        part = part.strip()
        if not part or part == '-':
            continue
        descending = part.startswith('-')
        sorting.append({'id': part.lstrip('-'), 'desc': descending})
    return sorting


def get_data_table_query_from_request(request, url_state_key=None):
    """
    Build the data table payload for a list endpoint.

    POST bodies are used as-is. GET requests read either an encrypted `state`
    token or the plain `page`, `pageSize`, `q` and `sort` params.
    """
    if request.method == 'POST':
        return request.data

    params = request.query_params
    prefix = f'{url_state_key}_' if url_state_key else ''
    state = get_search_param(params, f'{prefix}state')
    if state:
        return decrypt_data_table_query_token(state)

    page_query = get_data_table_search_params(params, url_state_key)
    return {
        'pageIndex': page_query['pageIndex'],
        'pageSize': page_query['pageSize'],
        'sorting': parse_sort_param(get_search_param(params, f'{prefix}sort')),
        'globalFilter': page_query['q'] or '',
        'columnFilters': [],
    }
