"""
Data table query contract.

A data table query is the serializable state of a server-driven table:

    {
        "pageIndex": 0,
        "pageSize": 20,
        "sorting": [{"id": "created_at", "desc": true}],
        "globalFilter": "",
        "columnFilters": [{"id": "action", "value": "products"}]
    }

This module validates that payload and maps it onto ORM filters and orderings.
"""
from django.db.models import Q
from rest_framework import serializers

from stockly.core.results import err_from_validation

MAX_PAGE_SIZE = 500
MAX_SEARCH_LENGTH = 100


class StrictIntegerField(serializers.IntegerField):
    """Integer field that only accepts JSON numbers (no booleans, no numeric strings)"""

    def to_internal_value(self, data):
        if isinstance(data, bool):
            self.fail('invalid')
        if isinstance(data, float) and data.is_integer():
            data = int(data)
        if not isinstance(data, int):
            self.fail('invalid')
        return super().to_internal_value(data)


class StrictCharField(serializers.CharField):
    """Char field that only accepts JSON strings (numbers are not coerced)"""

    def to_internal_value(self, data):
        if not isinstance(data, str):
            self.fail('invalid')
        return super().to_internal_value(data)


class StrictBooleanField(serializers.BooleanField):
    """Boolean field that only accepts JSON true/false"""

    def to_internal_value(self, data):
        if not isinstance(data, bool):
            self.fail('invalid')
        return data


class SortingItemSerializer(serializers.Serializer):
    id = StrictCharField(min_length=1, trim_whitespace=False)
    desc = StrictBooleanField(required=False)


class ColumnFilterSerializer(serializers.Serializer):
    id = StrictCharField(min_length=1, trim_whitespace=False)
    value = serializers.JSONField(required=False, allow_null=True)


class DataTableQuerySerializer(serializers.Serializer):
    pageIndex = StrictIntegerField(min_value=0)
    pageSize = StrictIntegerField(min_value=1, max_value=MAX_PAGE_SIZE)
    sorting = SortingItemSerializer(many=True, required=False, default=list)
    globalFilter = StrictCharField(required=False, default='', allow_blank=True, trim_whitespace=False)
    columnFilters = ColumnFilterSerializer(many=True, required=False, default=list)


class TableQuerySerializer(serializers.Serializer):
    """Simple page query with an optional free-text `q`"""
    pageIndex = StrictIntegerField(min_value=0)
    pageSize = StrictIntegerField(min_value=1, max_value=MAX_PAGE_SIZE)
    q = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=MAX_SEARCH_LENGTH)


def _normalize_data_table_query(validated):
    return {
        'pageIndex': validated['pageIndex'],
        'pageSize': validated['pageSize'],
        'sorting': [
            {'id': item['id'], 'desc': bool(item.get('desc', False))}
            for item in validated.get('sorting') or []
        ],
        'globalFilter': validated.get('globalFilter') or '',
        'columnFilters': [
            {'id': item['id'], 'value': item.get('value')}
            for item in validated.get('columnFilters') or []
        ],
    }


def parse_data_table_query(data):
    """Validate untrusted input into a normalized query dict; raises INVALID_INPUT"""
    serializer = DataTableQuerySerializer(data=data)
    if not serializer.is_valid():
        raise err_from_validation(serializer.errors)
    return _normalize_data_table_query(serializer.validated_data)


def parse_table_query(data):
    serializer = TableQuerySerializer(data=data)
    if not serializer.is_valid():
        raise err_from_validation(serializer.errors)
    validated = serializer.validated_data
    return {
        'pageIndex': validated['pageIndex'],
        'pageSize': validated['pageSize'],
        'q': (validated.get('q') or '').strip() or None,
    }


def get_data_table_pagination(query):
    """Translate page index/size into limit/offset"""
    page_size = query['pageSize']
    return {
        'pageIndex': query['pageIndex'],
        'pageSize': page_size,
        'limit': page_size,
        'offset': query['pageIndex'] * page_size,
    }


def get_data_table_search_term(query):
    """
    Search term of a query.

    Priority: trimmed `globalFilter`, then the first column filter value when it is a string.
    """
    global_filter = (query.get('globalFilter') or '').strip()
    if global_filter:
        return global_filter

    column_filters = query.get('columnFilters') or []
    if not column_filters:
        return ''
    first_value = column_filters[0].get('value')
    return first_value.strip() if isinstance(first_value, str) else ''


def build_data_table_icontains_search(term, columns):
    """OR of case-insensitive `contains` lookups, or None when there is nothing to search"""
    search = (term or '').strip()
    if not search or not columns:
        return None

    condition = Q()
    for column in columns:
        condition |= Q(**{f'{column}__icontains': search})
    return condition


def _resolve_order_by(sorting, column_map):
    order_by = []
    for item in sorting:
        column = column_map.get(item.get('id'))
        if column is None:
            continue
        descending = bool(item.get('desc'))
        if isinstance(column, str):
            order_by.append(f'-{column}' if descending else column)
        else:
            order_by.append(column.desc() if descending else column.asc())
    return order_by


def get_data_table_order_by(sorting, column_map, default_sorting=None):
    """
    Resolve sorting instructions into `order_by()` arguments.

    `column_map` maps public sort ids to ORM field paths (or expressions).
    Unknown ids are ignored; when nothing resolves, `default_sorting` is used.
    """
    default_sorting = default_sorting or []
    effective = sorting if sorting else default_sorting
    resolved = _resolve_order_by(effective, column_map)
    if resolved:
        return resolved
    return _resolve_order_by(default_sorting, column_map)
