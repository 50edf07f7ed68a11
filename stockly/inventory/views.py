from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from stockly.core.guards import require_active_company_scope, require_non_staff_active_company_scope
from stockly.core.results import err_from_validation, ok
from stockly.core.utils import to_fixed_scale_text
from stockly.datatable.fetch import fetch_table
from stockly.datatable.params import get_data_table_search_params
from stockly.datatable.query import build_data_table_icontains_search

from . import services
from .models import StockAdjustment, StockOpnameItem
from .serializers import (
    AdjustmentCreateSerializer, OpnameItemUpdateSerializer, OpnameStartSerializer,
    ReceivingCreateSerializer, ReceivingSerializer, RecentListSerializer, StockAdjustmentSerializer,
    StockOpnameItemSerializer, StockOpnameSerializer,
)

STOCK_SCOPE_MESSAGES = {
    'staff_forbidden': 'Access denied. You are not allowed to manage stock.',
    'superadmin_missing_company': 'Choose a company to impersonate before managing stock.',
}

STOCK_SEARCH_COLUMNS = ['product__name', 'name', 'sku', 'barcode']


def _validated(serializer):
    if not serializer.is_valid():
        raise err_from_validation(serializer.errors)
    return serializer.validated_data


def _recent_limit(request):
    return _validated(RecentListSerializer(data=request.query_params))['limit']


def _iso(value):
    return value.isoformat() if value else None


def _serialize_receiving_row(receiving):
    return {
        'id': str(receiving.id),
        'status': receiving.status,
        'note': receiving.note,
        'item_count': receiving.item_count,
        'total_qty': to_fixed_scale_text(receiving.total_qty),
        'created_by_username': receiving.created_by.username,
        'posted_at': _iso(receiving.posted_at),
        'voided_at': _iso(receiving.voided_at),
        'created_at': _iso(receiving.created_at),
    }


def _serialize_adjustment_row(adjustment):
    return {
        'id': str(adjustment.id),
        'reason': adjustment.reason,
        'note': adjustment.note,
        'item_count': adjustment.item_count,
        'total_qty_diff': to_fixed_scale_text(adjustment.total_qty_diff),
        'created_at': _iso(adjustment.created_at),
    }


def _serialize_opname_row(opname):
    return {
        'id': str(opname.id),
        'status': opname.status,
        'note': opname.note,
        'item_count': opname.item_count,
        'started_at': _iso(opname.started_at),
        'finalized_at': _iso(opname.finalized_at),
        'voided_at': _iso(opname.voided_at),
    }


def _serialize_stock_row(variant, ctx=None):
    return {
        'product_variant_id': str(variant.id),
        'product_id': str(variant.product_id),
        'product_name': variant.product.name,
        'variant_name': variant.name,
        'sku': variant.sku,
        'barcode': variant.barcode,
        'unit': variant.product.unit,
        'current_qty': to_fixed_scale_text(variant.current_qty),
        'updated_at': _iso(variant.updated_at),
    }


# Stock views
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def stock_list(request):
    """Current balance per variant (paged, searchable)"""
    page = fetch_table(
        payload=get_data_table_search_params(request.query_params),
        authorize=lambda: require_active_company_scope(request, STOCK_SCOPE_MESSAGES),
        build_queryset=lambda scope, query: services.build_stock_queryset(scope.company_id),
        build_where=lambda scope, query: build_data_table_icontains_search(query['q'], STOCK_SEARCH_COLUMNS),
        order_by=['-updated_at'],
        serialize_row=_serialize_stock_row,
        error_tag='INVENTORY_STOCK_FETCH_ERROR',
    )
    return Response(ok(page))


# Receiving views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def receiving_list_create(request):
    """List recent receivings or create a new one"""
    if request.method == 'GET':
        scope = require_active_company_scope(request, STOCK_SCOPE_MESSAGES)
        receivings = services.list_recent_receivings(scope.company_id, _recent_limit(request))
        return Response(ok([_serialize_receiving_row(r) for r in receivings]))

    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    data = _validated(ReceivingCreateSerializer(data=request.data))
    receiving = services.create_receiving(scope, data, request=request)
    receiving = services.get_receiving(scope.company_id, receiving.id)
    return Response(ok(ReceivingSerializer(receiving).data), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def receiving_detail(request, pk):
    scope = require_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    receiving = services.get_receiving(scope.company_id, pk)
    return Response(ok(ReceivingSerializer(receiving).data))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def receiving_post(request, pk):
    """Post a draft receiving into the stock ledger"""
    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    services.post_receiving(scope, pk, request=request)
    receiving = services.get_receiving(scope.company_id, pk)
    return Response(ok(ReceivingSerializer(receiving).data))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def receiving_void(request, pk):
    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    services.void_receiving(scope, pk, request=request)
    receiving = services.get_receiving(scope.company_id, pk)
    return Response(ok(ReceivingSerializer(receiving).data))


# Adjustment views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def adjustment_list_create(request):
    """List recent adjustments or post a new one"""
    if request.method == 'GET':
        scope = require_active_company_scope(request, STOCK_SCOPE_MESSAGES)
        adjustments = services.list_recent_adjustments(scope.company_id, _recent_limit(request))
        return Response(ok([_serialize_adjustment_row(a) for a in adjustments]))

    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    data = _validated(AdjustmentCreateSerializer(data=request.data))
    adjustment = services.create_adjustment(scope, data, request=request)
    adjustment = (
        StockAdjustment.objects
        .prefetch_related('items__variant__product')
        .get(pk=adjustment.pk)
    )
    return Response(ok(StockAdjustmentSerializer(adjustment).data), status=status.HTTP_201_CREATED)


# Stock opname views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def opname_list_create(request):
    """List recent stock opnames or start a new one"""
    if request.method == 'GET':
        scope = require_active_company_scope(request, STOCK_SCOPE_MESSAGES)
        opnames = services.list_recent_opnames(scope.company_id, _recent_limit(request))
        return Response(ok([_serialize_opname_row(o) for o in opnames]))

    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    data = _validated(OpnameStartSerializer(data=request.data))
    opname = services.start_opname(scope, data, request=request)
    opname = services.get_opname(scope.company_id, opname.id)
    return Response(ok(StockOpnameSerializer(opname).data), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def opname_detail(request, pk):
    scope = require_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    opname = services.get_opname(scope.company_id, pk)
    return Response(ok(StockOpnameSerializer(opname).data))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def opname_item_update(request, pk, item_id):
    """Record the counted quantity of one opname item"""
    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    data = _validated(OpnameItemUpdateSerializer(data=request.data))
    item = services.update_opname_item(scope, pk, item_id, data['counted_qty'], request=request)
    item = StockOpnameItem.objects.select_related('variant__product').get(pk=item.pk)
    return Response(ok(StockOpnameItemSerializer(item).data))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def opname_finalize(request, pk):
    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    services.finalize_opname(scope, pk, request=request)
    opname = services.get_opname(scope.company_id, pk)
    return Response(ok(StockOpnameSerializer(opname).data))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def opname_void(request, pk):
    scope = require_non_staff_active_company_scope(request, STOCK_SCOPE_MESSAGES)
    services.void_opname(scope, pk, request=request)
    opname = services.get_opname(scope.company_id, pk)
    return Response(ok(StockOpnameSerializer(opname).data))
