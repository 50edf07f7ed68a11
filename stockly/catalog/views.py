import logging

from django.db.models import Count, Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from stockly.core.guards import require_active_company_scope, require_non_staff_active_company_scope
from stockly.core.results import ActionError, INTERNAL, err_from_validation, ok
from stockly.datatable.fetch import fetch_table
from stockly.datatable.params import get_data_table_search_params
from stockly.datatable.query import build_data_table_icontains_search

from . import imagekit, services
from .filters import ProductFilter
from .models import Product
from .serializers import ImageKitDeleteSerializer, ProductSerializer, ProductWriteSerializer

logger = logging.getLogger(__name__)

PRODUCT_SCOPE_MESSAGES = {
    'staff_forbidden': 'Access denied. You are not allowed to manage products.',
    'superadmin_missing_company': 'Choose a company to impersonate before managing products.',
}

PRODUCT_SEARCH_COLUMNS = ['name', 'category', 'unit', 'status']


def _validated(serializer):
    if not serializer.is_valid():
        raise err_from_validation(serializer.errors)
    return serializer.validated_data


def _serialize_product_row(product, ctx=None):
    return {
        'id': str(product.id),
        'name': product.name,
        'category': product.category,
        'unit': product.unit,
        'status': product.status,
        'image': product.image,
        'variant_count': product.variant_count,
        'created_at': product.created_at.isoformat(),
        'updated_at': product.updated_at.isoformat(),
    }


# Product views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def product_list_create(request):
    """List products (paged, searchable) or create a new product"""
    if request.method == 'GET':
        def build_queryset(scope, query):
            queryset = (
                Product.objects
                .filter(company_id=scope.company_id, deleted_at__isnull=True)
                .annotate(variant_count=Count('variants', filter=Q(variants__deleted_at__isnull=True)))
            )
            # Use django-filter for exact category/status/unit filters
            filterset = ProductFilter(request.query_params, queryset=queryset)
            if not filterset.is_valid():
                raise err_from_validation(filterset.errors)
            return filterset.qs

        page = fetch_table(
            payload=get_data_table_search_params(request.query_params),
            authorize=lambda: require_active_company_scope(request, PRODUCT_SCOPE_MESSAGES),
            build_queryset=build_queryset,
            build_where=lambda scope, query: build_data_table_icontains_search(query['q'], PRODUCT_SEARCH_COLUMNS),
            order_by=['-created_at'],
            serialize_row=_serialize_product_row,
            error_tag='PRODUCTS_FETCH_ERROR',
        )
        return Response(ok(page))

    scope = require_non_staff_active_company_scope(request, PRODUCT_SCOPE_MESSAGES)
    data = _validated(ProductWriteSerializer(data=request.data))
    product = services.create_product(scope, data, request=request)
    product = Product.objects.prefetch_related('variants').get(pk=product.pk)
    return Response(ok(ProductSerializer(product).data), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
def product_detail(request, pk):
    """Retrieve, update or delete a product"""
    if request.method == 'GET':
        scope = require_active_company_scope(request, PRODUCT_SCOPE_MESSAGES)
        product = services.get_live_product(scope.company_id, pk)
        product = Product.objects.prefetch_related('variants').get(pk=product.pk)
        return Response(ok(ProductSerializer(product).data))

    scope = require_non_staff_active_company_scope(request, PRODUCT_SCOPE_MESSAGES)
    if request.method == 'PUT':
        data = _validated(ProductWriteSerializer(data=request.data))
        product = services.update_product(scope, pk, data, request=request)
        product = Product.objects.prefetch_related('variants').get(pk=product.pk)
        return Response(ok(ProductSerializer(product).data))

    # DELETE
    services.delete_product(scope, pk, request=request)
    return Response(ok({'product_id': str(pk)}))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def variant_options(request):
    """Active variants with their product names, for stock pickers"""
    scope = require_active_company_scope(request, PRODUCT_SCOPE_MESSAGES)
    return Response(ok(services.get_variant_options(scope.company_id)))


# ImageKit views
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def imagekit_auth(request):
    """Upload signature for a direct browser upload into the company folder"""
    scope = require_non_staff_active_company_scope(request, {
        'staff_forbidden': 'Access denied.',
        'superadmin_missing_company': PRODUCT_SCOPE_MESSAGES['superadmin_missing_company'],
    })
    if not imagekit.is_configured(require_public=True):
        raise ActionError(INTERNAL, services.IMAGE_NOT_CONFIGURED_MESSAGE)

    folder = imagekit.get_products_folder(imagekit.get_company_folder(scope.company_id))
    return Response(ok(imagekit.build_upload_auth(folder)))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def imagekit_file_delete(request):
    """Delete an uploaded file of the active company (rollback after a failed save)"""
    scope = require_non_staff_active_company_scope(request, {
        'staff_forbidden': 'Access denied.',
        'superadmin_missing_company': PRODUCT_SCOPE_MESSAGES['superadmin_missing_company'],
    })
    data = _validated(ImageKitDeleteSerializer(data=request.data))
    return Response(ok(services.delete_uploaded_file(scope, data['file_id'])))
