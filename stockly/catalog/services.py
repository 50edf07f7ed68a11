"""
Product write operations.

Each mutation runs in one transaction together with its activity log entry.
ImageKit cleanup happens after commit and never fails the request.
"""
import logging
from decimal import Decimal

import requests
from django.db import IntegrityError, transaction
from django.db.models import ProtectedError

from stockly.core.errors import get_error_presentation
from stockly.core.results import (
    ActionError, CONFLICT, FORBIDDEN, INTERNAL, INVALID_INPUT, NOT_FOUND,
    DEFAULT_INTERNAL_MESSAGE,
)
from stockly.core.utils import log_activity, to_nullable_trimmed_text

from . import imagekit
from .models import Product, ProductVariant

logger = logging.getLogger(__name__)

DEFAULT_VARIANT_NAME = 'Default'
PRODUCT_NOT_FOUND_MESSAGE = 'Product not found.'
SKU_IN_USE_MESSAGE = 'SKU already in use.'
BARCODE_IN_USE_MESSAGE = 'Barcode already in use.'
IMAGE_NOT_CONFIGURED_MESSAGE = 'Image upload is not configured on the server.'


def get_image_file_id(image):
    if not isinstance(image, dict):
        return None
    file_id = image.get('file_id')
    if not isinstance(file_id, str) or not file_id.strip():
        return None
    return file_id


def normalize_variants(data, fallback_default_variant_id=None):
    """
    Normalize submitted variants into the rows to persist.

    Without `has_variants` a single implicit "Default" variant is produced,
    reusing the existing default variant id on update. Otherwise blank names
    become `Variant N` and exactly one variant is flagged default.
    """
    variants = data.get('variants') or []
    if not data.get('has_variants') or not variants:
        return [{
            'id': fallback_default_variant_id,
            'name': DEFAULT_VARIANT_NAME,
            'selling_price': Decimal('0.00'),
            'sku': None,
            'barcode': None,
            'is_default': True,
        }]

    normalized = [
        {
            'id': variant.get('id'),
            'name': to_nullable_trimmed_text(variant.get('name')) or f"Variant {index + 1}",
            'selling_price': variant['selling_price'],
            'sku': to_nullable_trimmed_text(variant.get('sku')),
            'barcode': to_nullable_trimmed_text(variant.get('barcode')),
            'is_default': bool(variant.get('is_default')),
        }
        for index, variant in enumerate(variants)
    ]

    default_index = next((i for i, v in enumerate(normalized) if v['is_default']), 0)
    for index, variant in enumerate(normalized):
        variant['is_default'] = index == default_index

    ensure_no_duplicate_codes(normalized)
    return normalized


def ensure_no_duplicate_codes(variants):
    """SKU and barcode must not repeat within one payload (case-insensitive)"""
    field_errors = {}
    for field, message in (('sku', 'Duplicate SKU in variant list.'),
                           ('barcode', 'Duplicate barcode in variant list.')):
        seen = set()
        for index, variant in enumerate(variants):
            value = variant.get(field)
            if not value:
                continue
            key = value.lower()
            if key in seen:
                field_errors[f'variants.{index}.{field}'] = [message]
            seen.add(key)
    if field_errors:
        first_message = next(iter(field_errors.values()))[0]
        raise ActionError(INVALID_INPUT, first_message, field_errors)


def ensure_variant_code_uniqueness(company_id, variants):
    """
    SKU and barcode are unique per company among live variants.

    A variant may keep its own code: rows whose id is in the payload for that
    same value are not treated as clashes.
    """
    for field, message in (('sku', SKU_IN_USE_MESSAGE), ('barcode', BARCODE_IN_USE_MESSAGE)):
        allowed_ids = {}
        for variant in variants:
            value = variant.get(field)
            if not value:
                continue
            ids = allowed_ids.setdefault(value, set())
            if variant.get('id'):
                ids.add(str(variant['id']))

        if not allowed_ids:
            continue

        existing = ProductVariant.objects.filter(
            company_id=company_id,
            deleted_at__isnull=True,
            **{f'{field}__in': list(allowed_ids)},
        ).values_list('id', field)
        for variant_id, value in existing:
            if str(variant_id) not in allowed_ids.get(value, set()):
                raise ActionError(CONFLICT, message)


def ensure_image_ownership(file_id, company_folder):
    """The uploaded file must exist and live in the company's products folder"""
    if not imagekit.is_configured():
        raise ActionError(INTERNAL, IMAGE_NOT_CONFIGURED_MESSAGE)

    try:
        details = imagekit.get_file_details(file_id)
    except (requests.RequestException, imagekit.ImageKitError) as e:
        presentation = get_error_presentation(e)
        logger.error(f"IMAGEKIT_VALIDATE_OWNERSHIP_ERROR {presentation['developer']}")
        raise ActionError(INTERNAL, 'Could not verify the product image.') from e

    if not details or not details.get('filePath'):
        raise ActionError(NOT_FOUND, 'Product image not found in storage.')
    if not imagekit.is_inside_company_folder(details, company_folder):
        raise ActionError(FORBIDDEN, 'Product image does not belong to the active company.')


def _map_integrity_error(error):
    message = str(error).lower()
    if 'sku' in message:
        return ActionError(CONFLICT, SKU_IN_USE_MESSAGE)
    if 'barcode' in message:
        return ActionError(CONFLICT, BARCODE_IN_USE_MESSAGE)
    return None


def _raise_unexpected(error, error_tag):
    presentation = get_error_presentation(error)
    logger.error(f"{error_tag} {presentation['developer']}")
    raise ActionError(INTERNAL, DEFAULT_INTERNAL_MESSAGE) from error


def get_live_product(company_id, product_id):
    product = Product.objects.filter(pk=product_id, company_id=company_id, deleted_at__isnull=True).first()
    if product is None:
        raise ActionError(NOT_FOUND, PRODUCT_NOT_FOUND_MESSAGE)
    return product


def _variant_fields(variant):
    return {
        'name': variant['name'],
        'sku': variant['sku'],
        'barcode': variant['barcode'],
        'selling_price': variant['selling_price'],
        'is_default': variant['is_default'],
    }


def create_product(scope, data, request=None):
    """Create a product with its normalized variants"""
    company_id = scope.company_id
    file_id = get_image_file_id(data.get('image'))
    if file_id:
        ensure_image_ownership(file_id, imagekit.get_company_folder(company_id))

    variants = normalize_variants(data)
    ensure_variant_code_uniqueness(company_id, variants)

    try:
        with transaction.atomic():
            product = Product.objects.create(
                company_id=company_id,
                name=data['name'].strip(),
                category=data['category'],
                image=data.get('image'),
                unit=data['unit'],
                status=data['status'],
            )
            ProductVariant.objects.bulk_create([
                ProductVariant(company_id=company_id, product=product, **_variant_fields(variant))
                for variant in variants
            ])
            log_activity(
                company_id,
                actor=scope.user,
                action='products.create',
                target_type='product',
                target_id=product.id,
                meta={
                    'variant_count': len(variants),
                    'has_variants': data['has_variants'],
                    'has_image': bool(data.get('image')),
                },
                request=request,
            )
    except IntegrityError as e:
        mapped = _map_integrity_error(e)
        if mapped:
            raise mapped from e
        _raise_unexpected(e, 'PRODUCTS_CREATE_ERROR')
    except Exception as e:
        _raise_unexpected(e, 'PRODUCTS_CREATE_ERROR')

    logger.info(f"Product created: {product.id} ({len(variants)} variants)")
    return product


def update_product(scope, product_id, data, request=None):
    """
    Replace a product's fields and variant set.

    Variants with an id are updated, new ones inserted, missing ones deleted.
    """
    company_id = scope.company_id
    product = get_live_product(company_id, product_id)
    previous_file_id = get_image_file_id(product.image)
    next_file_id = get_image_file_id(data.get('image'))

    company_folder = None
    if next_file_id:
        company_folder = imagekit.get_company_folder(company_id)
        ensure_image_ownership(next_file_id, company_folder)

    existing_variants = list(
        ProductVariant.objects.filter(company_id=company_id, product=product, deleted_at__isnull=True)
    )
    fallback_default_id = next((v.id for v in existing_variants if v.is_default), None)
    variants = normalize_variants(data, fallback_default_variant_id=fallback_default_id)

    existing_ids = {str(v.id) for v in existing_variants}
    for variant in variants:
        if variant['id'] and str(variant['id']) not in existing_ids:
            raise ActionError(INVALID_INPUT, 'Some variants do not belong to this product.')

    ensure_variant_code_uniqueness(company_id, variants)

    try:
        with transaction.atomic():
            product.name = data['name'].strip()
            product.category = data['category']
            product.image = data.get('image')
            product.unit = data['unit']
            product.status = data['status']
            product.save()

            kept_ids = set()
            for variant in variants:
                if variant['id']:
                    ProductVariant.objects.filter(pk=variant['id'], company_id=company_id).update(
                        **_variant_fields(variant)
                    )
                    kept_ids.add(str(variant['id']))
                    continue
                created = ProductVariant.objects.create(
                    company_id=company_id, product=product, **_variant_fields(variant)
                )
                kept_ids.add(str(created.id))

            removed_ids = [v.id for v in existing_variants if str(v.id) not in kept_ids]
            if removed_ids:
                ProductVariant.objects.filter(company_id=company_id, product=product, id__in=removed_ids).delete()

            log_activity(
                company_id,
                actor=scope.user,
                action='products.update',
                target_type='product',
                target_id=product.id,
                meta={
                    'variant_count': len(variants),
                    'has_variants': data['has_variants'],
                    'image_changed': previous_file_id != next_file_id,
                },
                request=request,
            )
    except ProtectedError as e:
        raise ActionError(CONFLICT, 'Some variants are already used in stock transactions and cannot be removed.') from e
    except IntegrityError as e:
        mapped = _map_integrity_error(e)
        if mapped:
            raise mapped from e
        _raise_unexpected(e, 'PRODUCTS_UPDATE_ERROR')
    except Exception as e:
        _raise_unexpected(e, 'PRODUCTS_UPDATE_ERROR')

    if previous_file_id and previous_file_id != next_file_id:
        folder = company_folder or imagekit.get_company_folder(company_id)
        transaction.on_commit(
            lambda: imagekit.delete_file_quietly(previous_file_id, folder, 'IMAGEKIT_DELETE_OLD_PRODUCT_IMAGE_ERROR')
        )
    return product


def delete_product(scope, product_id, request=None):
    """Hard-delete a product and its variants; refused once stock references them"""
    company_id = scope.company_id
    product = get_live_product(company_id, product_id)
    file_id = get_image_file_id(product.image)
    company_folder = imagekit.get_company_folder(company_id)

    try:
        with transaction.atomic():
            ProductVariant.objects.filter(company_id=company_id, product=product).delete()
            Product.objects.filter(pk=product.pk, company_id=company_id).delete()
            log_activity(
                company_id,
                actor=scope.user,
                action='products.delete',
                target_type='product',
                target_id=product_id,
                meta={'hard_deleted': True, 'had_image': bool(file_id)},
                request=request,
            )
    except ProtectedError as e:
        raise ActionError(CONFLICT, 'Product is already used in stock transactions.') from e
    except Exception as e:
        _raise_unexpected(e, 'PRODUCTS_DELETE_ERROR')

    if file_id:
        transaction.on_commit(
            lambda: imagekit.delete_file_quietly(file_id, company_folder, 'IMAGEKIT_DELETE_PRODUCT_IMAGE_ERROR')
        )


def delete_uploaded_file(scope, file_id):
    """Delete an uploaded file of the active company (upload rollback)"""
    if not imagekit.is_configured():
        raise ActionError(INTERNAL, IMAGE_NOT_CONFIGURED_MESSAGE)

    company_folder = imagekit.get_company_folder(scope.company_id)
    try:
        details = imagekit.get_file_details(file_id)
        if details is None:
            raise ActionError(NOT_FOUND, 'Image file not found.')
        if not imagekit.is_inside_company_folder(details, company_folder):
            raise ActionError(FORBIDDEN, 'Cannot delete image files outside the active company.')
        if not imagekit.delete_file(file_id):
            raise ActionError(NOT_FOUND, 'Image file not found.')
    except (requests.RequestException, imagekit.ImageKitError) as e:
        _raise_unexpected(e, 'IMAGEKIT_DELETE_FILE_ERROR')
    return {'file_id': file_id}


def get_variant_options(company_id):
    """Active variants of active products, for pickers"""
    rows = (
        ProductVariant.objects
        .filter(
            company_id=company_id,
            deleted_at__isnull=True,
            product__deleted_at__isnull=True,
            product__status=Product.STATUS_ACTIVE,
        )
        .select_related('product')
        .order_by('product__name', '-is_default', 'name')
    )
    return [
        {
            'id': str(variant.id),
            'product_id': str(variant.product_id),
            'product_name': variant.product.name,
            'variant_name': variant.name,
            'sku': variant.sku,
            'barcode': variant.barcode,
            'is_default': variant.is_default,
            'label': variant.product.name if variant.name == DEFAULT_VARIANT_NAME else f"{variant.product.name} - {variant.name}",
        }
        for variant in rows
    ]
