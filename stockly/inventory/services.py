"""
Inventory operations on top of the stock ledger.

Rules enforced here:
- stock never goes negative;
- no stock posting while a stock opname is IN_PROGRESS;
- every mutation and its activity log entry commit together.
"""
import logging

from django.db import IntegrityError, transaction
from django.db.models import Count, Prefetch, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from stockly.catalog.models import Product, ProductVariant
from stockly.core.errors import get_error_presentation
from stockly.core.results import (
    ActionError, CONFLICT, INTERNAL, INVALID_INPUT, NOT_FOUND, DEFAULT_INTERNAL_MESSAGE,
)
from stockly.core.utils import log_activity, to_nullable_trimmed_text

from .models import (
    Receiving, ReceivingItem, StockAdjustment, StockAdjustmentItem, StockMovement, StockOpname,
    StockOpnameItem,
)
from .stock import (
    ZERO, balance_expression, find_negative_stock_variant, get_active_opname, get_stock_balances,
    merge_variant_diffs,
)

logger = logging.getLogger(__name__)

OPNAME_ADJUSTMENT_NOTE = 'Stock opname adjustment'
ACTIVE_OPNAME_MESSAGE = 'A stock opname is in progress. Stock postings are blocked until it is finished.'
RECEIVING_NOT_FOUND_MESSAGE = 'Receiving not found.'
OPNAME_NOT_FOUND_MESSAGE = 'Stock opname not found.'
OPNAME_NOT_ACTIVE_MESSAGE = 'Stock opname is no longer active.'


def _raise_unexpected(error, error_tag):
    presentation = get_error_presentation(error)
    logger.error(f"{error_tag} {presentation['developer']}")
    raise ActionError(INTERNAL, DEFAULT_INTERNAL_MESSAGE) from error


def _to_number(value):
    """Decimal -> JSON-friendly number for activity log meta"""
    return float(value)


def merge_receiving_items(items):
    """Merge duplicate variants: quantities are summed, the first non-empty note wins"""
    merged = {}
    for item in items:
        variant_id = str(item['product_variant_id'])
        note = to_nullable_trimmed_text(item.get('note'))
        existing = merged.get(variant_id)
        if existing is None:
            merged[variant_id] = {'product_variant_id': variant_id, 'qty': item['qty'], 'note': note}
            continue
        existing['qty'] += item['qty']
        existing['note'] = existing['note'] or note
    return list(merged.values())


def merge_adjustment_items(items):
    """Merge duplicate variants and drop the ones whose diffs cancel out"""
    merged = {}
    for item in items:
        variant_id = str(item['product_variant_id'])
        note = to_nullable_trimmed_text(item.get('note'))
        existing = merged.get(variant_id)
        if existing is None:
            merged[variant_id] = {'product_variant_id': variant_id, 'qty_diff': item['qty_diff'], 'note': note}
            continue
        existing['qty_diff'] += item['qty_diff']
        existing['note'] = existing['note'] or note
    return [item for item in merged.values() if item['qty_diff'] != 0]


def ensure_variants_belong_to_company(company_id, variant_ids):
    if not variant_ids:
        raise ActionError(INVALID_INPUT, 'Select at least one product variant.')

    existing_ids = {
        str(pk) for pk in ProductVariant.objects.filter(
            company_id=company_id,
            id__in=variant_ids,
            deleted_at__isnull=True,
            product__company_id=company_id,
            product__deleted_at__isnull=True,
        ).values_list('id', flat=True)
    }
    if any(str(variant_id) not in existing_ids for variant_id in variant_ids):
        raise ActionError(INVALID_INPUT, 'Some product variants are not valid.')


def ensure_no_active_opname(company_id):
    if get_active_opname(company_id) is not None:
        raise ActionError(CONFLICT, ACTIVE_OPNAME_MESSAGE)


def ensure_no_negative_stock(company_id, diffs):
    """`diffs` maps variant id -> signed qty change"""
    if not diffs:
        return
    balances = get_stock_balances(company_id, list(diffs))
    variant_id = find_negative_stock_variant(balances, diffs)
    if variant_id is None:
        return

    variant = ProductVariant.objects.select_related('product').filter(pk=variant_id).first()
    label = f"{variant.product.name} - {variant.name}" if variant else variant_id
    raise ActionError(CONFLICT, f"Insufficient stock for {label}. Negative stock is not allowed.")


def _write_receiving_movements(receiving, items, user):
    StockMovement.objects.bulk_create([
        StockMovement(
            company_id=receiving.company_id,
            variant_id=item['product_variant_id'],
            type=StockMovement.TYPE_IN,
            qty=item['qty'],
            reference_type=StockMovement.REFERENCE_RECEIVING,
            reference_id=receiving.id,
            note=item['note'],
            created_by=user,
        )
        for item in items
    ])


# Receiving
def create_receiving(scope, data, request=None):
    """Create a receiving as DRAFT, or POSTED straight away (writes IN movements)"""
    company_id = scope.company_id
    items = merge_receiving_items(data['items'])
    if not items:
        raise ActionError(INVALID_INPUT, 'Add at least one receiving item.')

    ensure_variants_belong_to_company(company_id, [item['product_variant_id'] for item in items])

    target_status = data['status']
    is_posted = target_status == Receiving.STATUS_POSTED
    if is_posted:
        ensure_no_active_opname(company_id)

    total_qty = sum((item['qty'] for item in items), ZERO)
    try:
        with transaction.atomic():
            receiving = Receiving.objects.create(
                company_id=company_id,
                status=target_status,
                note=to_nullable_trimmed_text(data.get('note')),
                posted_at=timezone.now() if is_posted else None,
                created_by=scope.user,
            )
            ReceivingItem.objects.bulk_create([
                ReceivingItem(
                    company_id=company_id,
                    receiving=receiving,
                    variant_id=item['product_variant_id'],
                    qty=item['qty'],
                    note=item['note'],
                )
                for item in items
            ])
            if is_posted:
                _write_receiving_movements(receiving, items, scope.user)

            log_activity(
                company_id,
                actor=scope.user,
                action='inventory.receiving.created',
                target_type='receiving',
                target_id=receiving.id,
                meta={'status': target_status, 'item_count': len(items), 'total_qty': _to_number(total_qty)},
                request=request,
            )
            if is_posted:
                log_activity(
                    company_id,
                    actor=scope.user,
                    action='inventory.receiving.posted',
                    target_type='receiving',
                    target_id=receiving.id,
                    meta={'item_count': len(items), 'total_qty': _to_number(total_qty)},
                    request=request,
                )
    except ActionError:
        raise
    except Exception as e:
        _raise_unexpected(e, 'INVENTORY_RECEIVING_CREATE_ERROR')

    logger.info(f"Receiving {receiving.id} created as {target_status} ({len(items)} items)")
    return receiving


def _lock_receiving(company_id, receiving_id):
    receiving = Receiving.objects.select_for_update().filter(pk=receiving_id, company_id=company_id).first()
    if receiving is None:
        raise ActionError(NOT_FOUND, RECEIVING_NOT_FOUND_MESSAGE)
    return receiving


@transaction.atomic
def post_receiving(scope, receiving_id, request=None):
    """Post a DRAFT receiving: one IN movement per item"""
    company_id = scope.company_id
    receiving = _lock_receiving(company_id, receiving_id)
    if receiving.status == Receiving.STATUS_POSTED:
        raise ActionError(CONFLICT, 'Receiving already posted.')
    if receiving.status == Receiving.STATUS_VOID:
        raise ActionError(CONFLICT, 'Receiving already void.')

    ensure_no_active_opname(company_id)

    items = [
        {'product_variant_id': str(item.variant_id), 'qty': item.qty, 'note': item.note}
        for item in receiving.items.all()
    ]
    if not items:
        raise ActionError(INVALID_INPUT, 'Receiving has no items.')

    _write_receiving_movements(receiving, items, scope.user)
    receiving.status = Receiving.STATUS_POSTED
    receiving.posted_at = timezone.now()
    receiving.save(update_fields=['status', 'posted_at', 'updated_at'])

    total_qty = sum((item['qty'] for item in items), ZERO)
    log_activity(
        company_id,
        actor=scope.user,
        action='inventory.receiving.posted',
        target_type='receiving',
        target_id=receiving.id,
        meta={'item_count': len(items), 'total_qty': _to_number(total_qty)},
        request=request,
    )
    return receiving


@transaction.atomic
def void_receiving(scope, receiving_id, request=None):
    """Void a DRAFT receiving; posted receivings are final"""
    company_id = scope.company_id
    receiving = _lock_receiving(company_id, receiving_id)
    if receiving.status == Receiving.STATUS_POSTED:
        raise ActionError(CONFLICT, 'Receiving already posted and cannot be voided.')
    if receiving.status == Receiving.STATUS_VOID:
        raise ActionError(CONFLICT, 'Receiving already void.')

    receiving.status = Receiving.STATUS_VOID
    receiving.voided_at = timezone.now()
    receiving.save(update_fields=['status', 'voided_at', 'updated_at'])

    log_activity(
        company_id,
        actor=scope.user,
        action='inventory.receiving.voided',
        target_type='receiving',
        target_id=receiving.id,
        request=request,
    )
    return receiving


# Adjustment
def create_adjustment(scope, data, request=None):
    """Post a stock adjustment as ADJUST movements"""
    company_id = scope.company_id
    items = merge_adjustment_items(data['items'])
    if not items:
        raise ActionError(INVALID_INPUT, 'Add at least one adjustment item.')

    ensure_no_active_opname(company_id)
    ensure_variants_belong_to_company(company_id, [item['product_variant_id'] for item in items])

    reason = data['reason'].strip()
    if not reason:
        raise ActionError(INVALID_INPUT, 'Adjustment reason is required.', {'reason': ['Adjustment reason is required.']})

    try:
        with transaction.atomic():
            # Balance check inside the transaction, right before the ledger write
            ensure_no_negative_stock(company_id, merge_variant_diffs(items))

            adjustment = StockAdjustment.objects.create(
                company_id=company_id,
                reason=reason,
                note=to_nullable_trimmed_text(data.get('note')),
                created_by=scope.user,
            )
            StockAdjustmentItem.objects.bulk_create([
                StockAdjustmentItem(
                    company_id=company_id,
                    adjustment=adjustment,
                    variant_id=item['product_variant_id'],
                    qty_diff=item['qty_diff'],
                    note=item['note'],
                )
                for item in items
            ])
            StockMovement.objects.bulk_create([
                StockMovement(
                    company_id=company_id,
                    variant_id=item['product_variant_id'],
                    type=StockMovement.TYPE_ADJUST,
                    qty=item['qty_diff'],
                    reference_type=StockMovement.REFERENCE_ADJUSTMENT,
                    reference_id=adjustment.id,
                    note=item['note'] or reason,
                    created_by=scope.user,
                )
                for item in items
            ])

            total_qty_diff = sum((item['qty_diff'] for item in items), ZERO)
            log_activity(
                company_id,
                actor=scope.user,
                action='inventory.adjustment.posted',
                target_type='stock_adjustment',
                target_id=adjustment.id,
                meta={'reason': reason, 'item_count': len(items), 'total_qty_diff': _to_number(total_qty_diff)},
                request=request,
            )
    except ActionError:
        raise
    except Exception as e:
        _raise_unexpected(e, 'INVENTORY_ADJUSTMENT_CREATE_ERROR')

    return adjustment


# Stock opname
def start_opname(scope, data, request=None):
    """Open a stock count and snapshot the balance of every live variant of an active product"""
    company_id = scope.company_id
    if get_active_opname(company_id) is not None:
        raise ActionError(CONFLICT, 'A stock opname is already in progress. Finalize or void it first.')

    try:
        with transaction.atomic():
            opname = StockOpname.objects.create(
                company_id=company_id,
                note=to_nullable_trimmed_text(data.get('note')),
                started_by=scope.user,
            )
            variant_ids = list(
                ProductVariant.objects.filter(
                    company_id=company_id,
                    deleted_at__isnull=True,
                    product__company_id=company_id,
                    product__deleted_at__isnull=True,
                    product__status=Product.STATUS_ACTIVE,
                ).order_by('product__name', 'name').values_list('id', flat=True)
            )
            balances = get_stock_balances(company_id, variant_ids)
            StockOpnameItem.objects.bulk_create([
                StockOpnameItem(
                    company_id=company_id,
                    opname=opname,
                    variant_id=variant_id,
                    system_qty=balances.get(str(variant_id), ZERO),
                    counted_qty=balances.get(str(variant_id), ZERO),
                    diff_qty=ZERO,
                )
                for variant_id in variant_ids
            ])
            log_activity(
                company_id,
                actor=scope.user,
                action='inventory.opname.started',
                target_type='stock_opname',
                target_id=opname.id,
                meta={'item_count': len(variant_ids)},
                request=request,
            )
    except IntegrityError as e:
        # Lost a race against another start: the active-opname constraint fired
        raise ActionError(CONFLICT, 'A stock opname is already in progress. Finalize or void it first.') from e
    except ActionError:
        raise
    except Exception as e:
        _raise_unexpected(e, 'INVENTORY_OPNAME_START_ERROR')

    return opname


def _lock_opname(company_id, opname_id, require_active=True):
    opname = StockOpname.objects.select_for_update().filter(pk=opname_id, company_id=company_id).first()
    if opname is None:
        raise ActionError(NOT_FOUND, OPNAME_NOT_FOUND_MESSAGE)
    if require_active and opname.status != StockOpname.STATUS_IN_PROGRESS:
        raise ActionError(CONFLICT, OPNAME_NOT_ACTIVE_MESSAGE)
    return opname


@transaction.atomic
def update_opname_item(scope, opname_id, item_id, counted_qty, request=None):
    """Record the counted quantity of one item; diff = counted - system"""
    company_id = scope.company_id
    opname = _lock_opname(company_id, opname_id)

    item = StockOpnameItem.objects.filter(pk=item_id, opname=opname, company_id=company_id).first()
    if item is None:
        raise ActionError(NOT_FOUND, 'Stock opname item not found.')

    item.counted_qty = counted_qty
    item.diff_qty = counted_qty - item.system_qty
    item.save(update_fields=['counted_qty', 'diff_qty', 'updated_at'])

    log_activity(
        company_id,
        actor=scope.user,
        action='inventory.opname.item_counted_qty_updated',
        target_type='stock_opname',
        target_id=opname.id,
        meta={'stock_opname_item_id': str(item.id), 'counted_qty': _to_number(counted_qty)},
        request=request,
    )
    return item


@transaction.atomic
def finalize_opname(scope, opname_id, request=None):
    """Close the count and write ADJUST movements for every non-zero diff"""
    company_id = scope.company_id
    opname = _lock_opname(company_id, opname_id)

    diff_items = []
    for item in opname.items.all():
        qty_diff = item.counted_qty - item.system_qty
        if qty_diff != 0:
            diff_items.append({'product_variant_id': str(item.variant_id), 'qty_diff': qty_diff})

    ensure_no_negative_stock(company_id, merge_variant_diffs(diff_items))

    StockMovement.objects.bulk_create([
        StockMovement(
            company_id=company_id,
            variant_id=item['product_variant_id'],
            type=StockMovement.TYPE_ADJUST,
            qty=item['qty_diff'],
            reference_type=StockMovement.REFERENCE_OPNAME,
            reference_id=opname.id,
            note=OPNAME_ADJUSTMENT_NOTE,
            created_by=scope.user,
        )
        for item in diff_items
    ])

    now = timezone.now()
    for item in opname.items.all():
        new_diff = item.counted_qty - item.system_qty
        if item.diff_qty != new_diff:
            item.diff_qty = new_diff
            item.save(update_fields=['diff_qty', 'updated_at'])

    opname.status = StockOpname.STATUS_FINALIZED
    opname.finalized_by = scope.user
    opname.finalized_at = now
    opname.save(update_fields=['status', 'finalized_by', 'finalized_at', 'updated_at'])

    total_qty_diff = sum((item['qty_diff'] for item in diff_items), ZERO)
    log_activity(
        company_id,
        actor=scope.user,
        action='inventory.opname.finalized',
        target_type='stock_opname',
        target_id=opname.id,
        meta={'diff_item_count': len(diff_items), 'total_qty_diff': _to_number(total_qty_diff)},
        request=request,
    )
    return opname


@transaction.atomic
def void_opname(scope, opname_id, request=None):
    """Abandon an IN_PROGRESS count without touching stock"""
    company_id = scope.company_id
    opname = _lock_opname(company_id, opname_id, require_active=False)
    if opname.status == StockOpname.STATUS_FINALIZED:
        raise ActionError(CONFLICT, 'Stock opname already finalized.')
    if opname.status == StockOpname.STATUS_VOID:
        raise ActionError(CONFLICT, 'Stock opname already void.')

    opname.status = StockOpname.STATUS_VOID
    opname.voided_by = scope.user
    opname.voided_at = timezone.now()
    opname.save(update_fields=['status', 'voided_by', 'voided_at', 'updated_at'])

    log_activity(
        company_id,
        actor=scope.user,
        action='inventory.opname.voided',
        target_type='stock_opname',
        target_id=opname.id,
        request=request,
    )
    return opname


# Read side
def list_recent_receivings(company_id, limit):
    return list(
        Receiving.objects
        .filter(company_id=company_id)
        .select_related('created_by')
        .annotate(item_count=Count('items'), total_qty=Coalesce(Sum('items__qty'), Value(ZERO)))
        .order_by('-created_at')[:limit]
    )


def get_receiving(company_id, receiving_id):
    receiving = (
        Receiving.objects
        .filter(pk=receiving_id, company_id=company_id)
        .select_related('created_by')
        .prefetch_related(Prefetch('items', queryset=ReceivingItem.objects.select_related('variant__product')))
        .first()
    )
    if receiving is None:
        raise ActionError(NOT_FOUND, RECEIVING_NOT_FOUND_MESSAGE)
    return receiving


def list_recent_adjustments(company_id, limit):
    return list(
        StockAdjustment.objects
        .filter(company_id=company_id)
        .annotate(item_count=Count('items'), total_qty_diff=Coalesce(Sum('items__qty_diff'), Value(ZERO)))
        .order_by('-created_at')[:limit]
    )


def list_recent_opnames(company_id, limit):
    return list(
        StockOpname.objects
        .filter(company_id=company_id)
        .annotate(item_count=Count('items'))
        .order_by('-started_at')[:limit]
    )


def get_opname(company_id, opname_id):
    opname = (
        StockOpname.objects
        .filter(pk=opname_id, company_id=company_id)
        .prefetch_related(Prefetch(
            'items',
            queryset=StockOpnameItem.objects.select_related('variant__product').order_by('variant__product__name', 'variant__name'),
        ))
        .first()
    )
    if opname is None:
        raise ActionError(NOT_FOUND, OPNAME_NOT_FOUND_MESSAGE)
    return opname


def build_stock_queryset(company_id):
    """Live variants of the company with their ledger balance as `current_qty`"""
    return (
        ProductVariant.objects
        .filter(company_id=company_id, deleted_at__isnull=True, product__deleted_at__isnull=True)
        .select_related('product')
        .annotate(current_qty=balance_expression('stock_movements__'))
    )
