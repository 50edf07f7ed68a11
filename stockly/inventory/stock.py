"""
Stock ledger helpers.

Balances are never stored: a variant's quantity is the sum of its signed
movements. IN adds, OUT subtracts, ADJUST carries its own sign.
"""
from decimal import Decimal

from django.db.models import Case, DecimalField, F, Sum, Value, When
from django.db.models.functions import Coalesce

from .models import StockMovement, StockOpname

ZERO = Decimal('0.00')


def to_signed_stock_delta(movement_type, qty):
    """Signed balance change of one movement"""
    qty = Decimal(qty)
    if movement_type == StockMovement.TYPE_IN:
        return qty
    if movement_type == StockMovement.TYPE_OUT:
        return -qty
    if movement_type == StockMovement.TYPE_ADJUST:
        return qty
    return ZERO


def signed_qty_expression(prefix=''):
    """ORM expression for the signed qty of a movement (optionally via a relation prefix)"""
    type_field = f'{prefix}type'
    qty_field = f'{prefix}qty'
    return Case(
        When(**{type_field: StockMovement.TYPE_OUT}, then=F(qty_field) * Value(-1)),
        default=F(qty_field),
        output_field=DecimalField(max_digits=16, decimal_places=2),
    )


def balance_expression(prefix=''):
    """Sum of signed movements, 0 when there are none"""
    return Coalesce(
        Sum(signed_qty_expression(prefix)),
        Value(ZERO),
        output_field=DecimalField(max_digits=16, decimal_places=2),
    )


def merge_variant_diffs(items):
    """
    Sum `qty_diff` per variant id, keeping first-seen order.

    Args:
        items: iterable of dicts with `product_variant_id` and `qty_diff`
    """
    merged = {}
    for item in items:
        variant_id = str(item['product_variant_id'])
        merged[variant_id] = merged.get(variant_id, ZERO) + Decimal(item['qty_diff'])
    return merged


def find_negative_stock_variant(current_balances, diffs):
    """First variant id whose balance would drop below zero, else None"""
    for variant_id, qty_diff in diffs.items():
        next_qty = current_balances.get(variant_id, ZERO) + qty_diff
        if next_qty < 0:
            return variant_id
    return None


def get_stock_balances(company_id, variant_ids):
    """Map of variant id (str) -> current balance; variants without movements are 0"""
    variant_ids = [str(v) for v in variant_ids]
    if not variant_ids:
        return {}

    rows = (
        StockMovement.objects
        .filter(company_id=company_id, variant_id__in=variant_ids)
        .order_by()
        .values('variant_id')
        .annotate(balance=balance_expression())
    )
    balances = {variant_id: ZERO for variant_id in variant_ids}
    for row in rows:
        balances[str(row['variant_id'])] = row['balance']
    return balances


def get_active_opname(company_id):
    return StockOpname.objects.filter(company_id=company_id, status=StockOpname.STATUS_IN_PROGRESS).first()
