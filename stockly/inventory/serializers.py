from decimal import Decimal

from rest_framework import serializers

from stockly.catalog.models import MAX_MONEY

from .models import (
    Receiving, ReceivingItem, StockAdjustment, StockAdjustmentItem, StockOpname, StockOpnameItem,
)

MAX_ITEMS_PER_DOCUMENT = 100


def _qty_field(**kwargs):
    return serializers.DecimalField(max_digits=14, decimal_places=2, **kwargs)


class ReceivingItemInputSerializer(serializers.Serializer):
    product_variant_id = serializers.UUIDField()
    qty = _qty_field(max_value=MAX_MONEY, error_messages={'max_value': 'Quantity is too large.'})
    note = serializers.CharField(max_length=300, required=False, allow_blank=True, allow_null=True)

    def validate_qty(self, value):
        if value <= 0:
            raise serializers.ValidationError('Received quantity must be greater than 0.')
        return value


class ReceivingCreateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=[Receiving.STATUS_DRAFT, Receiving.STATUS_POSTED],
        default=Receiving.STATUS_DRAFT,
    )
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    items = ReceivingItemInputSerializer(many=True, allow_empty=False)

    def validate_items(self, value):
        if len(value) > MAX_ITEMS_PER_DOCUMENT:
            raise serializers.ValidationError(f"At most {MAX_ITEMS_PER_DOCUMENT} receiving items.")
        return value


class AdjustmentItemInputSerializer(serializers.Serializer):
    product_variant_id = serializers.UUIDField()
    qty_diff = _qty_field(
        min_value=-MAX_MONEY, max_value=MAX_MONEY,
        error_messages={
            'min_value': 'Adjustment quantity is too small.',
            'max_value': 'Adjustment quantity is too large.',
        },
    )
    note = serializers.CharField(max_length=300, required=False, allow_blank=True, allow_null=True)

    def validate_qty_diff(self, value):
        if value == 0:
            raise serializers.ValidationError('Adjustment quantity cannot be 0.')
        return value


class AdjustmentCreateSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=160, error_messages={'blank': 'Adjustment reason is required.'})
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    items = AdjustmentItemInputSerializer(many=True, allow_empty=False)

    def validate_items(self, value):
        if len(value) > MAX_ITEMS_PER_DOCUMENT:
            raise serializers.ValidationError(f"At most {MAX_ITEMS_PER_DOCUMENT} adjustment items.")
        return value


class OpnameStartSerializer(serializers.Serializer):
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)


class OpnameItemUpdateSerializer(serializers.Serializer):
    counted_qty = _qty_field(
        min_value=Decimal('0'), max_value=MAX_MONEY,
        error_messages={
            'min_value': 'Counted quantity cannot be negative.',
            'max_value': 'Counted quantity is too large.',
        },
    )


class RecentListSerializer(serializers.Serializer):
    """`?limit=` for the recent document lists, clamped to 1..100"""
    limit = serializers.IntegerField(required=False, default=20)

    def validate_limit(self, value):
        return max(1, min(MAX_ITEMS_PER_DOCUMENT, value))


# Read serializers
class ReceivingItemSerializer(serializers.ModelSerializer):
    product_variant_id = serializers.UUIDField(source='variant_id', read_only=True)
    product_name = serializers.CharField(source='variant.product.name', read_only=True)
    variant_name = serializers.CharField(source='variant.name', read_only=True)
    sku = serializers.CharField(source='variant.sku', read_only=True)

    class Meta:
        model = ReceivingItem
        fields = ['id', 'product_variant_id', 'product_name', 'variant_name', 'sku', 'qty', 'note', 'created_at']


class ReceivingSerializer(serializers.ModelSerializer):
    items = ReceivingItemSerializer(many=True, read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True)

    class Meta:
        model = Receiving
        fields = ['id', 'status', 'note', 'posted_at', 'voided_at', 'created_by', 'created_by_username',
                  'created_at', 'updated_at', 'items']


class StockAdjustmentItemSerializer(serializers.ModelSerializer):
    product_variant_id = serializers.UUIDField(source='variant_id', read_only=True)
    product_name = serializers.CharField(source='variant.product.name', read_only=True)
    variant_name = serializers.CharField(source='variant.name', read_only=True)

    class Meta:
        model = StockAdjustmentItem
        fields = ['id', 'product_variant_id', 'product_name', 'variant_name', 'qty_diff', 'note']


class StockAdjustmentSerializer(serializers.ModelSerializer):
    items = StockAdjustmentItemSerializer(many=True, read_only=True)

    class Meta:
        model = StockAdjustment
        fields = ['id', 'reason', 'note', 'created_by', 'created_at', 'items']


class StockOpnameItemSerializer(serializers.ModelSerializer):
    product_variant_id = serializers.UUIDField(source='variant_id', read_only=True)
    product_name = serializers.CharField(source='variant.product.name', read_only=True)
    variant_name = serializers.CharField(source='variant.name', read_only=True)
    sku = serializers.CharField(source='variant.sku', read_only=True)

    class Meta:
        model = StockOpnameItem
        fields = ['id', 'product_variant_id', 'product_name', 'variant_name', 'sku',
                  'system_qty', 'counted_qty', 'diff_qty', 'updated_at']


class StockOpnameSerializer(serializers.ModelSerializer):
    items = StockOpnameItemSerializer(many=True, read_only=True)

    class Meta:
        model = StockOpname
        fields = ['id', 'status', 'note', 'started_by', 'started_at', 'finalized_by', 'finalized_at',
                  'voided_by', 'voided_at', 'created_at', 'updated_at', 'items']
