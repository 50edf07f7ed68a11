from django.contrib import admin
from .models import (
    Receiving, ReceivingItem, StockAdjustment, StockAdjustmentItem, StockMovement, StockOpname,
    StockOpnameItem,
)


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ['variant', 'type', 'qty', 'reference_type', 'company', 'created_by', 'created_at']
    list_filter = ['type', 'reference_type', 'company', 'created_at']
    search_fields = ['variant__name', 'variant__product__name', 'variant__sku', 'note']
    ordering = ['-created_at']
    # The ledger is append-only
    readonly_fields = ['company', 'variant', 'type', 'qty', 'reference_type', 'reference_id', 'note',
                       'created_by', 'created_at', 'effective_at']

    def has_delete_permission(self, request, obj=None):
        return False


class ReceivingItemInline(admin.TabularInline):
    model = ReceivingItem
    extra = 0
    fields = ['variant', 'qty', 'note']


@admin.register(Receiving)
class ReceivingAdmin(admin.ModelAdmin):
    list_display = ['id', 'company', 'status', 'created_by', 'posted_at', 'created_at']
    list_filter = ['status', 'company', 'created_at']
    search_fields = ['note']
    ordering = ['-created_at']
    readonly_fields = ['posted_at', 'voided_at', 'created_at', 'updated_at']
    inlines = [ReceivingItemInline]


class StockAdjustmentItemInline(admin.TabularInline):
    model = StockAdjustmentItem
    extra = 0
    fields = ['variant', 'qty_diff', 'note']


@admin.register(StockAdjustment)
class StockAdjustmentAdmin(admin.ModelAdmin):
    list_display = ['reason', 'company', 'created_by', 'created_at']
    list_filter = ['company', 'created_at']
    search_fields = ['reason', 'note']
    ordering = ['-created_at']
    readonly_fields = ['created_at']
    inlines = [StockAdjustmentItemInline]


class StockOpnameItemInline(admin.TabularInline):
    model = StockOpnameItem
    extra = 0
    fields = ['variant', 'system_qty', 'counted_qty', 'diff_qty']
    readonly_fields = ['system_qty', 'diff_qty']


@admin.register(StockOpname)
class StockOpnameAdmin(admin.ModelAdmin):
    list_display = ['id', 'company', 'status', 'started_by', 'started_at', 'finalized_at']
    list_filter = ['status', 'company', 'started_at']
    ordering = ['-started_at']
    readonly_fields = ['started_at', 'finalized_at', 'voided_at', 'created_at', 'updated_at']
    inlines = [StockOpnameItemInline]
