from django.contrib import admin
from .models import Product, ProductVariant


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0
    fields = ['name', 'sku', 'barcode', 'selling_price', 'is_default', 'deleted_at']
    readonly_fields = ['deleted_at']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'category', 'unit', 'status', 'created_at']
    list_filter = ['company', 'category', 'unit', 'status']
    search_fields = ['name', 'variants__sku', 'variants__barcode']
    ordering = ['-created_at']
    inlines = [ProductVariantInline]


@admin.register(ProductVariant)
class ProductVariantAdmin(admin.ModelAdmin):
    list_display = ['product', 'name', 'sku', 'barcode', 'selling_price', 'is_default', 'company']
    list_filter = ['company', 'is_default']
    search_fields = ['name', 'sku', 'barcode', 'product__name']
    raw_id_fields = ['product']
