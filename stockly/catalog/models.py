import uuid

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from decimal import Decimal

MAX_MONEY = Decimal('999999999999.99')


class Product(models.Model):
    """Product master, owned by one company"""
    CATEGORY_FASHION = 'FASHION'
    CATEGORY_COSMETIC = 'COSMETIC'
    CATEGORY_GENERAL = 'GENERAL'
    CATEGORY_CHOICES = [
        (CATEGORY_FASHION, 'Fashion'),
        (CATEGORY_COSMETIC, 'Cosmetic'),
        (CATEGORY_GENERAL, 'General'),
    ]

    UNIT_CHOICES = [
        ('PCS', 'Pieces'),
        ('BOTTLE', 'Bottle'),
        ('PACK', 'Pack'),
        ('BOX', 'Box'),
        ('SET', 'Set'),
        ('OTHER', 'Other'),
    ]

    STATUS_ACTIVE = 'ACTIVE'
    STATUS_INACTIVE = 'INACTIVE'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='products')
    name = models.CharField(max_length=160, db_index=True)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default=CATEGORY_GENERAL)
    image = models.JSONField(null=True, blank=True, help_text="ImageKit file: file_id, url, thumbnail_url, width, height")
    unit = models.CharField(max_length=10, choices=UNIT_CHOICES, default='PCS')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')

    def __str__(self):
        return self.name

    @property
    def image_file_id(self):
        return (self.image or {}).get('file_id')

    class Meta:
        db_table = 'products'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', '-created_at'], name='idx_product_company_created'),
        ]


class ProductVariant(models.Model):
    """Sellable unit of a product; stock is tracked per variant"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='product_variants')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='variants')
    name = models.CharField(max_length=160)
    sku = models.CharField(max_length=100, null=True, blank=True)
    barcode = models.CharField(max_length=120, null=True, blank=True)
    selling_price = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(MAX_MONEY)],
    )
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')

    def __str__(self):
        return f"{self.product.name} - {self.name}"

    class Meta:
        db_table = 'product_variants'
        constraints = [
            models.UniqueConstraint(
                fields=['company', 'sku'],
                condition=Q(deleted_at__isnull=True, sku__isnull=False),
                name='uniq_variant_company_sku',
            ),
            models.UniqueConstraint(
                fields=['company', 'barcode'],
                condition=Q(deleted_at__isnull=True, barcode__isnull=False),
                name='uniq_variant_company_barcode',
            ),
        ]
        indexes = [
            models.Index(fields=['product'], name='idx_variant_product'),
            models.Index(fields=['company', '-updated_at'], name='idx_variant_company_updated'),
        ]
