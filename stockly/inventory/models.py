import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q
from decimal import Decimal

from stockly.catalog.models import ProductVariant


class StockMovement(models.Model):
    """
    Append-only stock ledger.

    IN/OUT quantities are positive; ADJUST quantities are signed.
    A variant's balance is the sum of its signed movements.
    """
    TYPE_IN = 'IN'
    TYPE_OUT = 'OUT'
    TYPE_ADJUST = 'ADJUST'
    TYPE_CHOICES = [
        (TYPE_IN, 'Stock In'),
        (TYPE_OUT, 'Stock Out'),
        (TYPE_ADJUST, 'Adjustment'),
    ]

    REFERENCE_RECEIVING = 'RECEIVING'
    REFERENCE_ADJUSTMENT = 'ADJUSTMENT'
    REFERENCE_OPNAME = 'OPNAME'
    REFERENCE_SALE = 'SALE'
    REFERENCE_RETURN = 'RETURN'
    REFERENCE_CHOICES = [
        (REFERENCE_RECEIVING, 'Receiving'),
        (REFERENCE_ADJUSTMENT, 'Adjustment'),
        (REFERENCE_OPNAME, 'Stock Opname'),
        (REFERENCE_SALE, 'Sale'),
        (REFERENCE_RETURN, 'Return'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.PROTECT, related_name='stock_movements')
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, related_name='stock_movements')
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    qty = models.DecimalField(max_digits=14, decimal_places=2)
    reference_type = models.CharField(max_length=20, choices=REFERENCE_CHOICES)
    reference_id = models.UUIDField()
    note = models.TextField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    effective_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.type} {self.qty} ({self.reference_type})"

    class Meta:
        db_table = 'stock_movements'
        indexes = [
            models.Index(fields=['company', 'created_at'], name='idx_movement_company_created'),
            models.Index(fields=['company', 'variant'], name='idx_movement_company_variant'),
            models.Index(fields=['company', 'reference_type', 'reference_id'], name='idx_movement_company_ref'),
        ]


class Receiving(models.Model):
    """Goods received; posting writes IN movements"""
    STATUS_DRAFT = 'DRAFT'
    STATUS_POSTED = 'POSTED'
    STATUS_VOID = 'VOID'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_POSTED, 'Posted'),
        (STATUS_VOID, 'Void'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='receivings')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_DRAFT)
    note = models.TextField(null=True, blank=True)
    posted_at = models.DateTimeField(null=True, blank=True)
    voided_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Receiving {str(self.id)[:8]} ({self.status})"

    class Meta:
        db_table = 'receivings'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'created_at'], name='idx_receiving_company_created'),
            models.Index(fields=['company', 'status'], name='idx_receiving_company_status'),
        ]


class ReceivingItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='+')
    receiving = models.ForeignKey(Receiving, on_delete=models.CASCADE, related_name='items')
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, related_name='receiving_items')
    qty = models.DecimalField(max_digits=14, decimal_places=2)
    note = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'receiving_items'
        constraints = [
            models.UniqueConstraint(fields=['receiving', 'variant'], name='uniq_receiving_item_variant'),
            models.CheckConstraint(condition=Q(qty__gt=0), name='chk_receiving_item_qty_positive'),
        ]


class StockAdjustment(models.Model):
    """Manual stock correction; posted immediately as ADJUST movements"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='stock_adjustments')
    reason = models.CharField(max_length=160)
    note = models.TextField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.reason

    class Meta:
        db_table = 'stock_adjustments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'created_at'], name='idx_adjustment_company_created'),
        ]


class StockAdjustmentItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='+')
    adjustment = models.ForeignKey(StockAdjustment, on_delete=models.CASCADE, related_name='items')
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, related_name='adjustment_items')
    qty_diff = models.DecimalField(max_digits=14, decimal_places=2)
    note = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'stock_adjustment_items'
        constraints = [
            models.UniqueConstraint(fields=['adjustment', 'variant'], name='uniq_adjustment_item_variant'),
            models.CheckConstraint(condition=~Q(qty_diff=Decimal('0')), name='chk_adjustment_item_nonzero'),
        ]


class StockOpname(models.Model):
    """Physical stock count; one IN_PROGRESS count per company"""
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_FINALIZED = 'FINALIZED'
    STATUS_VOID = 'VOID'
    STATUS_CHOICES = [
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_FINALIZED, 'Finalized'),
        (STATUS_VOID, 'Void'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='stock_opnames')
    status = models.CharField(max_length=15, choices=STATUS_CHOICES, default=STATUS_IN_PROGRESS)
    note = models.TextField(null=True, blank=True)
    started_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    started_at = models.DateTimeField(auto_now_add=True)
    finalized_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    finalized_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    voided_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Opname {str(self.id)[:8]} ({self.status})"

    class Meta:
        db_table = 'stock_opnames'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['company'],
                condition=Q(status='IN_PROGRESS'),
                name='uniq_opname_active_company',
            ),
        ]
        indexes = [
            models.Index(fields=['company', 'created_at'], name='idx_opname_company_created'),
            models.Index(fields=['company', 'status'], name='idx_opname_company_status'),
        ]


class StockOpnameItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='+')
    opname = models.ForeignKey(StockOpname, on_delete=models.CASCADE, related_name='items')
    variant = models.ForeignKey(ProductVariant, on_delete=models.PROTECT, related_name='opname_items')
    system_qty = models.DecimalField(max_digits=14, decimal_places=2)
    counted_qty = models.DecimalField(max_digits=14, decimal_places=2)
    diff_qty = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'stock_opname_items'
        constraints = [
            models.UniqueConstraint(fields=['opname', 'variant'], name='uniq_opname_item_variant'),
        ]
