import django.db.models.deletion
import uuid
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core', '0001_initial'),
        ('catalog', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='StockMovement',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('type', models.CharField(choices=[('IN', 'Stock In'), ('OUT', 'Stock Out'), ('ADJUST', 'Adjustment')], max_length=10)),
                ('qty', models.DecimalField(decimal_places=2, max_digits=14)),
                ('reference_type', models.CharField(choices=[('RECEIVING', 'Receiving'), ('ADJUSTMENT', 'Adjustment'), ('OPNAME', 'Stock Opname'), ('SALE', 'Sale'), ('RETURN', 'Return')], max_length=20)),
                ('reference_id', models.UUIDField()),
                ('note', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('effective_at', models.DateTimeField(auto_now_add=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='stock_movements', to='core.company')),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('variant', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='stock_movements', to='catalog.productvariant')),
            ],
            options={
                'db_table': 'stock_movements',
                'indexes': [
                    models.Index(fields=['company', 'created_at'], name='idx_movement_company_created'),
                    models.Index(fields=['company', 'variant'], name='idx_movement_company_variant'),
                    models.Index(fields=['company', 'reference_type', 'reference_id'], name='idx_movement_company_ref'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Receiving',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('status', models.CharField(choices=[('DRAFT', 'Draft'), ('POSTED', 'Posted'), ('VOID', 'Void')], default='DRAFT', max_length=10)),
                ('note', models.TextField(blank=True, null=True)),
                ('posted_at', models.DateTimeField(blank=True, null=True)),
                ('voided_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='receivings', to='core.company')),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'receivings',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['company', 'created_at'], name='idx_receiving_company_created'),
                    models.Index(fields=['company', 'status'], name='idx_receiving_company_status'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReceivingItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('qty', models.DecimalField(decimal_places=2, max_digits=14)),
                ('note', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='+', to='core.company')),
                ('receiving', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.receiving')),
                ('variant', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='receiving_items', to='catalog.productvariant')),
            ],
            options={
                'db_table': 'receiving_items',
                'constraints': [
                    models.UniqueConstraint(fields=('receiving', 'variant'), name='uniq_receiving_item_variant'),
                    models.CheckConstraint(condition=models.Q(('qty__gt', 0)), name='chk_receiving_item_qty_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockAdjustment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('reason', models.CharField(max_length=160)),
                ('note', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='stock_adjustments', to='core.company')),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'stock_adjustments',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['company', 'created_at'], name='idx_adjustment_company_created')],
            },
        ),
        migrations.CreateModel(
            name='StockAdjustmentItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('qty_diff', models.DecimalField(decimal_places=2, max_digits=14)),
                ('note', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('adjustment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.stockadjustment')),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='+', to='core.company')),
                ('variant', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='adjustment_items', to='catalog.productvariant')),
            ],
            options={
                'db_table': 'stock_adjustment_items',
                'constraints': [
                    models.UniqueConstraint(fields=('adjustment', 'variant'), name='uniq_adjustment_item_variant'),
                    models.CheckConstraint(condition=models.Q(('qty_diff', Decimal('0')), _negated=True), name='chk_adjustment_item_nonzero'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockOpname',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('status', models.CharField(choices=[('IN_PROGRESS', 'In Progress'), ('FINALIZED', 'Finalized'), ('VOID', 'Void')], default='IN_PROGRESS', max_length=15)),
                ('note', models.TextField(blank=True, null=True)),
                ('started_at', models.DateTimeField(auto_now_add=True)),
                ('finalized_at', models.DateTimeField(blank=True, null=True)),
                ('voided_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='stock_opnames', to='core.company')),
                ('finalized_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('started_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('voided_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'stock_opnames',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['company', 'created_at'], name='idx_opname_company_created'),
                    models.Index(fields=['company', 'status'], name='idx_opname_company_status'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'IN_PROGRESS')), fields=('company',), name='uniq_opname_active_company'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockOpnameItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('system_qty', models.DecimalField(decimal_places=2, max_digits=14)),
                ('counted_qty', models.DecimalField(decimal_places=2, max_digits=14)),
                ('diff_qty', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='+', to='core.company')),
                ('opname', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.stockopname')),
                ('variant', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='opname_items', to='catalog.productvariant')),
            ],
            options={
                'db_table': 'stock_opname_items',
                'constraints': [
                    models.UniqueConstraint(fields=('opname', 'variant'), name='uniq_opname_item_variant'),
                ],
            },
        ),
    ]
