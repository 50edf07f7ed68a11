from decimal import Decimal

from rest_framework import serializers

from .models import MAX_MONEY, Product, ProductVariant

MAX_VARIANTS_PER_PRODUCT = 50


class ProductImageSerializer(serializers.Serializer):
    """ImageKit file metadata stored in `Product.image`"""
    file_id = serializers.CharField(max_length=255)
    url = serializers.URLField()
    thumbnail_url = serializers.URLField(required=False)
    width = serializers.IntegerField(min_value=1, required=False)
    height = serializers.IntegerField(min_value=1, required=False)


class ProductVariantInputSerializer(serializers.Serializer):
    id = serializers.UUIDField(required=False)
    name = serializers.CharField(max_length=120, required=False, allow_blank=True)
    sku = serializers.CharField(max_length=100, required=False, allow_blank=True, allow_null=True)
    barcode = serializers.CharField(max_length=120, required=False, allow_blank=True, allow_null=True)
    selling_price = serializers.DecimalField(
        max_digits=14, decimal_places=2, min_value=Decimal('0'), max_value=MAX_MONEY,
        error_messages={
            'min_value': 'Selling price cannot be negative.',
            'max_value': 'Selling price is too large.',
        },
    )
    is_default = serializers.BooleanField(required=False, default=False)


class ProductWriteSerializer(serializers.Serializer):
    """Create/update payload for a product and its variants"""
    name = serializers.CharField(max_length=160, error_messages={'blank': 'Product name is required.'})
    category = serializers.ChoiceField(choices=Product.CATEGORY_CHOICES, default=Product.CATEGORY_GENERAL)
    unit = serializers.ChoiceField(choices=Product.UNIT_CHOICES, default='PCS')
    status = serializers.ChoiceField(choices=Product.STATUS_CHOICES, default=Product.STATUS_ACTIVE)
    image = ProductImageSerializer(required=False, allow_null=True, default=None)
    has_variants = serializers.BooleanField(default=False)
    variants = ProductVariantInputSerializer(many=True, required=False, default=list)

    def validate_variants(self, value):
        if len(value) > MAX_VARIANTS_PER_PRODUCT:
            raise serializers.ValidationError(f"A product can have at most {MAX_VARIANTS_PER_PRODUCT} variants.")
        return value

    def validate(self, attrs):
        if attrs['has_variants']:
            variants = attrs.get('variants') or []
            if not variants:
                raise serializers.ValidationError({'variants': 'Add at least one variant.'})
            missing_names = {
                str(index): {'name': ['Variant name is required.']}
                for index, variant in enumerate(variants)
                if not (variant.get('name') or '').strip()
            }
            if missing_names:
                raise serializers.ValidationError({'variants': missing_names})
        return attrs


class ProductVariantSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProductVariant
        fields = ['id', 'name', 'sku', 'barcode', 'selling_price', 'is_default', 'created_at', 'updated_at']


class ProductSerializer(serializers.ModelSerializer):
    variants = serializers.SerializerMethodField()
    has_variants = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = ['id', 'name', 'category', 'unit', 'status', 'image', 'has_variants', 'variants',
                  'created_at', 'updated_at']

    def _get_variants(self, obj):
        # Default variant first, then insertion order
        variants = [v for v in obj.variants.all() if v.deleted_at is None]
        return sorted(variants, key=lambda v: (not v.is_default, v.created_at))

    def get_variants(self, obj):
        return ProductVariantSerializer(self._get_variants(obj), many=True).data

    def get_has_variants(self, obj):
        variants = self._get_variants(obj)
        return not (len(variants) == 1 and variants[0].is_default and not variants[0].sku
                    and not variants[0].barcode and variants[0].name == 'Default')


class ImageKitDeleteSerializer(serializers.Serializer):
    file_id = serializers.CharField(max_length=255)
