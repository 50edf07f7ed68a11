import django_filters

from .models import Product


class ProductFilter(django_filters.FilterSet):
    """Exact-match filters for the product table (`?category=FASHION&status=ACTIVE`)"""
    category = django_filters.ChoiceFilter(choices=Product.CATEGORY_CHOICES)
    status = django_filters.ChoiceFilter(choices=Product.STATUS_CHOICES)
    unit = django_filters.ChoiceFilter(choices=Product.UNIT_CHOICES)

    class Meta:
        model = Product
        fields = ['category', 'status', 'unit']
