from django.urls import path
from .views import (
    product_list_create, product_detail, variant_options,
    imagekit_auth, imagekit_file_delete,
)

urlpatterns = [
    # Product endpoints
    path('products/', product_list_create, name='product-list-create'),
    path('products/variant-options/', variant_options, name='product-variant-options'),
    path('products/<uuid:pk>/', product_detail, name='product-detail'),

    # ImageKit endpoints
    path('imagekit/auth/', imagekit_auth, name='imagekit-auth'),
    path('imagekit/files/delete/', imagekit_file_delete, name='imagekit-file-delete'),
]
