from django.urls import path
from .views import (
    stock_list,
    receiving_list_create, receiving_detail, receiving_post, receiving_void,
    adjustment_list_create,
    opname_list_create, opname_detail, opname_item_update, opname_finalize, opname_void,
)

urlpatterns = [
    # Stock endpoints
    path('inventory/stock/', stock_list, name='inventory-stock-list'),

    # Receiving endpoints
    path('inventory/receivings/', receiving_list_create, name='inventory-receiving-list-create'),
    path('inventory/receivings/<uuid:pk>/', receiving_detail, name='inventory-receiving-detail'),
    path('inventory/receivings/<uuid:pk>/post/', receiving_post, name='inventory-receiving-post'),
    path('inventory/receivings/<uuid:pk>/void/', receiving_void, name='inventory-receiving-void'),

    # Adjustment endpoints
    path('inventory/adjustments/', adjustment_list_create, name='inventory-adjustment-list-create'),

    # Stock opname endpoints
    path('inventory/opnames/', opname_list_create, name='inventory-opname-list-create'),
    path('inventory/opnames/<uuid:pk>/', opname_detail, name='inventory-opname-detail'),
    path('inventory/opnames/<uuid:pk>/items/<uuid:item_id>/', opname_item_update, name='inventory-opname-item-update'),
    path('inventory/opnames/<uuid:pk>/finalize/', opname_finalize, name='inventory-opname-finalize'),
    path('inventory/opnames/<uuid:pk>/void/', opname_void, name='inventory-opname-void'),
]
