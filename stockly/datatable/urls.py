from django.urls import path
from .views import table_state_encrypt, table_state_decrypt

urlpatterns = [
    path('table-state/encrypt/', table_state_encrypt, name='table-state-encrypt'),
    path('table-state/decrypt/', table_state_decrypt, name='table-state-decrypt'),
]
