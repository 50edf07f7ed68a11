from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from stockly.core.results import ok
from .tokens import decrypt_data_table_query_token, encrypt_data_table_query_token


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def table_state_encrypt(request):
    """Seal a data table query into an opaque URL token"""
    return Response(ok(encrypt_data_table_query_token(request.data)))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def table_state_decrypt(request):
    """Open a URL token back into a validated data table query"""
    token = request.data.get('token') if hasattr(request.data, 'get') else None
    return Response(ok(decrypt_data_table_query_token(token)))
