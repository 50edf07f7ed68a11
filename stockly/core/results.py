"""
Result envelope shared by every API endpoint.

Success:  {"ok": true, "data": ...}
Failure:  {"ok": false, "error": {"code": ..., "message": ..., "field_errors": {...}}}
"""
import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import set_rollback

from .errors import get_error_presentation

logger = logging.getLogger(__name__)

UNAUTHENTICATED = 'UNAUTHENTICATED'
FORBIDDEN = 'FORBIDDEN'
INVALID_INPUT = 'INVALID_INPUT'
NOT_FOUND = 'NOT_FOUND'
CONFLICT = 'CONFLICT'
INTERNAL = 'INTERNAL'

HTTP_STATUS_BY_CODE = {
    UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    FORBIDDEN: status.HTTP_403_FORBIDDEN,
    INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CONFLICT: status.HTTP_409_CONFLICT,
    INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

DEFAULT_INVALID_INPUT_MESSAGE = 'Invalid input.'
DEFAULT_INTERNAL_MESSAGE = 'The system is having trouble. Try again in a moment.'
DEFAULT_UNAUTHENTICATED_MESSAGE = 'You must be logged in.'
DEFAULT_FORBIDDEN_MESSAGE = 'Access denied.'
DEFAULT_NOT_FOUND_MESSAGE = 'Data not found.'


def ok(data):
    """Wrap a successful payload"""
    return {'ok': True, 'data': data}


def err(code, message, field_errors=None):
    """Build a failure payload; `field_errors` is only included when non-empty"""
    error = {'code': code, 'message': message}
    if field_errors:
        error['field_errors'] = field_errors
    return {'ok': False, 'error': error}


def get_http_status(code):
    return HTTP_STATUS_BY_CODE.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def flatten_field_errors(errors, prefix=''):
    """
    Flatten a nested DRF error structure into {dotted.path: [messages]}.

    `{'items': [{}, {'qty': ['Too big.']}]}` -> `{'items.1.qty': ['Too big.']}`
    """
    flattened = {}
    if isinstance(errors, dict):
        for key, value in errors.items():
            path = f'{prefix}.{key}' if prefix else str(key)
            for field, messages in flatten_field_errors(value, path).items():
                flattened.setdefault(field, []).extend(messages)
    elif isinstance(errors, (list, tuple)):
        messages = []
        for index, item in enumerate(errors):
            if isinstance(item, (dict, list, tuple)):
                path = f'{prefix}.{index}' if prefix else str(index)
                for field, nested in flatten_field_errors(item, path).items():
                    flattened.setdefault(field, []).extend(nested)
            else:
                messages.append(str(item))
        if messages:
            flattened.setdefault(prefix or 'non_field_errors', []).extend(messages)
    elif errors is not None:
        flattened.setdefault(prefix or 'non_field_errors', []).append(str(errors))
    return flattened


class ActionError(exceptions.APIException):
    """
    Expected failure raised by services and guards.

    Rendered as the error envelope by `envelope_exception_handler`.
    """

    def __init__(self, code, message, field_errors=None):
        self.code = code
        self.message = message
        self.field_errors = field_errors or None
        self.status_code = get_http_status(code)
        super().__init__(detail=message, code=code.lower())

    def as_envelope(self):
        return err(self.code, self.message, self.field_errors)

    def __str__(self):
        return f'{self.code}: {self.message}'


def err_from_validation(errors, message=DEFAULT_INVALID_INPUT_MESSAGE):
    """Build an INVALID_INPUT ActionError from serializer errors"""
    return ActionError(INVALID_INPUT, message, flatten_field_errors(errors))


def _code_for_status(status_code):
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return UNAUTHENTICATED
    if status_code == status.HTTP_403_FORBIDDEN:
        return FORBIDDEN
    if status_code == status.HTTP_404_NOT_FOUND:
        return NOT_FOUND
    if status_code == status.HTTP_409_CONFLICT:
        return CONFLICT
    if status_code >= 500:
        return INTERNAL
    return INVALID_INPUT


def envelope_exception_handler(exc, context):
    """
    DRF exception handler that renders every exception raised in a view as the error envelope.

    Anything that is not an API exception is logged with its developer
    presentation and answered as INTERNAL.
    """
    if isinstance(exc, Http404):
        exc = ActionError(NOT_FOUND, DEFAULT_NOT_FOUND_MESSAGE)
    elif isinstance(exc, DjangoPermissionDenied):
        exc = ActionError(FORBIDDEN, DEFAULT_FORBIDDEN_MESSAGE)

    if not isinstance(exc, exceptions.APIException):
        path = getattr(context.get('request'), 'path', None)
        presentation = get_error_presentation(exc, path=path)
        logger.error(f"UNHANDLED_API_ERROR {presentation['developer']}")
        set_rollback()
        return Response(err(INTERNAL, DEFAULT_INTERNAL_MESSAGE), status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    headers = {}
    if getattr(exc, 'auth_header', None):
        headers['WWW-Authenticate'] = exc.auth_header
    if getattr(exc, 'wait', None):
        headers['Retry-After'] = '%d' % exc.wait

    if isinstance(exc, ActionError):
        payload = exc.as_envelope()
    elif isinstance(exc, exceptions.ValidationError):
        payload = err(INVALID_INPUT, DEFAULT_INVALID_INPUT_MESSAGE, flatten_field_errors(exc.detail))
    elif isinstance(exc, (exceptions.NotAuthenticated, exceptions.AuthenticationFailed)):
        payload = err(
            UNAUTHENTICATED if exc.status_code == status.HTTP_401_UNAUTHORIZED else FORBIDDEN,
            DEFAULT_UNAUTHENTICATED_MESSAGE,
        )
    elif isinstance(exc, exceptions.PermissionDenied):
        payload = err(FORBIDDEN, DEFAULT_FORBIDDEN_MESSAGE)
    elif isinstance(exc, exceptions.NotFound):
        payload = err(NOT_FOUND, DEFAULT_NOT_FOUND_MESSAGE)
    else:
        detail = exc.detail if isinstance(exc.detail, str) else DEFAULT_INVALID_INPUT_MESSAGE
        payload = err(_code_for_status(exc.status_code), str(detail))

    if exc.status_code >= 500:
        logger.error(f"API error {exc.status_code}: {payload['error']['message']}")

    set_rollback()
    return Response(payload, status=exc.status_code, headers=headers)
