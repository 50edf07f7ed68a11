"""
Error presentation helpers.

Splits an unexpected exception into a message that is safe to show to end users
and a sanitized diagnostic payload for server logs.
"""
import re
import traceback

import requests
from django.db import DatabaseError

KIND_DATABASE = 'DATABASE'
KIND_NETWORK = 'NETWORK'
KIND_UNKNOWN = 'UNKNOWN'

MAX_TRACEBACK_LINES = 16

NETWORK_KEYWORDS = (
    'econnrefused',
    'econnreset',
    'etimedout',
    'enotfound',
    'eai_again',
    'socket hang up',
    'fetch failed',
    'networkerror',
    'connection terminated',
    'connection refused',
    'timed out',
)

DATABASE_KEYWORDS = (
    'postgres',
    'postgresql',
    'database_url',
    'password authentication failed',
    ':5432',
    ' 5432',
    'operationalerror',
)

USER_MESSAGES = {
    KIND_DATABASE: {
        'title': 'Failed to load data',
        'message': 'There is a problem reaching the data store. Try again in a moment or refresh the page.',
    },
    KIND_NETWORK: {
        'title': 'Connection problem',
        'message': 'There is a connection problem. Try again in a moment or refresh the page.',
    },
    KIND_UNKNOWN: {
        'title': 'Something went wrong',
        'message': 'An unexpected error occurred. Try again in a moment or refresh the page.',
    },
}

DEVELOPER_HINTS = {
    KIND_DATABASE: 'Database connection is likely broken. Check that the database is running and DATABASE_URL is correct.',
    KIND_NETWORK: 'A downstream service or the network is failing. Check connectivity to the endpoint and retry.',
    KIND_UNKNOWN: 'Root cause is unclear from the error alone. Check the server logs.',
}

_URL_CREDENTIALS_RE = re.compile(r'([a-z][a-z0-9+.-]*://)([^:\s/@]+):([^@\s/]+)@', re.IGNORECASE)
_PASSWORD_PARAM_RE = re.compile(r'password=([^&\s]+)', re.IGNORECASE)


def sanitize_error_text(text):
    """Mask credentials in URLs and `password=` parameters"""
    text = _URL_CREDENTIALS_RE.sub(r'\1\2:***@', text)
    return _PASSWORD_PARAM_RE.sub('password=***', text)


def truncate_lines(text, max_lines=MAX_TRACEBACK_LINES):
    lines = text.split('\n')
    if len(lines) <= max_lines:
        return text
    return '\n'.join(lines[:max_lines] + [f'... ({len(lines) - max_lines} lines truncated)'])


def _iter_causes(error):
    if not isinstance(error, BaseException):
        return
    seen = set()
    cause = error.__cause__ or error.__context__
    while cause is not None and id(cause) not in seen:
        seen.add(id(cause))
        yield cause
        cause = cause.__cause__ or cause.__context__


def _get_message(error):
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


def _get_traceback(error):
    if not isinstance(error, BaseException) or error.__traceback__ is None:
        return None
    return ''.join(traceback.format_exception(type(error), error, error.__traceback__)).rstrip()


def classify_error(error):
    """Roughly categorize an error as DATABASE, NETWORK or UNKNOWN"""
    chain = [error] + list(_iter_causes(error))

    if any(isinstance(item, DatabaseError) for item in chain):
        return KIND_DATABASE
    if any(isinstance(item, (requests.ConnectionError, requests.Timeout)) for item in chain):
        return KIND_NETWORK

    text = '\n'.join(
        f'{type(item).__name__} {_get_message(item)}' for item in chain
    ).lower()

    if any(keyword in text for keyword in DATABASE_KEYWORDS):
        return KIND_DATABASE
    if any(keyword in text for keyword in NETWORK_KEYWORDS):
        return KIND_NETWORK
    return KIND_UNKNOWN


def get_error_presentation(error, path=None):
    """
    Build the user-safe and developer-facing views of an error.

    Returns a dict with `kind`, `user` (title, message) and `developer`
    (name, message, cause, traceback, hint, path); developer fields are sanitized.
    """
    kind = classify_error(error)
    causes = [sanitize_error_text(_get_message(cause)) for cause in _iter_causes(error)]
    raw_traceback = _get_traceback(error)

    return {
        'kind': kind,
        'user': dict(USER_MESSAGES[kind]),
        'developer': {
            'kind': kind,
            'name': type(error).__name__,
            'message': sanitize_error_text(_get_message(error)),
            'cause': ' <- '.join(causes) or None,
            'traceback': truncate_lines(sanitize_error_text(raw_traceback)) if raw_traceback else None,
            'hint': DEVELOPER_HINTS[kind],
            'path': path,
        },
    }
