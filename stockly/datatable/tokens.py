"""
Opaque URL state tokens.

Table query state is serialized to JSON and sealed with AES-256-GCM so it can
travel in a single URL param. The token is meant to keep URLs tidy and
tamper-evident; it is not an access control mechanism.

Layout: base64url(iv[12] || tag[16] || ciphertext), no padding.
"""
import base64
import binascii
import hashlib
import json
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings

from stockly.core.results import ActionError, INVALID_INPUT

from .query import parse_data_table_query

logger = logging.getLogger(__name__)

IV_LENGTH_BYTES = 12
TAG_LENGTH_BYTES = 16

INVALID_URL_STATE_MESSAGE = 'Invalid URL state.'


class InvalidUrlStateToken(ValueError):
    """Raised when a URL state token cannot be decoded, authenticated or parsed"""


def _get_key():
    return hashlib.sha256(settings.AUTH_SECRET.encode('utf-8')).digest()


def _b64url_encode(raw):
    return base64.urlsafe_b64encode(raw).rstrip(b'=').decode('ascii')


def _b64url_decode(token):
    padded = token + '=' * (-len(token) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode('ascii'))
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise InvalidUrlStateToken('Invalid token encoding') from e


def encrypt_url_state(value):
    """Seal a JSON-serializable value into a compact base64url token"""
    iv = os.urandom(IV_LENGTH_BYTES)
    plaintext = json.dumps(value, separators=(',', ':')).encode('utf-8')
    sealed = AESGCM(_get_key()).encrypt(iv, plaintext, None)
    ciphertext, tag = sealed[:-TAG_LENGTH_BYTES], sealed[-TAG_LENGTH_BYTES:]
    return _b64url_encode(iv + tag + ciphertext)


def decrypt_url_state(token):
    """Open a token produced by `encrypt_url_state`; raises InvalidUrlStateToken"""
    if not isinstance(token, str) or not token:
        raise InvalidUrlStateToken('Missing token')

    raw = _b64url_decode(token)
    if len(raw) < IV_LENGTH_BYTES + TAG_LENGTH_BYTES:
        raise InvalidUrlStateToken('Invalid token')

    iv = raw[:IV_LENGTH_BYTES]
    tag = raw[IV_LENGTH_BYTES:IV_LENGTH_BYTES + TAG_LENGTH_BYTES]
    ciphertext = raw[IV_LENGTH_BYTES + TAG_LENGTH_BYTES:]

    try:
        plaintext = AESGCM(_get_key()).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise InvalidUrlStateToken('Token authentication failed') from e

    try:
        return json.loads(plaintext.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidUrlStateToken('Token payload is not JSON') from e


def encrypt_data_table_query_token(query):
    """Validate a data table query and seal it; returns {'token': ...}"""
    normalized = parse_data_table_query(query)
    return {'token': encrypt_url_state(normalized)}


def decrypt_data_table_query_token(token):
    """Open and re-validate a data table query token; any failure is INVALID_INPUT"""
    try:
        value = decrypt_url_state(token)
        return parse_data_table_query(value)
    except (InvalidUrlStateToken, ActionError) as e:
        logger.info(f"Rejected URL state token: {e}")
        raise ActionError(INVALID_INPUT, INVALID_URL_STATE_MESSAGE)
