"""
ImageKit service for product images.

Browsers upload straight to ImageKit using a short-lived signature from
`build_upload_auth`; the server only verifies ownership and deletes files.
Every product image lives under `/products/{company_folder}/`.
"""
import base64
import hashlib
import hmac
import logging
import time
import uuid
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
from django.conf import settings

from stockly.core.models import Company
from stockly.core.utils import build_company_asset_folder_segment

logger = logging.getLogger(__name__)

UPLOAD_AUTH_TTL_SECONDS = 60 * 10


class ImageKitError(Exception):
    """ImageKit answered with an unexpected status"""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


def is_configured(require_public=False) -> bool:
    """Private key is enough for server calls; uploads also need the public key and endpoint"""
    if not settings.IMAGEKIT_PRIVATE_KEY:
        return False
    if require_public:
        return bool(settings.IMAGEKIT_PUBLIC_KEY and settings.IMAGEKIT_URL_ENDPOINT)
    return True


def build_auth_header(private_key: str) -> str:
    encoded = base64.b64encode(f"{private_key}:".encode()).decode()
    return f"Basic {encoded}"


def _file_url(file_id: str, suffix: str = '') -> str:
    return f"{settings.IMAGEKIT_API_BASE.rstrip('/')}/files/{quote(file_id, safe='')}{suffix}"


def _headers() -> Dict[str, str]:
    return {'Authorization': build_auth_header(settings.IMAGEKIT_PRIVATE_KEY)}


def get_company_folder(company_id) -> str:
    """Folder segment of the company, e.g. `acme-store-3f9c2a1e`"""
    name = Company.objects.filter(pk=company_id).values_list('name', flat=True).first()
    return build_company_asset_folder_segment(name, company_id)


def get_products_folder(company_folder: str) -> str:
    return f"/products/{company_folder}"


def is_inside_company_folder(details: Optional[Dict[str, Any]], company_folder: str) -> bool:
    file_path = (details or {}).get('filePath') or ''
    return file_path.startswith(f"{get_products_folder(company_folder)}/")


def get_file_details(file_id: str) -> Optional[Dict[str, Any]]:
    """
    Read file details from ImageKit.

    Returns:
        Details dict, or None when the file does not exist
    """
    response = requests.get(
        _file_url(file_id, '/details'),
        headers=_headers(),
        timeout=settings.IMAGEKIT_TIMEOUT_SECONDS,
    )
    if response.status_code == 404:
        return None
    if not response.ok:
        raise ImageKitError(f"ImageKit details failed with status {response.status_code}", response.status_code)
    return response.json()


def delete_file(file_id: str) -> bool:
    """
    Delete a file from ImageKit.

    Returns:
        True if deleted, False if the file was already gone
    """
    response = requests.delete(
        _file_url(file_id),
        headers=_headers(),
        timeout=settings.IMAGEKIT_TIMEOUT_SECONDS,
    )
    if response.status_code == 404:
        return False
    if not response.ok:
        raise ImageKitError(f"ImageKit delete failed with status {response.status_code}", response.status_code)
    return True


def delete_file_quietly(file_id: Optional[str], company_folder: str, error_tag: str) -> bool:
    """
    Best-effort cleanup of a replaced or orphaned image.

    Files outside the company folder are never deleted. Failures are logged
    and never raised: the database change that triggered the cleanup stands.
    """
    if not file_id or not is_configured():
        return False
    try:
        details = get_file_details(file_id)
        if not details or not details.get('filePath'):
            return False
        if not is_inside_company_folder(details, company_folder):
            logger.warning(f"{error_tag} file {file_id} is outside folder {company_folder}, not deleted")
            return False
        return delete_file(file_id)
    except (requests.RequestException, ImageKitError) as e:
        logger.error(f"{error_tag} {e}")
        return False


def build_upload_auth(folder: str) -> Dict[str, Any]:
    """Signature for a client-side upload: hmac_sha1(private_key, token + expire)"""
    token = uuid.uuid4().hex
    expire = int(time.time()) + UPLOAD_AUTH_TTL_SECONDS
    signature = hmac.new(
        settings.IMAGEKIT_PRIVATE_KEY.encode(),
        f"{token}{expire}".encode(),
        hashlib.sha1,
    ).hexdigest()
    return {
        'token': token,
        'expire': expire,
        'signature': signature,
        'public_key': settings.IMAGEKIT_PUBLIC_KEY,
        'url_endpoint': settings.IMAGEKIT_URL_ENDPOINT,
        'folder': folder,
    }
