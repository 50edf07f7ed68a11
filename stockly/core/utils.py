"""Utility functions for activity logging and input normalization"""
import logging
from decimal import Decimal

from django.utils.text import slugify

from .models import ActivityLog

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Extract client IP address from request"""
    if not request or not hasattr(request, 'META'):
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or None


def log_activity(company, actor=None, action=None, target_type=None, target_id=None,
                 meta=None, request=None):
    """
    Append an activity log entry.

    Call it inside the same transaction as the mutation it records so the
    trail stays consistent: a failed insert rolls the mutation back too.

    Args:
        company: Company instance or company id the entry belongs to
        actor: User performing the action (defaults to request.user if request provided)
        action: Action name in `domain.verb` form (e.g. products.create)
        target_type: Kind of object acted upon (e.g. product, receiving)
        target_id: Identifier of that object
        meta: JSON-serializable details
        request: Optional request, used for actor and IP address
    """
    if not company or not action:
        logger.warning(f"Activity log skipped: missing required fields (company={company}, action={action})")
        return None

    if actor is None and request is not None and getattr(request, 'user', None) is not None:
        actor = request.user if request.user.is_authenticated else None

    company_field = 'company_id' if not hasattr(company, 'pk') else 'company'
    return ActivityLog.objects.create(
        **{company_field: company},
        actor_user=actor,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta=meta,
        ip_address=get_client_ip(request) if request else None,
    )


def to_nullable_trimmed_text(value):
    """None or blank text becomes None; anything else is trimmed"""
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def to_fixed_scale_text(value, scale=2):
    """Render a number as fixed-scale decimal text (e.g. for numeric columns)"""
    quantum = Decimal(1).scaleb(-scale)
    return str(Decimal(str(value)).quantize(quantum))


def build_company_asset_folder_segment(name, company_id):
    """
    Folder segment used for a company's uploaded assets.

    `Acme Store` + `3f9c2a1e-...` -> `acme-store-3f9c2a1e`; falls back to the id.
    """
    company_id = str(company_id)
    slug = slugify(name or '')
    if not slug:
        return company_id
    return f"{slug}-{company_id.replace('-', '')[:8]}"
