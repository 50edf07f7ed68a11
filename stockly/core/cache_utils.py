"""
Caching utilities for expensive cross-company queries.

System log pages are cached per normalized query. Invalidation bumps a
generation counter that is part of every key, so stale pages simply stop
being addressed and expire on their own.
"""
import hashlib
import json
import logging

from django.core.cache import cache

logger = logging.getLogger(__name__)

SYSTEM_LOGS_CACHE_TTL = 60  # 1 minute
SYSTEM_LOGS_CACHE_PREFIX = 'system_logs'
SYSTEM_LOGS_GENERATION_KEY = f'{SYSTEM_LOGS_CACHE_PREFIX}:generation'


def make_cache_key(prefix, *args, **kwargs):
    """Generate a unique cache key from arguments"""
    key_data = json.dumps([args, kwargs], sort_keys=True, default=str)
    key_hash = hashlib.md5(key_data.encode()).hexdigest()
    return f"{prefix}:{key_hash}"


def _get_system_logs_generation():
    generation = cache.get(SYSTEM_LOGS_GENERATION_KEY)
    if generation is None:
        cache.add(SYSTEM_LOGS_GENERATION_KEY, 1, None)
        generation = cache.get(SYSTEM_LOGS_GENERATION_KEY, 1)
    return generation


def get_cached_system_logs_page(query):
    """
    Get a cached system logs page
    Returns tuple: (cached_data, cache_key)
    """
    cache_key = make_cache_key(SYSTEM_LOGS_CACHE_PREFIX, _get_system_logs_generation(), query)
    cached_data = cache.get(cache_key)
    if cached_data is not None:
        logger.debug(f"Cache HIT for system logs: {cache_key}")
    return cached_data, cache_key


def cache_system_logs_page(cache_key, data, ttl=SYSTEM_LOGS_CACHE_TTL):
    """Cache a system logs page"""
    cache.set(cache_key, data, ttl)
    logger.debug(f"Cached system logs page: {cache_key}")


def invalidate_system_logs_cache():
    """Invalidate every cached system logs page"""
    try:
        cache.incr(SYSTEM_LOGS_GENERATION_KEY)
    except ValueError:
        cache.set(SYSTEM_LOGS_GENERATION_KEY, 2, None)
    logger.debug("Invalidated system logs cache")
