"""
Cache invalidation signals
Automatically invalidate cache when activity logs change
"""
from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .cache_utils import invalidate_system_logs_cache
from .models import ActivityLog


@receiver(post_save, sender=ActivityLog)
def invalidate_system_logs_on_save(sender, instance, created, **kwargs):
    if created:
        # Invalidate only once the row is visible to other connections
        transaction.on_commit(invalidate_system_logs_cache)


@receiver(post_delete, sender=ActivityLog)
def invalidate_system_logs_on_delete(sender, instance, **kwargs):
    transaction.on_commit(invalidate_system_logs_cache)
