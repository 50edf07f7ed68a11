import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Platform user; company access comes from a single Membership"""
    SYSTEM_ROLE_SUPERADMIN = 'SUPERADMIN'
    SYSTEM_ROLE_ADMIN = 'ADMIN'
    SYSTEM_ROLE_STAFF = 'STAFF'

    SYSTEM_ROLE_CHOICES = [
        (SYSTEM_ROLE_SUPERADMIN, 'Superadmin'),
        (SYSTEM_ROLE_ADMIN, 'Admin'),
        (SYSTEM_ROLE_STAFF, 'Staff'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    system_role = models.CharField(max_length=20, choices=SYSTEM_ROLE_CHOICES, default=SYSTEM_ROLE_STAFF)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def is_superadmin(self):
        return self.system_role == self.SYSTEM_ROLE_SUPERADMIN

    class Meta:
        db_table = 'users'


class Company(models.Model):
    """Tenant; every operational record belongs to exactly one company"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=160)
    slug = models.SlugField(max_length=80, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'companies'
        ordering = ['-created_at']
        verbose_name_plural = 'companies'


class Membership(models.Model):
    """Links a user to one company with a company-level role"""
    ROLE_ADMIN = 'ADMIN'
    ROLE_STAFF = 'STAFF'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Admin'),
        (ROLE_STAFF, 'Staff'),
    ]

    STATUS_ACTIVE = 'ACTIVE'
    STATUS_INACTIVE = 'INACTIVE'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='membership')
    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='memberships')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_STAFF)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user.username} @ {self.company.slug} ({self.role})"

    class Meta:
        db_table = 'memberships'
        indexes = [
            models.Index(fields=['company', 'status'], name='idx_membership_company_status'),
        ]


class ActivityLog(models.Model):
    """Append-only audit trail, scoped to a company"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='activity_logs')
    actor_user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='activity_logs')
    action = models.CharField(max_length=120, help_text="Action name in `domain.verb` form, e.g. products.create")
    target_type = models.CharField(max_length=60, blank=True, null=True)
    target_id = models.CharField(max_length=100, blank=True, null=True)
    meta = models.JSONField(null=True, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.action} [{self.target_type or '-'}:{self.target_id or '-'}]"

    class Meta:
        db_table = 'activity_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', '-created_at'], name='idx_activity_company_created'),
            models.Index(fields=['action'], name='idx_activity_action'),
        ]
