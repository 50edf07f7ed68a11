from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, Company, Membership, ActivityLog


class MembershipInline(admin.StackedInline):
    model = Membership
    fk_name = 'user'
    extra = 0


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['username', 'email', 'system_role', 'is_active', 'created_at']
    list_filter = ['system_role', 'is_active', 'created_at']
    search_fields = ['username', 'email', 'first_name', 'last_name']
    ordering = ['username']
    inlines = [MembershipInline]
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Platform Role', {'fields': ('system_role',)}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Platform Role', {'fields': ('system_role',)}),
    )


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'created_at']
    search_fields = ['name', 'slug']
    prepopulated_fields = {'slug': ('name',)}
    ordering = ['-created_at']


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ['user', 'company', 'role', 'status', 'created_at']
    list_filter = ['role', 'status', 'company']
    search_fields = ['user__username', 'company__name']
    raw_id_fields = ['user']


@admin.register(ActivityLog)
class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ['action', 'company', 'actor_user', 'target_type', 'target_id', 'ip_address', 'created_at']
    list_filter = ['company', 'created_at']
    search_fields = ['action', 'actor_user__username', 'target_type', 'target_id']
    ordering = ['-created_at']
    readonly_fields = ['company', 'actor_user', 'action', 'target_type', 'target_id', 'meta', 'ip_address', 'created_at']
