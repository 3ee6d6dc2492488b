from django.contrib import admin

from .models import Tenant, TenantUser


class TenantUserInline(admin.TabularInline):
    model = TenantUser
    extra = 0
    fields = ("user", "role", "is_active", "first_name", "last_name")
    raw_id_fields = ("user",)


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "currency_code", "is_active", "subscription_status", "subscription_end_date")
    search_fields = ("name", "code", "email", "business_phone")
    list_filter = ("is_active", "subscription_status")
    readonly_fields = ("created_at", "updated_at")
    inlines = [TenantUserInline]


@admin.register(TenantUser)
class TenantUserAdmin(admin.ModelAdmin):
    list_display = ("tenant", "user", "role", "is_active")
    list_filter = ("tenant", "role", "is_active")
    search_fields = ("user__username", "user__email", "tenant__code", "first_name", "last_name")
    list_select_related = ("tenant", "user")
