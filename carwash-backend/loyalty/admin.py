# carwash-backend/loyalty/admin.py

from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from common.admin_mixins import LedgerReadOnlyAdmin, TenantScopedAdmin
from .models import LoyaltyProgram, Wallet, WalletTransaction


@admin.register(LoyaltyProgram)
class LoyaltyProgramAdmin(TenantScopedAdmin):
    list_display = [
        "name",
        "tenant",
        "is_active",
        "points_per_currency",
        "currency_per_point",
        "min_points_redeem",
        "expiration_days",
        "updated_at",
    ]
    list_filter = ["is_active", "updated_at"]
    search_fields = ["name", "tenant__name", "tenant__code"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant")


@admin.register(Wallet)
class WalletAdmin(LedgerReadOnlyAdmin):
    list_display = [
        "customer_link",
        "tenant",
        "available_points",
        "total_points",
        "lifetime_points",
        "updated_at",
    ]
    list_filter = ["tenant", "updated_at"]
    search_fields = [
        "customer__first_name",
        "customer__last_name",
        "customer__email",
        "customer__phone_number",
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant", "customer")

    def customer_link(self, obj):
        url = reverse("admin:customers_customer_change", args=[obj.customer_id])
        return format_html('<a href="{}">{}</a>', url, obj.customer.full_name)
    customer_link.short_description = "Customer"
    customer_link.admin_order_field = "customer__first_name"


@admin.register(WalletTransaction)
class WalletTransactionAdmin(LedgerReadOnlyAdmin):
    date_hierarchy = "created_at"
    list_display = [
        "created_at",
        "tenant",
        "customer",
        "transaction_type",
        "points",
        "balance_after",
        "created_by",
        "expires_at",
    ]
    list_filter = ["tenant", "transaction_type", "created_at"]
    search_fields = [
        "customer__first_name",
        "customer__last_name",
        "customer__email",
        "description",
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant", "customer", "created_by")
