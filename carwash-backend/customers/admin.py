# customers/admin.py

from django.contrib import admin

from common.admin_mixins import TenantScopedAdmin
from .models import Customer


@admin.register(Customer)
class CustomerAdmin(TenantScopedAdmin):
    list_display = [
        "id",
        "full_name",
        "email",
        "phone_number",
        "tenant",
        "is_active",
        "created_at",
    ]
    list_filter = ["tenant", "is_active", "created_at"]
    search_fields = [
        "first_name__istartswith",
        "last_name__istartswith",
        "email__icontains",
        "phone_number__icontains",
    ]
    readonly_fields = ["created_by", "created_at", "updated_at"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant")
