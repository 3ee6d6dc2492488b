from django.contrib import admin

from tenants.models import TenantUser


def _member_tenant_ids(user):
    return TenantUser.objects.filter(user=user, is_active=True).values_list("tenant_id", flat=True)


class TenantScopedAdmin(admin.ModelAdmin):
    """
    Limit admin rows to the tenants the staff user belongs to.
    Superusers see all.
    """
    tenant_field = "tenant"

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        if request.user.is_superuser:
            return qs
        return qs.filter(**{f"{self.tenant_field}__in": _member_tenant_ids(request.user)})


class LedgerReadOnlyAdmin(TenantScopedAdmin):
    """
    Balances and ledger rows only change through loyalty.services;
    the admin can look but never write.
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
