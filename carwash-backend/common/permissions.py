# common/permissions.py
from rest_framework.permissions import BasePermission


class IsInTenant(BasePermission):
    """
    Authenticated member of request.tenant. Role checks happen in the
    service layer, which receives an explicit Actor.
    """

    def has_permission(self, request, view):
        u = getattr(request, "user", None)
        t = getattr(request, "tenant", None)
        if not (u and u.is_authenticated):
            return False
        if u.is_superuser:
            return True
        if t is None:
            return False
        return u.tenant_memberships.filter(tenant=t, is_active=True).exists()


class TenantScopedViewMixin:
    """
    Auto-filters by tenant and sets tenant on create.
    Superusers without a resolved tenant see every tenant's rows.
    """
    tenant_field = "tenant"

    def get_queryset(self):
        qs = super().get_queryset()
        t = getattr(self.request, "tenant", None)
        if self.request.user.is_superuser and t is None:
            return qs
        return qs.filter(**{self.tenant_field: t})

    def perform_create(self, serializer):
        serializer.save(**{self.tenant_field: self.request.tenant})
