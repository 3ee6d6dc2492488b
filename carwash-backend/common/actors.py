# common/actors.py
"""
Explicit caller identity for service-layer operations.

Views build an Actor from the request once; services receive it as an
argument and never look at the request, the session or any global state.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from tenants.models import TenantUser


@dataclass(frozen=True)
class Actor:
    user_id: Optional[int]
    role: Optional[str]
    tenant_id: Optional[int]
    is_superuser: bool = False

    @classmethod
    def for_user(cls, user, tenant) -> "Actor":
        """
        Resolve the user's active membership role for the tenant.
        Superusers act as platform root and need no membership.
        """
        role = None
        if user is not None and tenant is not None:
            role = (
                TenantUser.objects.filter(user=user, tenant=tenant, is_active=True)
                .values_list("role", flat=True)
                .first()
            )
        return cls(
            user_id=getattr(user, "pk", None),
            role=role,
            tenant_id=getattr(tenant, "pk", None),
            is_superuser=bool(getattr(user, "is_superuser", False)),
        )

    @classmethod
    def from_request(cls, request) -> "Actor":
        return cls.for_user(getattr(request, "user", None), getattr(request, "tenant", None))

    @classmethod
    def system(cls, tenant_id: Optional[int] = None) -> "Actor":
        """Identity used by scheduled jobs (no user, full access)."""
        return cls(user_id=None, role=None, tenant_id=tenant_id, is_superuser=True)

    def acts_for(self, tenant) -> bool:
        if self.is_superuser:
            return True
        return tenant is not None and self.tenant_id == tenant.pk

    def has_role(self, roles: Iterable[str]) -> bool:
        if self.is_superuser:
            return True
        return self.role in set(roles)
