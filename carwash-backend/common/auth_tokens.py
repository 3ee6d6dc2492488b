# common/auth_tokens.py
import logging

from rest_framework import exceptions
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.views import TokenObtainPairView

from tenants.models import Tenant, TenantUser

logger = logging.getLogger(__name__)

ROOT_ROLE = "root"


class TenantAwareTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    POST {username, password, tenant_code?}

    Without tenant_code the user's first active membership is used.
    Superusers may sign into any active tenant and carry the "root" role.
    """

    def _resolve_membership(self, tenant_code):
        if not tenant_code:
            membership = (
                self.user.tenant_memberships.filter(is_active=True, tenant__is_active=True)
                .select_related("tenant")
                .order_by("id")
                .first()
            )
            if membership is None:
                raise exceptions.AuthenticationFailed("User has no active tenant memberships")
            return membership.tenant, membership.role

        tenant = Tenant.objects.filter(code=tenant_code, is_active=True).first()
        if tenant is None:
            raise exceptions.AuthenticationFailed("Invalid tenant")
        role = (
            TenantUser.objects.filter(user=self.user, tenant=tenant, is_active=True)
            .values_list("role", flat=True)
            .first()
        )
        if role is None:
            if not self.user.is_superuser:
                logger.warning("Login refused: %s is not a member of %s", self.user.username, tenant_code)
                raise exceptions.AuthenticationFailed("User is not a member of this tenant")
            role = ROOT_ROLE
        return tenant, role

    def validate(self, attrs):
        data = super().validate(attrs)
        tenant, role = self._resolve_membership(self.context["request"].data.get("tenant_code"))

        refresh = self.get_token(self.user)
        refresh["tenant_id"] = tenant.id
        refresh["tenant_code"] = tenant.code
        refresh["role"] = role

        data["refresh"] = str(refresh)
        data["access"] = str(refresh.access_token)
        data["tenant"] = {
            "id": tenant.id,
            "code": tenant.code,
            "name": tenant.name,
            "currency_code": tenant.currency_code,
            "subscription_status": tenant.subscription_status,
            "has_access": tenant.has_access,
        }
        data["role"] = role
        return data


class TenantAwareTokenObtainPairView(TokenObtainPairView):
    serializer_class = TenantAwareTokenObtainPairSerializer
