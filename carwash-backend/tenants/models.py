from django.conf import settings
from django.db import models
from django.utils import timezone

from common.models import TimeStampedModel
from common.roles import TenantRole


class SubscriptionStatus(models.TextChoices):
    TRIALING = "trialing", "Trialing"
    ACTIVE   = "active",   "Active"
    PAST_DUE = "past_due", "Past due"
    CANCELED = "canceled", "Canceled"
    EXPIRED  = "expired",  "Expired"


class Tenant(TimeStampedModel):
    """
    Carwash company. Every tenant-owned table FKs to this (via 'tenant').
    """
    name = models.CharField(max_length=120)
    code = models.SlugField(unique=True)
    currency_code = models.CharField(max_length=3, default="MXN")      # ISO 4217
    currency_symbol = models.CharField(max_length=4, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    business_phone = models.CharField(max_length=32, blank=True, null=True)
    is_active = models.BooleanField(default=True)

    # billing gate, maintained by the billing provider's webhooks
    subscription_status = models.CharField(
        max_length=16,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.TRIALING,
    )
    subscription_end_date = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    @property
    def has_access(self) -> bool:
        """
        True while the tenant is active and its trial/subscription has not lapsed.
        """
        if not self.is_active:
            return False
        if self.subscription_status not in (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE):
            return False
        if self.subscription_end_date and self.subscription_end_date <= timezone.now():
            return False
        return True


class TenantUser(models.Model):
    """
    Membership binding a Django user to a Tenant, with a role.
    """
    tenant = models.ForeignKey("tenants.Tenant", on_delete=models.CASCADE, related_name="memberships")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="tenant_memberships")
    role = models.CharField(max_length=20, choices=TenantRole.choices, default=TenantRole.OPERATOR)
    is_active = models.BooleanField(default=True)
    first_name = models.CharField(max_length=80, blank=True, null=True)
    last_name = models.CharField(max_length=80, blank=True, null=True)

    class Meta:
        unique_together = ("tenant", "user")
        ordering = ["id"]  # stable default for pagination
        indexes = [
            models.Index(fields=["tenant", "role"], name="tenantuser_tenant_role_idx"),
        ]

    def __str__(self):
        return f"{self.user} @ {self.tenant} ({self.role})"
