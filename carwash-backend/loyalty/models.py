# loyalty/models.py

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from tenants.models import Tenant
from customers.models import Customer


class LoyaltyProgram(models.Model):
    """
    Per-tenant conversion rules. At most one active program per tenant.
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="loyalty_programs",
    )
    name = models.CharField(max_length=120)
    description = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    points_per_currency = models.DecimalField(
        max_digits=10,
        decimal_places=4,
        default=Decimal("1.0000"),
        help_text="Points earned per 1.00 of currency spent.",
    )
    currency_per_point = models.DecimalField(
        max_digits=10,
        decimal_places=4,
        default=Decimal("0.1000"),
        help_text="Currency value of one point when redeemed.",
    )
    min_points_redeem = models.PositiveIntegerField(
        default=100,
        help_text="Minimum available balance required before points can be redeemed.",
    )
    expiration_days = models.PositiveIntegerField(
        blank=True,
        null=True,
        help_text="Days until earned points lapse. Empty = never expire.",
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-is_active", "-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant"],
                condition=models.Q(is_active=True),
                name="unique_active_loyalty_program_per_tenant",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.tenant_id})"


class Wallet(models.Model):
    """
    Points wallet per customer (per tenant). Created lazily by the first
    transaction and only ever mutated by loyalty.services.
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="loyalty_wallets",
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.CASCADE,
        related_name="loyalty_wallets",
    )
    program = models.ForeignKey(
        LoyaltyProgram,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="wallets",
    )
    available_points = models.IntegerField(default=0)
    total_points = models.IntegerField(default=0)
    lifetime_points = models.IntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "customer"],
                name="unique_wallet_per_customer",
            ),
            models.CheckConstraint(
                condition=models.Q(available_points__gte=0),
                name="wallet_available_points_non_negative",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "total_points"], name="wallet_tenant_total_idx"),
        ]

    def __str__(self):
        return f"Wallet #{self.pk} ({self.customer_id}: {self.available_points})"


class WalletTransaction(models.Model):
    """
    Immutable log of wallet point changes.
    """

    EARN = "earn"
    REDEEM = "redeem"
    ADJUST = "adjust"
    EXPIRE = "expire"

    TYPE_CHOICES = [
        (EARN, "Earn"),
        (REDEEM, "Redeem"),
        (ADJUST, "Adjust"),
        (EXPIRE, "Expire"),
    ]

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="wallet_transactions",
    )
    wallet = models.ForeignKey(
        Wallet,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.CASCADE,
        related_name="wallet_transactions",
    )

    transaction_type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    points = models.IntegerField()
    balance_after = models.IntegerField()
    description = models.CharField(max_length=255, blank=True, default="")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="wallet_transactions",
    )
    expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["tenant", "transaction_type"], name="wallettx_tenant_type_idx"),
            models.Index(fields=["wallet", "created_at"], name="wallettx_wallet_created_idx"),
        ]

    def __str__(self):
        return f"{self.transaction_type} {self.points:+d} -> {self.balance_after}"

    def save(self, *args, **kwargs):
        if self.pk is not None and not kwargs.get("force_insert"):
            raise ValueError("Wallet transactions are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Wallet transactions are append-only")


class AdjustDirection(models.TextChoices):
    INCREASE = "increase", "Increase"
    DECREASE = "decrease", "Decrease"
