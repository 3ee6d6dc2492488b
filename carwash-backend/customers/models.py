# customers/models.py

from django.conf import settings
from django.db import models
from django.utils import timezone

from tenants.models import Tenant


class Customer(models.Model):
    """
    Tenant-scoped customer profile.
    Loyalty balances live in the loyalty app (Wallet).
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="customers",
    )

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, null=True)

    email = models.EmailField(blank=True, null=True)
    phone_number = models.CharField(
        max_length=32,
        blank=True,
        null=True,
        help_text="E.164 or local format. Unique per tenant when provided.",
    )

    # Free-form list of the customer's vehicles, e.g. [{"plate": "ABC123", "model": "Civic"}]
    vehicle_info = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="created_customers",
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [
            ("tenant", "email"),
            ("tenant", "phone_number"),
        ]
        indexes = [
            models.Index(fields=["tenant", "last_name", "first_name"], name="customer_tenant_name_idx"),
            models.Index(fields=["tenant", "phone_number"], name="customer_tenant_phone_idx"),
            models.Index(fields=["tenant", "email"], name="customer_tenant_email_idx"),
        ]
        ordering = ["first_name", "last_name", "id"]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.tenant_id})"

    @property
    def full_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name
