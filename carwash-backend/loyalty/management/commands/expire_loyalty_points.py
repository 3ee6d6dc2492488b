"""
Management command to debit lapsed loyalty points.

Usage:
    python manage.py expire_loyalty_points
    python manage.py expire_loyalty_points --tenant <tenant_id>
"""

from django.core.management.base import BaseCommand, CommandError

from loyalty.services import expire_lapsed_points
from tenants.models import Tenant


class Command(BaseCommand):
    help = "Append expire transactions for earned points past their expiration date"

    def add_arguments(self, parser):
        parser.add_argument(
            "--tenant",
            type=int,
            help="Expire points for a specific tenant only",
        )

    def handle(self, *args, **options):
        tenant = None
        tenant_id = options.get("tenant")
        if tenant_id:
            try:
                tenant = Tenant.objects.get(id=tenant_id)
            except Tenant.DoesNotExist:
                raise CommandError(f"Tenant with id {tenant_id} does not exist")
            self.stdout.write(f"Expiring points for tenant: {tenant.name} ({tenant.code})")

        summary = expire_lapsed_points(tenant=tenant)

        self.stdout.write(f"Wallets checked: {summary['wallets_checked']}")
        self.stdout.write(f"Wallets expired: {summary['wallets_expired']}")
        self.stdout.write(
            self.style.SUCCESS(f"Points expired: {summary['points_expired']}")
        )
