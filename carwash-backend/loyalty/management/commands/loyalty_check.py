"""
Management command to validate loyalty ledger parity.

Replays every wallet's transactions in order and compares the running sum
against both each row's balance_after and the wallet's available_points.

Usage:
    python manage.py loyalty_check
    python manage.py loyalty_check --tenant <tenant_id>
    python manage.py loyalty_check --verbose

Exit codes:
    0 - All wallets match their ledger (clean)
    1 - One or more mismatches found
"""

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Count, Sum

from loyalty.models import Wallet, WalletTransaction
from loyalty.reports import replay_wallet
from tenants.models import Tenant


class Command(BaseCommand):
    help = "Validate loyalty ledger parity by replaying wallet transactions"

    def add_arguments(self, parser):
        parser.add_argument(
            "--tenant",
            type=int,
            help="Check wallets for a specific tenant only",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Show detailed output for each wallet checked",
        )

    def handle(self, *args, **options):
        tenant_id = options.get("tenant")
        verbose = options.get("verbose", False)

        filters = {}
        if tenant_id:
            filters["tenant_id"] = tenant_id
            try:
                tenant = Tenant.objects.get(id=tenant_id)
            except Tenant.DoesNotExist:
                raise CommandError(f"Tenant with id {tenant_id} does not exist")
            self.stdout.write(f"Checking wallets for tenant: {tenant.name} ({tenant.code})")

        wallets = Wallet.objects.filter(**filters).select_related("customer").order_by("id")
        if not wallets.exists():
            self.stdout.write(self.style.WARNING("No wallets found to check"))
            return

        self.stdout.write(f"Checking {wallets.count()} wallets...")

        mismatches = []
        for wallet in wallets:
            result = replay_wallet(wallet)
            if result["ok"]:
                if verbose:
                    self.stdout.write(f"OK: wallet {wallet.id} ({wallet.customer.full_name}) = {wallet.available_points}")
                continue
            mismatches.append((wallet, result))
            if verbose:
                self.stdout.write(
                    self.style.ERROR(
                        f"MISMATCH: wallet {wallet.id} - Expected: {result['expected_available']}, "
                        f"Actual: {result['actual_available']}, "
                        f"Broken rows: {len(result['broken_rows'])}"
                    )
                )

        self.stdout.write("")
        self.stdout.write("=" * 60)
        self.stdout.write(f"Checked: {wallets.count()} wallets")
        self.stdout.write(f"Mismatches: {len(mismatches)}")

        if verbose:
            self.stdout.write("")
            self.stdout.write(f"{'Type':<12} {'Count':<10} {'Total Points':<15}")
            self.stdout.write("-" * 60)
            stats = (
                WalletTransaction.objects.filter(**filters)
                .values("transaction_type")
                .annotate(count=Count("id"), total=Sum("points"))
                .order_by("transaction_type")
            )
            for stat in stats:
                self.stdout.write(f"{stat['transaction_type']:<12} {stat['count']:<10} {stat['total'] or 0:>15}")

        if mismatches:
            self.stdout.write("")
            self.stdout.write(self.style.ERROR("MISMATCHES FOUND:"))
            for wallet, result in mismatches:
                self.stdout.write(
                    self.style.ERROR(
                        f"  - wallet {wallet.id} ({wallet.customer.full_name}): "
                        f"expected {result['expected_available']}, actual {result['actual_available']}"
                    )
                )
                for row in result["broken_rows"]:
                    self.stdout.write(
                        self.style.ERROR(
                            f"      tx {row['id']}: balance_after {row['balance_after']}, expected {row['expected']}"
                        )
                    )
            raise CommandError(f"Found {len(mismatches)} wallet(s) out of parity with the ledger")

        self.stdout.write(self.style.SUCCESS("All wallets match their ledger."))
