"""
Tests for loyalty reports and the ledger parity command.
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from common.actors import Actor
from customers.models import Customer
from loyalty.models import Wallet, WalletTransaction
from loyalty.reports import (
    list_wallets,
    program_summary,
    recent_transactions,
    replay_wallet,
    wallet_detail,
    wallet_history,
    wallet_report,
)
from loyalty.services import apply_transaction, expire_lapsed_points
from loyalty.tests import LoyaltyTestBase
from tenants.models import Tenant


class ReportTestBase(LoyaltyTestBase):

    def setUp(self):
        super().setUp()
        self.program = self.make_program(currency_per_point=Decimal("0.5000"))
        self.bob = Customer.objects.create(
            tenant=self.tenant,
            first_name="Bob",
            last_name="Ruiz",
            email="bob@example.com",
            phone_number="5550002",
        )
        self.post(WalletTransaction.EARN, 100)
        self.post(WalletTransaction.REDEEM, 30)
        apply_transaction(self.tenant, self.bob, WalletTransaction.EARN, 200, self.manager_actor)
        apply_transaction(self.tenant, self.bob, WalletTransaction.ADJUST, -10, self.manager_actor)

        # noise in another tenant
        self.other = Tenant.objects.create(name="Other", code="other")
        stranger = Customer.objects.create(tenant=self.other, first_name="Zed")
        apply_transaction(self.other, stranger, WalletTransaction.EARN, 999, Actor.system(self.other.pk))


class WalletReadTests(ReportTestBase):

    def test_list_wallets_sorted_by_total_points(self):
        rows = list_wallets(self.tenant)
        self.assertEqual([r["customer"]["full_name"] for r in rows], ["Bob Ruiz", "Ana Lopez"])
        self.assertEqual(rows[0]["available_points"], 190)
        self.assertEqual(rows[0]["available_value"], Decimal("95.00"))
        self.assertEqual(rows[1]["lifetime_points"], 100)

    def test_list_wallets_search(self):
        self.assertEqual(len(list_wallets(self.tenant, q="ana@")), 1)
        self.assertEqual(len(list_wallets(self.tenant, q="555000")), 2)
        self.assertEqual(list_wallets(self.tenant, q="nobody"), [])

    def test_recent_transactions_newest_first(self):
        rows = recent_transactions(self.tenant, limit=3)
        self.assertEqual(len(rows), 3)
        ids = [r["id"] for r in rows]
        self.assertEqual(ids, sorted(ids, reverse=True))
        self.assertEqual(rows[0]["transaction_type"], WalletTransaction.ADJUST)
        self.assertEqual(rows[0]["created_by"], "manager")

    def test_recent_transactions_filter_by_type(self):
        rows = recent_transactions(self.tenant, transaction_type=WalletTransaction.EARN)
        self.assertEqual({r["points"] for r in rows}, {100, 200})

    def test_recent_transactions_limit_is_clamped(self):
        self.assertEqual(len(recent_transactions(self.tenant, limit=0)), 1)
        self.assertEqual(len(recent_transactions(self.tenant, limit=10_000)), 4)

    def test_wallet_detail(self):
        data = wallet_detail(self.tenant, self.customer.id)
        self.assertEqual(data["available_points"], 70)
        self.assertEqual([t["points"] for t in data["transactions"]], [-30, 100])

    def test_wallet_detail_without_wallet(self):
        carla = Customer.objects.create(tenant=self.tenant, first_name="Carla")
        self.assertIsNone(wallet_detail(self.tenant, carla.id))
        # tenant scoping: another tenant's customer is invisible
        self.assertIsNone(wallet_detail(self.other, self.customer.id))

    def test_wallet_history_replay_order(self):
        wallet = Wallet.objects.get(customer=self.bob)
        self.assertEqual([t.points for t in wallet_history(wallet)], [200, -10])

    def test_reads_are_idempotent(self):
        first = (list_wallets(self.tenant), recent_transactions(self.tenant), wallet_report(self.tenant))
        second = (list_wallets(self.tenant), recent_transactions(self.tenant), wallet_report(self.tenant))
        self.assertEqual(first, second)
        self.assertEqual(WalletTransaction.objects.count(), 5)


class WalletReportTests(ReportTestBase):

    def test_wallet_report_totals(self):
        rows = wallet_report(self.tenant)
        self.assertEqual([r["customer_id"] for r in rows], [self.bob.id, self.customer.id])

        ana = rows[1]
        self.assertEqual(ana["balance"], 70)
        self.assertEqual(ana["total_earned"], 100)
        self.assertEqual(ana["total_redeemed"], 30)
        self.assertEqual(ana["total_expired"], 0)
        self.assertEqual(ana["transaction_count"], 2)

        bob = rows[0]
        self.assertEqual(bob["total_earned"], 200)
        self.assertEqual(bob["total_redeemed"], 0)
        self.assertEqual(bob["transaction_count"], 2)

    def test_wallet_report_counts_expired(self):
        self.program.expiration_days = 1
        self.program.save()
        carla = Customer.objects.create(tenant=self.tenant, first_name="Carla")
        apply_transaction(
            self.tenant, carla, WalletTransaction.EARN, 40, self.manager_actor,
            now=timezone.now() - timedelta(days=3),
        )
        expire_lapsed_points(tenant=self.tenant)

        row = next(r for r in wallet_report(self.tenant) if r["customer_id"] == carla.id)
        self.assertEqual(row["total_expired"], 40)
        self.assertEqual(row["balance"], 0)

    def test_wallet_report_all_tenants(self):
        rows = wallet_report()
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[0]["balance"], 999)
        self.assertEqual(rows[0]["tenant_id"], self.other.id)

    def test_program_summary(self):
        summary = program_summary(self.tenant)
        self.assertEqual(summary["program_id"], self.program.id)
        self.assertEqual(summary["wallet_count"], 2)
        self.assertEqual(summary["outstanding_points"], 260)
        self.assertEqual(summary["outstanding_value"], Decimal("130.00"))
        self.assertEqual(summary["lifetime_points"], 300)

    def test_program_summary_without_program(self):
        summary = program_summary(self.other)
        self.assertIsNone(summary["program_id"])
        self.assertEqual(summary["outstanding_points"], 999)
        self.assertEqual(summary["outstanding_value"], Decimal("0.00"))


class LoyaltyCheckCommandTests(ReportTestBase):

    def test_replay_matches(self):
        for wallet in Wallet.objects.all():
            result = replay_wallet(wallet)
            self.assertTrue(result["ok"], result)

    def test_clean_ledger(self):
        out = StringIO()
        call_command("loyalty_check", stdout=out)
        self.assertIn("All wallets match their ledger.", out.getvalue())
        self.assertIn("Mismatches: 0", out.getvalue())

    def test_tenant_filter_and_verbose(self):
        out = StringIO()
        call_command("loyalty_check", tenant=self.tenant.id, verbose=True, stdout=out)
        output = out.getvalue()
        self.assertIn("Checking 2 wallets", output)
        self.assertIn("earn", output)

    def test_unknown_tenant(self):
        with self.assertRaises(CommandError):
            call_command("loyalty_check", tenant=999999, stdout=StringIO())

    def test_snapshot_drift_detected(self):
        # bypass the service layer to simulate a corrupted snapshot
        Wallet.objects.filter(customer=self.customer).update(available_points=500)
        wallet = Wallet.objects.get(customer=self.customer)
        result = replay_wallet(wallet)
        self.assertFalse(result["ok"])
        self.assertEqual(result["expected_available"], 70)
        self.assertEqual(result["actual_available"], 500)

        out = StringIO()
        with self.assertRaises(CommandError):
            call_command("loyalty_check", stdout=out)
        self.assertIn("MISMATCHES FOUND", out.getvalue())

    def test_broken_balance_chain_detected(self):
        WalletTransaction.objects.filter(customer=self.bob, points=-10).update(balance_after=7)
        result = replay_wallet(Wallet.objects.get(customer=self.bob))
        self.assertFalse(result["ok"])
        self.assertEqual(result["broken_rows"][0]["expected"], 190)
