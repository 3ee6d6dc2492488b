"""
Tests for the lapsed-points expiration job.
"""
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.utils import timezone

from loyalty.models import Wallet, WalletTransaction
from loyalty.reports import replay_wallet
from loyalty.services import apply_transaction, expire_lapsed_points, lapsed_points
from loyalty.tasks import expire_lapsed_points_task
from loyalty.tests import LoyaltyTestBase
from customers.models import Customer
from tenants.models import Tenant


class ExpirationTests(LoyaltyTestBase):

    def setUp(self):
        super().setUp()
        self.program = self.make_program(expiration_days=30)
        self.t0 = timezone.now() - timedelta(days=100)

    def at(self, days):
        return self.t0 + timedelta(days=days)

    def test_nothing_lapses_before_expiry(self):
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        summary = expire_lapsed_points(now=self.at(29))

        self.assertEqual(summary["points_expired"], 0)
        self.assertEqual(Wallet.objects.get().available_points, 100)

    def test_unspent_points_expire(self):
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        self.post(WalletTransaction.REDEEM, 30, now=self.at(1))

        summary = expire_lapsed_points(now=self.at(31))

        self.assertEqual(summary, {"wallets_checked": 1, "wallets_expired": 1, "points_expired": 70})
        wallet = Wallet.objects.get()
        self.assertEqual(wallet.available_points, 0)
        self.assertEqual(wallet.lifetime_points, 100)
        expire = wallet.transactions.get(transaction_type=WalletTransaction.EXPIRE)
        self.assertEqual(expire.points, -70)
        self.assertEqual(expire.balance_after, 0)
        self.assertIsNone(expire.created_by_id)
        self.assertTrue(replay_wallet(wallet)["ok"])

    def test_second_run_is_noop(self):
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        expire_lapsed_points(now=self.at(31))
        summary = expire_lapsed_points(now=self.at(31))

        self.assertEqual(summary["points_expired"], 0)
        self.assertEqual(WalletTransaction.objects.filter(transaction_type=WalletTransaction.EXPIRE).count(), 1)

    def test_debits_consume_oldest_points_first(self):
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        self.post(WalletTransaction.EARN, 50, now=self.at(20))
        self.post(WalletTransaction.REDEEM, 120, now=self.at(25))

        # the first earn was fully covered by the redemption
        wallet = Wallet.objects.get()
        self.assertEqual(lapsed_points(wallet, self.at(31)), 0)
        expire_lapsed_points(now=self.at(31))
        self.assertEqual(Wallet.objects.get().available_points, 30)

        expire_lapsed_points(now=self.at(51))
        wallet = Wallet.objects.get()
        self.assertEqual(wallet.available_points, 0)
        self.assertEqual(wallet.transactions.filter(transaction_type=WalletTransaction.EXPIRE).count(), 1)

    def test_negative_adjust_counts_as_debit(self):
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        self.post(WalletTransaction.ADJUST, -60, now=self.at(2))
        expire_lapsed_points(now=self.at(40))
        expire = WalletTransaction.objects.get(transaction_type=WalletTransaction.EXPIRE)
        self.assertEqual(expire.points, -40)

    def test_earlier_debits_do_not_cover_later_earnings(self):
        self.post(WalletTransaction.ADJUST, 50, now=self.at(0))
        self.post(WalletTransaction.ADJUST, -50, now=self.at(1))
        self.post(WalletTransaction.EARN, 100, now=self.at(2))

        summary = expire_lapsed_points(now=self.at(40))

        self.assertEqual(summary["points_expired"], 100)
        wallet = Wallet.objects.get()
        self.assertEqual(wallet.available_points, 0)
        self.assertTrue(replay_wallet(wallet)["ok"])

    def test_debits_spend_soonest_expiring_points(self):
        self.post(WalletTransaction.ADJUST, 40, now=self.at(0))
        self.post(WalletTransaction.EARN, 100, now=self.at(1))
        self.post(WalletTransaction.REDEEM, 60, now=self.at(2))

        # the redemption drew on the expiring earn, the bonus adjustment stays
        expire_lapsed_points(now=self.at(40))
        expire = WalletTransaction.objects.get(transaction_type=WalletTransaction.EXPIRE)
        self.assertEqual(expire.points, -40)
        self.assertEqual(Wallet.objects.get().available_points, 40)

    def test_wallet_with_later_rows_is_skipped(self):
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        self.post(WalletTransaction.EARN, 5, now=self.at(50))

        summary = expire_lapsed_points(now=self.at(40))

        self.assertEqual(summary["points_expired"], 0)
        self.assertEqual(Wallet.objects.get().available_points, 105)

    def test_points_without_expiry_are_kept(self):
        self.program.expiration_days = None
        self.program.save()
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        self.program.expiration_days = 30
        self.program.save()
        self.post(WalletTransaction.EARN, 20, now=self.at(1))

        expire_lapsed_points(now=self.at(60))
        self.assertEqual(Wallet.objects.get().available_points, 100)

    def test_scoped_to_tenant(self):
        other = Tenant.objects.create(name="Other", code="other")
        self.post(WalletTransaction.EARN, 100, now=self.at(0))

        summary = expire_lapsed_points(tenant=other, now=self.at(60))
        self.assertEqual(summary["wallets_checked"], 0)
        self.assertEqual(Wallet.objects.get().available_points, 100)

    def test_many_wallets(self):
        second = Customer.objects.create(tenant=self.tenant, first_name="Beto", email="beto@example.com")
        self.post(WalletTransaction.EARN, 100, now=self.at(0))
        self.post(WalletTransaction.EARN, 10, now=self.at(0))
        apply_transaction(self.tenant, second, WalletTransaction.EARN, 5, self.manager_actor, now=self.at(0))

        summary = expire_lapsed_points(now=self.at(31))
        self.assertEqual(summary, {"wallets_checked": 2, "wallets_expired": 2, "points_expired": 115})


class ExpirationEntryPointTests(LoyaltyTestBase):

    def setUp(self):
        super().setUp()
        self.make_program(expiration_days=1)
        self.post(WalletTransaction.EARN, 10, now=timezone.now() - timedelta(days=5))

    def test_management_command(self):
        out = StringIO()
        call_command("expire_loyalty_points", stdout=out)
        self.assertIn("Points expired: 10", out.getvalue())
        self.assertEqual(Wallet.objects.get().available_points, 0)

    def test_management_command_unknown_tenant(self):
        with self.assertRaises(CommandError):
            call_command("expire_loyalty_points", tenant=999999, stdout=StringIO())

    def test_celery_task_runs_eagerly(self):
        result = expire_lapsed_points_task.apply(kwargs={"tenant_id": self.tenant.id}).get()
        self.assertEqual(result["points_expired"], 10)

    def test_celery_task_unknown_tenant(self):
        self.assertIsNone(expire_lapsed_points_task.apply(kwargs={"tenant_id": 999999}).get())

    def test_celery_task_retries_on_database_error(self):
        with patch("loyalty.tasks.expire_lapsed_points", side_effect=DatabaseError("db down")) as sweep:
            with self.assertRaises(DatabaseError):
                expire_lapsed_points_task.apply().get()
        # first attempt plus max_retries
        self.assertEqual(sweep.call_count, 4)
