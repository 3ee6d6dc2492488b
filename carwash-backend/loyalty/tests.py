"""
Tests for the wallet ledger (loyalty.services.apply_transaction and friends).
"""
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone

from common.actors import Actor
from common.roles import TenantRole
from customers.models import Customer
from tenants.models import Tenant, TenantUser
from loyalty.models import AdjustDirection, LoyaltyProgram, Wallet, WalletTransaction
from loyalty.reports import replay_wallet
from loyalty.services import (
    InsufficientBalance,
    NotAuthorized,
    apply_transaction,
    points_for_amount,
    record_purchase_earning,
    redemption_value,
    signed_delta,
)


class LoyaltyTestBase(TestCase):
    """Tenant with an admin, a manager, an operator and one customer"""

    def setUp(self):
        User = get_user_model()
        self.tenant = Tenant.objects.create(name="Splash Carwash", code="splash")
        self.admin = User.objects.create_user(username="admin", password="pass")
        self.manager = User.objects.create_user(username="manager", password="pass")
        self.operator = User.objects.create_user(username="operator", password="pass")
        TenantUser.objects.create(tenant=self.tenant, user=self.admin, role=TenantRole.ADMIN)
        TenantUser.objects.create(tenant=self.tenant, user=self.manager, role=TenantRole.MANAGER)
        TenantUser.objects.create(tenant=self.tenant, user=self.operator, role=TenantRole.OPERATOR)

        self.customer = Customer.objects.create(
            tenant=self.tenant,
            first_name="Ana",
            last_name="Lopez",
            email="ana@example.com",
            phone_number="5550001",
        )
        self.admin_actor = Actor.for_user(self.admin, self.tenant)
        self.manager_actor = Actor.for_user(self.manager, self.tenant)
        self.operator_actor = Actor.for_user(self.operator, self.tenant)

    def make_program(self, **overrides):
        values = {
            "tenant": self.tenant,
            "name": "Points",
            "points_per_currency": Decimal("1.0000"),
            "currency_per_point": Decimal("0.1000"),
            "min_points_redeem": 0,
            "expiration_days": None,
        }
        values.update(overrides)
        return LoyaltyProgram.objects.create(**values)

    def post(self, transaction_type, points, actor=None, **kwargs):
        return apply_transaction(
            self.tenant,
            self.customer,
            transaction_type,
            points,
            actor or self.manager_actor,
            **kwargs,
        )


class ApplyTransactionTests(LoyaltyTestBase):

    def test_first_earn_opens_wallet(self):
        self.make_program()
        wallet, tx = self.post(WalletTransaction.EARN, 150, description="Full wash")

        self.assertEqual(Wallet.objects.filter(customer=self.customer).count(), 1)
        self.assertEqual(wallet.available_points, 150)
        self.assertEqual(wallet.total_points, 150)
        self.assertEqual(wallet.lifetime_points, 150)
        self.assertEqual(tx.points, 150)
        self.assertEqual(tx.balance_after, 150)
        self.assertEqual(tx.created_by_id, self.manager.id)
        self.assertEqual(tx.description, "Full wash")

    def test_earn_then_redeem(self):
        self.make_program()
        self.post(WalletTransaction.EARN, 100)
        wallet, tx = self.post(WalletTransaction.REDEEM, 40)

        self.assertEqual(tx.points, -40)
        self.assertEqual(tx.balance_after, 60)
        self.assertEqual(wallet.available_points, 60)
        self.assertEqual(wallet.total_points, 60)
        self.assertEqual(wallet.lifetime_points, 100)

    def test_over_redemption_is_refused_and_nothing_changes(self):
        self.make_program()
        self.post(WalletTransaction.EARN, 50)

        with self.assertRaises(InsufficientBalance) as ctx:
            self.post(WalletTransaction.REDEEM, 80)

        self.assertEqual(ctx.exception.available, 50)
        self.assertEqual(ctx.exception.requested, 80)
        wallet = Wallet.objects.get(customer=self.customer)
        self.assertEqual(wallet.available_points, 50)
        self.assertEqual(wallet.transactions.count(), 1)

    def test_redeem_without_wallet_is_insufficient(self):
        with self.assertRaises(InsufficientBalance):
            self.post(WalletTransaction.REDEEM, 1)

    def test_earn_works_without_program(self):
        wallet, tx = self.post(WalletTransaction.EARN, 10)
        self.assertIsNone(wallet.program_id)
        self.assertIsNone(tx.expires_at)

    def test_min_points_redeem_enforced(self):
        self.make_program(min_points_redeem=100)
        self.post(WalletTransaction.EARN, 80)

        with self.assertRaises(ValidationError):
            self.post(WalletTransaction.REDEEM, 10)

        self.post(WalletTransaction.EARN, 20)
        wallet, _ = self.post(WalletTransaction.REDEEM, 10)
        self.assertEqual(wallet.available_points, 90)

    def test_invalid_points_rejected(self):
        for bad in (0, -5, "abc", 1.5, None, True):
            with self.assertRaises(ValidationError, msg=repr(bad)):
                self.post(WalletTransaction.EARN, bad)
        self.assertFalse(Wallet.objects.exists())

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValidationError):
            self.post("bonus", 10)
        # expire rows are written only by the expiration job
        with self.assertRaises(ValidationError):
            self.post(WalletTransaction.EXPIRE, 10)

    def test_customer_of_other_tenant_rejected(self):
        other = Tenant.objects.create(name="Other", code="other")
        stranger = Customer.objects.create(tenant=other, first_name="Zed")
        with self.assertRaises(ValidationError):
            apply_transaction(self.tenant, stranger, WalletTransaction.EARN, 10, self.manager_actor)
        with self.assertRaises(ValidationError):
            apply_transaction(self.tenant, 999999, WalletTransaction.EARN, 10, self.manager_actor)

    def test_inactive_customer_rejected(self):
        self.customer.is_active = False
        self.customer.save()
        with self.assertRaises(ValidationError):
            self.post(WalletTransaction.EARN, 10)

    def test_customer_by_id(self):
        wallet, _ = apply_transaction(
            self.tenant, self.customer.id, WalletTransaction.EARN, 5, self.manager_actor
        )
        self.assertEqual(wallet.customer_id, self.customer.id)

    def test_earn_stamps_expiration(self):
        self.make_program(expiration_days=30)
        now = timezone.now()
        _, tx = self.post(WalletTransaction.EARN, 10, now=now)
        self.assertEqual(tx.expires_at, now + timedelta(days=30))
        self.assertEqual(tx.created_at, now)

        _, redeem = self.post(WalletTransaction.REDEEM, 5, now=now)
        self.assertIsNone(redeem.expires_at)

    def test_backdated_posting_refused(self):
        now = timezone.now()
        self.post(WalletTransaction.EARN, 10, now=now)
        with self.assertRaises(ValidationError):
            self.post(WalletTransaction.EARN, 5, now=now - timedelta(minutes=1))

        wallet = Wallet.objects.get()
        self.assertEqual(wallet.available_points, 10)
        self.assertEqual(wallet.transactions.count(), 1)
        self.assertTrue(replay_wallet(wallet)["ok"])

    def test_zero_expiration_days_means_no_expiry(self):
        self.make_program(expiration_days=0)
        _, tx = self.post(WalletTransaction.EARN, 10)
        self.assertIsNone(tx.expires_at)


class AdjustTests(LoyaltyTestBase):

    def test_signed_adjust_without_direction(self):
        self.post(WalletTransaction.EARN, 50)
        wallet, tx = self.post(WalletTransaction.ADJUST, -20)
        self.assertEqual(tx.points, -20)
        self.assertEqual(wallet.available_points, 30)

        wallet, tx = self.post(WalletTransaction.ADJUST, 5)
        self.assertEqual(wallet.available_points, 35)

    def test_adjust_with_direction(self):
        wallet, _ = self.post(WalletTransaction.ADJUST, 25, direction=AdjustDirection.INCREASE)
        self.assertEqual(wallet.available_points, 25)
        wallet, tx = self.post(WalletTransaction.ADJUST, 10, direction=AdjustDirection.DECREASE)
        self.assertEqual(tx.points, -10)
        self.assertEqual(wallet.available_points, 15)

    def test_adjust_does_not_touch_lifetime(self):
        self.post(WalletTransaction.EARN, 40)
        wallet, _ = self.post(WalletTransaction.ADJUST, 60)
        self.assertEqual(wallet.lifetime_points, 40)
        self.assertEqual(wallet.total_points, 100)

    def test_negative_adjust_below_zero_refused(self):
        self.post(WalletTransaction.EARN, 10)
        with self.assertRaises(InsufficientBalance):
            self.post(WalletTransaction.ADJUST, 11, direction=AdjustDirection.DECREASE)

    def test_adjust_ignores_min_points_redeem(self):
        self.make_program(min_points_redeem=100)
        self.post(WalletTransaction.EARN, 10)
        wallet, _ = self.post(WalletTransaction.ADJUST, -5)
        self.assertEqual(wallet.available_points, 5)

    def test_signed_delta_shapes(self):
        self.assertEqual(signed_delta("earn", 7), 7)
        self.assertEqual(signed_delta("redeem", 7), -7)
        self.assertEqual(signed_delta("adjust", -7), -7)
        self.assertEqual(signed_delta("adjust", 7, "decrease"), -7)
        self.assertEqual(signed_delta("adjust", "7", "increase"), 7)
        with self.assertRaises(ValidationError):
            signed_delta("adjust", 0)
        with self.assertRaises(ValidationError):
            signed_delta("adjust", -7, "increase")
        with self.assertRaises(ValidationError):
            signed_delta("adjust", 7, "sideways")
        with self.assertRaises(ValidationError):
            signed_delta("earn", 7, "increase")


class AuthorizationTests(LoyaltyTestBase):

    def test_operator_cannot_post(self):
        with self.assertRaises(NotAuthorized):
            self.post(WalletTransaction.EARN, 10, actor=self.operator_actor)
        self.assertFalse(WalletTransaction.objects.exists())

    def test_admin_and_manager_can_post(self):
        self.post(WalletTransaction.EARN, 10, actor=self.admin_actor)
        wallet, _ = self.post(WalletTransaction.EARN, 10, actor=self.manager_actor)
        self.assertEqual(wallet.available_points, 20)

    def test_superuser_acts_on_any_tenant(self):
        root = get_user_model().objects.create_superuser(username="root", password="pass")
        wallet, _ = self.post(WalletTransaction.EARN, 10, actor=Actor.for_user(root, self.tenant))
        self.assertEqual(wallet.available_points, 10)

    def test_member_of_other_tenant_refused(self):
        other = Tenant.objects.create(name="Other", code="other")
        outsider = get_user_model().objects.create_user(username="outsider", password="pass")
        TenantUser.objects.create(tenant=other, user=outsider, role=TenantRole.ADMIN)

        with self.assertRaises(NotAuthorized):
            self.post(WalletTransaction.EARN, 10, actor=Actor.for_user(outsider, other))
        with self.assertRaises(NotAuthorized):
            self.post(WalletTransaction.EARN, 10, actor=Actor.for_user(outsider, self.tenant))

    def test_inactive_membership_refused(self):
        TenantUser.objects.filter(user=self.manager).update(is_active=False)
        with self.assertRaises(NotAuthorized):
            self.post(WalletTransaction.EARN, 10, actor=Actor.for_user(self.manager, self.tenant))


class LedgerPropertyTests(LoyaltyTestBase):
    """Ledger properties that hold after any sequence of operations"""

    SEQUENCE = [
        ("earn", 100, None),
        ("redeem", 30, None),
        ("adjust", 15, "increase"),
        ("redeem", 500, None),      # refused
        ("adjust", -40, None),
        ("earn", 7, None),
        ("adjust", 1000, "decrease"),  # refused
        ("redeem", 52, None),
    ]

    def _run_sequence(self):
        lifetimes = []
        for tx_type, points, direction in self.SEQUENCE:
            try:
                wallet, _ = self.post(tx_type, points, direction=direction)
            except InsufficientBalance:
                wallet = Wallet.objects.get(customer=self.customer)
            lifetimes.append(wallet.lifetime_points)
            self.assertGreaterEqual(wallet.available_points, 0)
        return Wallet.objects.get(customer=self.customer), lifetimes

    def test_balance_never_negative_and_replays(self):
        wallet, _ = self._run_sequence()

        self.assertEqual(wallet.available_points, 0)
        self.assertEqual(wallet.transactions.count(), 6)
        self.assertEqual(
            sum(wallet.transactions.values_list("points", flat=True)),
            wallet.available_points,
        )
        self.assertTrue(replay_wallet(wallet)["ok"])

    def test_lifetime_is_monotonic(self):
        _, lifetimes = self._run_sequence()
        self.assertEqual(lifetimes, sorted(lifetimes))
        self.assertEqual(lifetimes[-1], 107)

    def test_balance_after_chain(self):
        wallet, _ = self._run_sequence()
        running = 0
        for tx in wallet.transactions.order_by("created_at", "id"):
            running += tx.points
            self.assertEqual(tx.balance_after, running)

    def test_transactions_are_append_only(self):
        _, tx = self.post(WalletTransaction.EARN, 10)
        tx.points = 1000
        with self.assertRaises(ValueError):
            tx.save()
        with self.assertRaises(ValueError):
            tx.delete()
        tx.refresh_from_db()
        self.assertEqual(tx.points, 10)


class PurchaseEarningTests(LoyaltyTestBase):

    def test_points_for_amount_rounds_down(self):
        program = self.make_program(points_per_currency=Decimal("0.5000"))
        self.assertEqual(points_for_amount(program, Decimal("99.99")), 49)
        self.assertEqual(points_for_amount(program, "10"), 5)
        self.assertEqual(points_for_amount(program, 0), 0)
        self.assertEqual(points_for_amount(program, "-3"), 0)

    def test_redemption_value(self):
        program = self.make_program(currency_per_point=Decimal("0.0500"))
        self.assertEqual(redemption_value(program, 150), Decimal("7.50"))
        self.assertEqual(redemption_value(None, 150), Decimal("0.00"))

    def test_record_purchase_earning(self):
        self.make_program(points_per_currency=Decimal("2.0000"))
        wallet, tx = record_purchase_earning(self.tenant, self.customer, "12.50", self.manager_actor)
        self.assertEqual(tx.points, 25)
        self.assertEqual(tx.transaction_type, WalletTransaction.EARN)
        self.assertEqual(wallet.available_points, 25)

    def test_record_purchase_earning_zero_points(self):
        self.make_program(points_per_currency=Decimal("0.0100"))
        self.assertIsNone(record_purchase_earning(self.tenant, self.customer, "50", self.manager_actor))
        self.assertFalse(Wallet.objects.exists())

    def test_record_purchase_earning_needs_program(self):
        with self.assertRaises(ValidationError):
            record_purchase_earning(self.tenant, self.customer, "50", self.manager_actor)
