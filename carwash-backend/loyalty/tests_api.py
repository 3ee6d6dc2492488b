"""
Tests for the loyalty HTTP endpoints.
"""
from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from common.actors import Actor
from customers.models import Customer
from loyalty.models import LoyaltyProgram, Wallet, WalletTransaction
from loyalty.services import apply_transaction
from loyalty.tests import LoyaltyTestBase
from loyalty.views import (
    LoyaltyProgramDetailView,
    LoyaltyProgramView,
    ProgramSummaryView,
    WalletDetailView,
    WalletListView,
    WalletReportView,
    WalletTransactionView,
)
from tenants.models import Tenant


PROGRAM_PAYLOAD = {
    "name": "Wash Points",
    "description": "",
    "points_per_currency": "1.5",
    "currency_per_point": "0.10",
    "min_points_redeem": 50,
    "expiration_days": 180,
}


class LoyaltyAPITestBase(LoyaltyTestBase):

    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()

    def _request(self, method, path, data=None, user=None):
        """Helper to create authenticated API request"""
        user = user or self.manager
        if method == "GET":
            request = self.factory.get(path, data or {})
        elif method == "POST":
            request = self.factory.post(path, data or {}, format="json")
        elif method == "PUT":
            request = self.factory.put(path, data or {}, format="json")
        elif method == "PATCH":
            request = self.factory.patch(path, data or {}, format="json")
        else:
            raise ValueError(f"Unsupported method: {method}")
        force_authenticate(request, user=user)
        request.tenant = self.tenant
        return request

    def _post_tx(self, payload, user=None):
        request = self._request("POST", "/api/v1/loyalty/transactions", payload, user=user)
        return WalletTransactionView.as_view()(request)


class ProgramEndpointTests(LoyaltyAPITestBase):

    def test_get_without_program_is_404(self):
        response = LoyaltyProgramView.as_view()(self._request("GET", "/api/v1/loyalty/program"))
        self.assertEqual(response.status_code, 404)

    def test_admin_creates_program(self):
        request = self._request("POST", "/api/v1/loyalty/program", PROGRAM_PAYLOAD, user=self.admin)
        response = LoyaltyProgramView.as_view()(request)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["name"], "Wash Points")
        self.assertEqual(response.data["points_per_currency"], "1.5000")
        self.assertTrue(response.data["is_active"])

        response = LoyaltyProgramView.as_view()(self._request("GET", "/api/v1/loyalty/program"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["min_points_redeem"], 50)

    def test_manager_cannot_create_program(self):
        request = self._request("POST", "/api/v1/loyalty/program", PROGRAM_PAYLOAD)
        response = LoyaltyProgramView.as_view()(request)
        self.assertEqual(response.status_code, 403)

    def test_invalid_program_is_400_with_field_errors(self):
        payload = dict(PROGRAM_PAYLOAD, points_per_currency="0", name="")
        request = self._request("POST", "/api/v1/loyalty/program", payload, user=self.admin)
        response = LoyaltyProgramView.as_view()(request)
        self.assertEqual(response.status_code, 400)
        self.assertIn("points_per_currency", response.data)
        self.assertIn("name", response.data)

    def test_second_active_program_is_400(self):
        self.make_program()
        request = self._request("POST", "/api/v1/loyalty/program", PROGRAM_PAYLOAD, user=self.admin)
        response = LoyaltyProgramView.as_view()(request)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(LoyaltyProgram.objects.count(), 1)

    def test_put_replaces_program(self):
        program = self.make_program()
        payload = dict(PROGRAM_PAYLOAD, name="Renamed")
        request = self._request("PUT", f"/api/v1/loyalty/program/{program.id}", payload, user=self.admin)
        response = LoyaltyProgramDetailView.as_view()(request, pk=program.id)
        self.assertEqual(response.status_code, 200)
        program.refresh_from_db()
        self.assertEqual(program.name, "Renamed")
        self.assertEqual(program.expiration_days, 180)

    def test_patch_keeps_missing_fields(self):
        program = self.make_program(min_points_redeem=25, expiration_days=90)
        request = self._request(
            "PATCH", f"/api/v1/loyalty/program/{program.id}", {"name": "Gold"}, user=self.admin
        )
        response = LoyaltyProgramDetailView.as_view()(request, pk=program.id)
        self.assertEqual(response.status_code, 200)
        program.refresh_from_db()
        self.assertEqual(program.name, "Gold")
        self.assertEqual(program.min_points_redeem, 25)
        self.assertEqual(program.expiration_days, 90)

    def test_program_of_other_tenant_is_404(self):
        other = Tenant.objects.create(name="Other", code="other")
        program = self.make_program(tenant=other)
        request = self._request("PATCH", f"/api/v1/loyalty/program/{program.id}", {"name": "X"}, user=self.admin)
        response = LoyaltyProgramDetailView.as_view()(request, pk=program.id)
        self.assertEqual(response.status_code, 404)


class TransactionEndpointTests(LoyaltyAPITestBase):

    def setUp(self):
        super().setUp()
        self.make_program(min_points_redeem=0)

    def test_earn(self):
        response = self._post_tx({
            "customer_id": self.customer.id,
            "transaction_type": "earn",
            "points": 150,
            "description": "Full wash",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["wallet"]["available_points"], 150)
        self.assertEqual(response.data["transaction"]["balance_after"], 150)
        self.assertEqual(response.data["transaction"]["description"], "Full wash")

    def test_over_redemption_is_409(self):
        self._post_tx({"customer_id": self.customer.id, "transaction_type": "earn", "points": 20})
        response = self._post_tx({"customer_id": self.customer.id, "transaction_type": "redeem", "points": 50})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["available"], 20)
        self.assertEqual(response.data["requested"], 50)
        self.assertEqual(Wallet.objects.get().available_points, 20)

    def test_operator_is_403(self):
        response = self._post_tx(
            {"customer_id": self.customer.id, "transaction_type": "earn", "points": 10},
            user=self.operator,
        )
        self.assertEqual(response.status_code, 403)
        self.assertFalse(WalletTransaction.objects.exists())

    def test_bad_payload_is_400(self):
        for payload in (
            {"customer_id": self.customer.id, "transaction_type": "earn", "points": 0},
            {"customer_id": self.customer.id, "transaction_type": "expire", "points": 5},
            {"customer_id": self.customer.id, "transaction_type": "earn"},
            {"customer_id": 999999, "transaction_type": "earn", "points": 5},
            {"customer_id": self.customer.id, "transaction_type": "adjust", "points": 5, "direction": "up"},
        ):
            response = self._post_tx(payload)
            self.assertEqual(response.status_code, 400, payload)
        self.assertFalse(WalletTransaction.objects.exists())

    def test_adjust_with_direction(self):
        response = self._post_tx({
            "customer_id": self.customer.id,
            "transaction_type": "adjust",
            "points": 30,
            "direction": "increase",
        })
        self.assertEqual(response.status_code, 201)
        response = self._post_tx({
            "customer_id": self.customer.id,
            "transaction_type": "adjust",
            "points": 10,
            "direction": "decrease",
        })
        self.assertEqual(response.data["transaction"]["points"], -10)
        self.assertEqual(response.data["wallet"]["available_points"], 20)

    def test_database_error_is_503(self):
        with patch("loyalty.views.apply_transaction", side_effect=DatabaseError("connection lost")):
            with self.assertLogs("loyalty.views", level="ERROR"):
                response = self._post_tx({"customer_id": self.customer.id, "transaction_type": "earn", "points": 5})
        self.assertEqual(response.status_code, 503)
        self.assertNotIn("connection lost", str(response.data))

    def test_recent_transactions(self):
        for points in (10, 20, 30):
            self._post_tx({"customer_id": self.customer.id, "transaction_type": "earn", "points": points})

        request = self._request("GET", "/api/v1/loyalty/transactions", {"limit": 2})
        response = WalletTransactionView.as_view()(request)
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["points"] for row in response.data], [30, 20])

    def test_recent_transactions_bad_params(self):
        for params in ({"limit": "many"}, {"type": "bonus"}, {"date_from": "not-a-date"}):
            request = self._request("GET", "/api/v1/loyalty/transactions", params)
            response = WalletTransactionView.as_view()(request)
            self.assertEqual(response.status_code, 400, params)

    def test_recent_transactions_same_day_range(self):
        self._post_tx({"customer_id": self.customer.id, "transaction_type": "earn", "points": 7})

        today = timezone.localdate().isoformat()
        request = self._request("GET", "/api/v1/loyalty/transactions", {"date_from": today, "date_to": today})
        response = WalletTransactionView.as_view()(request)
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["points"] for row in response.data], [7])

    def test_recent_transactions_date_range(self):
        now = timezone.now()
        self.post(WalletTransaction.EARN, 5, now=now - timedelta(days=10))
        self.post(WalletTransaction.EARN, 7, now=now - timedelta(days=1))

        since = (now - timedelta(days=3)).date().isoformat()
        request = self._request("GET", "/api/v1/loyalty/transactions", {"date_from": since})
        response = WalletTransactionView.as_view()(request)
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["points"] for row in response.data], [7])


class WalletEndpointTests(LoyaltyAPITestBase):

    def setUp(self):
        super().setUp()
        self.make_program()
        self.post(WalletTransaction.EARN, 80)

    def test_wallet_list_and_search(self):
        response = WalletListView.as_view()(self._request("GET", "/api/v1/loyalty/wallets"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)

        response = WalletListView.as_view()(self._request("GET", "/api/v1/loyalty/wallets", {"q": "zzz"}))
        self.assertEqual(response.data, [])

    def test_wallet_detail(self):
        request = self._request("GET", f"/api/v1/loyalty/wallets/{self.customer.id}")
        response = WalletDetailView.as_view()(request, customer_id=self.customer.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["available_points"], 80)
        self.assertEqual(len(response.data["transactions"]), 1)

    def test_wallet_detail_missing_is_404(self):
        request = self._request("GET", "/api/v1/loyalty/wallets/999999")
        response = WalletDetailView.as_view()(request, customer_id=999999)
        self.assertEqual(response.status_code, 404)

    def test_reports(self):
        response = WalletReportView.as_view()(self._request("GET", "/api/v1/loyalty/reports/wallets"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data[0]["balance"], 80)

        response = ProgramSummaryView.as_view()(self._request("GET", "/api/v1/loyalty/reports/summary"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["outstanding_points"], 80)

    def test_all_tenants_report_needs_superuser(self):
        other = Tenant.objects.create(name="Other", code="other")
        stranger = Customer.objects.create(tenant=other, first_name="Zed")
        apply_transaction(other, stranger, WalletTransaction.EARN, 5, Actor.system(other.pk))

        response = WalletReportView.as_view()(
            self._request("GET", "/api/v1/loyalty/reports/wallets", {"all": "1"})
        )
        self.assertEqual(len(response.data), 1)

        root = get_user_model().objects.create_superuser(username="root", password="pass")
        response = WalletReportView.as_view()(
            self._request("GET", "/api/v1/loyalty/reports/wallets", {"all": "1"}, user=root)
        )
        self.assertEqual(len(response.data), 2)

    def test_outsider_is_403(self):
        outsider = get_user_model().objects.create_user(username="outsider", password="pass")
        response = WalletListView.as_view()(self._request("GET", "/api/v1/loyalty/wallets", user=outsider))
        self.assertEqual(response.status_code, 403)
