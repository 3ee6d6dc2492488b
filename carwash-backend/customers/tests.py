"""
Tests for tenant-scoped customer endpoints.
"""
from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from common.roles import TenantRole
from customers.models import Customer
from customers.views import CustomerDetailView, CustomerListCreateView
from tenants.models import Tenant, TenantUser


class CustomerAPITests(TestCase):

    def setUp(self):
        self.factory = APIRequestFactory()
        self.user = get_user_model().objects.create_user(username="desk", password="pass")
        self.tenant = Tenant.objects.create(name="Splash Carwash", code="splash")
        TenantUser.objects.create(tenant=self.tenant, user=self.user, role=TenantRole.OPERATOR)

        self.other = Tenant.objects.create(name="Other", code="other")
        Customer.objects.create(tenant=self.other, first_name="Zed", email="zed@example.com")

    def _request(self, method, path, data=None):
        if method == "GET":
            request = self.factory.get(path, data or {})
        elif method == "POST":
            request = self.factory.post(path, data or {}, format="json")
        elif method == "PATCH":
            request = self.factory.patch(path, data or {}, format="json")
        else:
            raise ValueError(f"Unsupported method: {method}")
        force_authenticate(request, user=self.user)
        request.tenant = self.tenant
        return request

    def test_create_sets_tenant_and_creator(self):
        request = self._request("POST", "/api/v1/customers/", {
            "first_name": "Ana",
            "last_name": "Lopez",
            "email": "ana@example.com",
            "vehicle_info": [{"plate": "ABC123", "model": "Civic"}],
        })
        response = CustomerListCreateView.as_view()(request)
        self.assertEqual(response.status_code, 201)

        customer = Customer.objects.get(email="ana@example.com")
        self.assertEqual(customer.tenant, self.tenant)
        self.assertEqual(customer.created_by, self.user)
        self.assertEqual(response.data["full_name"], "Ana Lopez")

    def test_vehicle_info_must_be_list_of_objects(self):
        request = self._request("POST", "/api/v1/customers/", {
            "first_name": "Ana",
            "vehicle_info": "ABC123",
        })
        response = CustomerListCreateView.as_view()(request)
        self.assertEqual(response.status_code, 400)
        self.assertIn("vehicle_info", response.data)

    def test_duplicate_email_within_tenant_rejected(self):
        Customer.objects.create(tenant=self.tenant, first_name="Ana", email="ana@example.com")
        request = self._request("POST", "/api/v1/customers/", {"first_name": "Ana 2", "email": "ana@example.com"})
        response = CustomerListCreateView.as_view()(request)
        self.assertEqual(response.status_code, 400)

    def test_list_is_tenant_scoped_and_searchable(self):
        Customer.objects.create(tenant=self.tenant, first_name="Ana", phone_number="5550001")
        Customer.objects.create(tenant=self.tenant, first_name="Bob", is_active=False)

        response = CustomerListCreateView.as_view()(self._request("GET", "/api/v1/customers/"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual([c["first_name"] for c in response.data], ["Ana", "Bob"])

        response = CustomerListCreateView.as_view()(self._request("GET", "/api/v1/customers/", {"q": "5550"}))
        self.assertEqual([c["first_name"] for c in response.data], ["Ana"])

        response = CustomerListCreateView.as_view()(
            self._request("GET", "/api/v1/customers/", {"is_active": "false"})
        )
        self.assertEqual([c["first_name"] for c in response.data], ["Bob"])

    def test_detail_of_other_tenant_is_404(self):
        zed = Customer.objects.get(first_name="Zed")
        response = CustomerDetailView.as_view()(self._request("GET", f"/api/v1/customers/{zed.id}"), pk=zed.id)
        self.assertEqual(response.status_code, 404)

    def test_patch_customer(self):
        ana = Customer.objects.create(tenant=self.tenant, first_name="Ana")
        request = self._request("PATCH", f"/api/v1/customers/{ana.id}", {"notes": "Prefers wax"})
        response = CustomerDetailView.as_view()(request, pk=ana.id)
        self.assertEqual(response.status_code, 200)
        ana.refresh_from_db()
        self.assertEqual(ana.notes, "Prefers wax")

    def test_non_member_is_403(self):
        stranger = get_user_model().objects.create_user(username="stranger", password="pass")
        request = self.factory.get("/api/v1/customers/")
        force_authenticate(request, user=stranger)
        request.tenant = self.tenant
        response = CustomerListCreateView.as_view()(request)
        self.assertEqual(response.status_code, 403)
