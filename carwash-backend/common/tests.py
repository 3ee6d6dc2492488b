"""
Tests for tenant context: JWT middleware, subscription gate, token claims and Actor.
"""
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework_simplejwt.tokens import RefreshToken

from common.actors import Actor
from common.roles import TenantRole
from tenants.models import SubscriptionStatus, Tenant, TenantUser


def _access_for(user, tenant=None):
    refresh = RefreshToken.for_user(user)
    if tenant is not None:
        refresh["tenant_id"] = tenant.id
        refresh["tenant_code"] = tenant.code
    return str(refresh.access_token)


class TenantContextTestBase(TestCase):

    def setUp(self):
        User = get_user_model()
        self.tenant = Tenant.objects.create(
            name="Splash Carwash",
            code="splash",
            subscription_status=SubscriptionStatus.ACTIVE,
        )
        self.user = User.objects.create_user(username="manager", password="test-pass")
        TenantUser.objects.create(tenant=self.tenant, user=self.user, role=TenantRole.MANAGER)

    def get(self, path, token=None, **headers):
        if token:
            headers["HTTP_AUTHORIZATION"] = f"Bearer {token}"
        return self.client.get(path, **headers)


class TenantContextMiddlewareTests(TenantContextTestBase):

    WALLETS = "/api/v1/loyalty/wallets"

    def test_missing_token_is_401(self):
        self.assertEqual(self.get(self.WALLETS).status_code, 401)

    def test_garbage_token_is_401(self):
        self.assertEqual(self.get(self.WALLETS, token="not-a-jwt").status_code, 401)

    def test_tenant_from_claims(self):
        response = self.get(self.WALLETS, token=_access_for(self.user, self.tenant))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])

    def test_tenant_from_header(self):
        response = self.get(self.WALLETS, token=_access_for(self.user), HTTP_X_TENANT_CODE="splash")
        self.assertEqual(response.status_code, 200)

    def test_unknown_tenant_is_403(self):
        response = self.get(self.WALLETS, token=_access_for(self.user), HTTP_X_TENANT_CODE="nope")
        self.assertEqual(response.status_code, 403)

    def test_non_member_is_403(self):
        other = Tenant.objects.create(name="Other", code="other")
        response = self.get(self.WALLETS, token=_access_for(self.user, other))
        self.assertEqual(response.status_code, 403)

    def test_lapsed_subscription_is_402(self):
        self.tenant.subscription_status = SubscriptionStatus.PAST_DUE
        self.tenant.save()
        response = self.get(self.WALLETS, token=_access_for(self.user, self.tenant))
        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()["subscription_status"], "past_due")

    def test_expired_trial_is_402(self):
        self.tenant.subscription_status = SubscriptionStatus.TRIALING
        self.tenant.subscription_end_date = timezone.now() - timedelta(days=1)
        self.tenant.save()
        response = self.get(self.WALLETS, token=_access_for(self.user, self.tenant))
        self.assertEqual(response.status_code, 402)

    def test_superuser_bypasses_subscription_gate(self):
        root = get_user_model().objects.create_superuser(username="root", password="test-pass")
        self.tenant.subscription_status = SubscriptionStatus.CANCELED
        self.tenant.save()
        response = self.get(self.WALLETS, token=_access_for(root, self.tenant))
        self.assertEqual(response.status_code, 200)

    def test_auth_paths_are_whitelisted(self):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": "manager", "password": "wrong"},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 401)


class TokenClaimsTests(TenantContextTestBase):

    def _obtain(self, **payload):
        return self.client.post("/api/v1/auth/token/", payload, content_type="application/json")

    def test_token_carries_tenant_and_role(self):
        response = self._obtain(username="manager", password="test-pass", tenant_code="splash")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["role"], TenantRole.MANAGER)
        self.assertEqual(data["tenant"]["code"], "splash")
        self.assertTrue(data["tenant"]["has_access"])

        wallets = self.get("/api/v1/loyalty/wallets", token=data["access"])
        self.assertEqual(wallets.status_code, 200)

    def test_default_membership_used_without_tenant_code(self):
        response = self._obtain(username="manager", password="test-pass")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tenant"]["id"], self.tenant.id)

    def test_non_member_tenant_code_refused(self):
        Tenant.objects.create(name="Other", code="other")
        response = self._obtain(username="manager", password="test-pass", tenant_code="other")
        self.assertEqual(response.status_code, 401)

    def test_superuser_gets_root_role(self):
        get_user_model().objects.create_superuser(username="root", password="test-pass")
        response = self._obtain(username="root", password="test-pass", tenant_code="splash")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["role"], "root")


class ActorTests(TenantContextTestBase):

    def test_for_user_resolves_role(self):
        actor = Actor.for_user(self.user, self.tenant)
        self.assertEqual(actor.role, TenantRole.MANAGER)
        self.assertEqual(actor.tenant_id, self.tenant.id)
        self.assertTrue(actor.acts_for(self.tenant))
        self.assertTrue(actor.has_role({TenantRole.ADMIN, TenantRole.MANAGER}))
        self.assertFalse(actor.has_role({TenantRole.ADMIN}))

    def test_other_tenant(self):
        other = Tenant.objects.create(name="Other", code="other")
        actor = Actor.for_user(self.user, other)
        self.assertIsNone(actor.role)
        self.assertFalse(Actor.for_user(self.user, self.tenant).acts_for(other))

    def test_system_actor(self):
        actor = Actor.system()
        self.assertIsNone(actor.user_id)
        self.assertTrue(actor.acts_for(self.tenant))
        self.assertTrue(actor.has_role({TenantRole.ADMIN}))


class TenantAccessTests(TestCase):

    def test_has_access(self):
        tenant = Tenant(name="T", code="t", subscription_status=SubscriptionStatus.ACTIVE)
        self.assertTrue(tenant.has_access)

        tenant.subscription_end_date = timezone.now() + timedelta(days=5)
        self.assertTrue(tenant.has_access)

        tenant.subscription_end_date = timezone.now() - timedelta(seconds=1)
        self.assertFalse(tenant.has_access)

        tenant.subscription_end_date = None
        tenant.is_active = False
        self.assertFalse(tenant.has_access)

        tenant.is_active = True
        for status in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED):
            tenant.subscription_status = status
            self.assertFalse(tenant.has_access, status)
