"""
Tests for loyalty program configuration.
"""
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from common.actors import Actor
from loyalty.models import LoyaltyProgram
from loyalty.services import NotAuthorized, create_program, get_active_program, update_program
from loyalty.tests import LoyaltyTestBase
from tenants.models import Tenant


VALID = {
    "name": "Wash Points",
    "description": "  One point per peso  ",
    "points_per_currency": "1",
    "currency_per_point": "0.10",
    "min_points_redeem": 100,
    "expiration_days": 365,
}


class CreateProgramTests(LoyaltyTestBase):

    def test_admin_creates_program(self):
        program = create_program(self.tenant, self.admin_actor, **VALID)

        self.assertTrue(program.is_active)
        self.assertEqual(program.name, "Wash Points")
        self.assertEqual(program.description, "One point per peso")
        self.assertEqual(program.points_per_currency, Decimal("1.0000"))
        self.assertEqual(program.currency_per_point, Decimal("0.1000"))
        self.assertEqual(program.min_points_redeem, 100)
        self.assertEqual(program.expiration_days, 365)
        self.assertEqual(get_active_program(self.tenant), program)

    def test_manager_cannot_create(self):
        with self.assertRaises(NotAuthorized):
            create_program(self.tenant, self.manager_actor, **VALID)
        self.assertFalse(LoyaltyProgram.objects.exists())

    def test_second_active_program_refused(self):
        create_program(self.tenant, self.admin_actor, **VALID)
        with self.assertRaises(ValidationError):
            create_program(self.tenant, self.admin_actor, **dict(VALID, name="Another"))
        self.assertEqual(LoyaltyProgram.objects.filter(tenant=self.tenant).count(), 1)

    def test_inactive_program_can_coexist(self):
        create_program(self.tenant, self.admin_actor, **VALID)
        draft = create_program(self.tenant, self.admin_actor, **dict(VALID, name="Draft", is_active=False))
        self.assertFalse(draft.is_active)
        self.assertEqual(LoyaltyProgram.objects.filter(tenant=self.tenant).count(), 2)

    def test_form_encoded_booleans(self):
        draft = create_program(self.tenant, self.admin_actor, **dict(VALID, is_active="false"))
        self.assertFalse(draft.is_active)
        self.assertIsNone(get_active_program(self.tenant))

        update_program(draft, self.admin_actor, **dict(VALID, is_active="true"))
        draft.refresh_from_db()
        self.assertTrue(draft.is_active)

        with self.assertRaises(ValidationError):
            update_program(draft, self.admin_actor, **dict(VALID, is_active="maybe"))
        draft.refresh_from_db()
        self.assertTrue(draft.is_active)

    def test_other_tenants_are_independent(self):
        other = Tenant.objects.create(name="Other", code="other")
        create_program(self.tenant, self.admin_actor, **VALID)
        root_actor = Actor.system(other.pk)
        program = create_program(other, root_actor, **VALID)
        self.assertEqual(get_active_program(other), program)

    def test_database_enforces_single_active(self):
        self.make_program()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                self.make_program(name="Second")

    def test_expiration_days_empty_means_never(self):
        program = create_program(self.tenant, self.admin_actor, **dict(VALID, expiration_days=""))
        self.assertIsNone(program.expiration_days)

    def test_validation_errors_are_per_field(self):
        bad = {
            "name": "   ",
            "points_per_currency": "0",
            "currency_per_point": "-1",
            "min_points_redeem": "ten",
            "expiration_days": -3,
        }
        with self.assertRaises(ValidationError) as ctx:
            create_program(self.tenant, self.admin_actor, **bad)

        errors = ctx.exception.message_dict
        for field in bad:
            self.assertIn(field, errors)

    def test_rates_reject_non_numbers_and_huge_values(self):
        for field in ("points_per_currency", "currency_per_point"):
            for value in ("abc", "NaN", "Infinity", None, True, "1000000"):
                with self.assertRaises(ValidationError, msg=f"{field}={value!r}"):
                    create_program(self.tenant, self.admin_actor, **dict(VALID, **{field: value}))

    def test_rate_that_rounds_to_zero_rejected(self):
        with self.assertRaises(ValidationError):
            create_program(self.tenant, self.admin_actor, **dict(VALID, points_per_currency="0.00001"))


class UpdateProgramTests(LoyaltyTestBase):

    def setUp(self):
        super().setUp()
        self.program = create_program(self.tenant, self.admin_actor, **VALID)

    def test_update_replaces_fields(self):
        program = update_program(
            self.program,
            self.admin_actor,
            **dict(VALID, name="Renamed", points_per_currency="2.5", expiration_days=None),
        )
        program.refresh_from_db()
        self.assertEqual(program.name, "Renamed")
        self.assertEqual(program.points_per_currency, Decimal("2.5000"))
        self.assertIsNone(program.expiration_days)
        self.assertTrue(program.is_active)

    def test_update_validates(self):
        with self.assertRaises(ValidationError):
            update_program(self.program, self.admin_actor, **dict(VALID, currency_per_point=0))
        self.program.refresh_from_db()
        self.assertEqual(self.program.currency_per_point, Decimal("0.1000"))

    def test_manager_cannot_update(self):
        with self.assertRaises(NotAuthorized):
            update_program(self.program, self.manager_actor, **VALID)

    def test_activating_second_program_refused(self):
        draft = create_program(self.tenant, self.admin_actor, **dict(VALID, name="Draft", is_active=False))
        with self.assertRaises(ValidationError):
            update_program(draft, self.admin_actor, **dict(VALID, name="Draft", is_active=True))

    def test_swap_active_program(self):
        draft = create_program(self.tenant, self.admin_actor, **dict(VALID, name="Draft", is_active=False))
        update_program(self.program, self.admin_actor, **dict(VALID, is_active=False))
        update_program(draft, self.admin_actor, **dict(VALID, name="Draft", is_active=True))
        self.assertEqual(get_active_program(self.tenant).pk, draft.pk)
