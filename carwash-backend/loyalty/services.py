# loyalty/services.py
"""
Loyalty program configuration and the wallet ledger.

Every balance change goes through _post_locked(), which runs inside a
database transaction holding a row lock on the wallet: the ledger row and
the wallet snapshot are written together or not at all.
"""
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional, Tuple

from django.core.exceptions import PermissionDenied, ValidationError
from django.db import transaction
from django.utils import timezone

from common.actors import Actor
from common.roles import LEDGER_ROLES, PROGRAM_ROLES
from customers.models import Customer
from tenants.models import Tenant
from .models import AdjustDirection, LoyaltyProgram, Wallet, WalletTransaction

logger = logging.getLogger(__name__)

LEDGER_TYPES = (WalletTransaction.EARN, WalletTransaction.REDEEM, WalletTransaction.ADJUST)
RATE_LIMIT = Decimal("1000000")  # max_digits=10, decimal_places=4


class LoyaltyError(Exception):
    """Base exception for loyalty ledger operations"""
    pass


class InsufficientBalance(LoyaltyError):
    """Raised when a debit would take the available balance below zero"""

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient points: requested {requested}, available {available}"
        )


class NotAuthorized(PermissionDenied):
    """Raised when the actor's role does not allow the operation"""
    pass


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _to_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not d.is_finite() or d != d.to_integral_value():
        return None
    return int(d)


def _to_decimal(value) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None
    return d if d.is_finite() else None


TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


def _to_bool(value, field: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    raise ValidationError({field: "Must be a boolean."})


def _require_role(actor: Actor, tenant, roles, message: str) -> None:
    if actor.acts_for(tenant) and actor.has_role(roles):
        return
    logger.warning(
        "Refused loyalty operation for user %s (role=%s) on tenant %s",
        actor.user_id, actor.role, getattr(tenant, "pk", None),
    )
    raise NotAuthorized(message)


# ---------------------------------------------------------------------------
# program configuration
# ---------------------------------------------------------------------------

def _clean_program_params(params: dict) -> dict:
    errors = {}

    name = (params.get("name") or "").strip()
    if not name:
        errors["name"] = "Program name is required."

    rates = {}
    for field in ("points_per_currency", "currency_per_point"):
        value = _to_decimal(params.get(field))
        if value is None or value <= 0:
            errors[field] = "Must be a number greater than 0."
        elif value >= RATE_LIMIT:
            errors[field] = "Value is too large."
        else:
            rates[field] = value.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
            if rates[field] <= 0:
                errors[field] = "Must be a number greater than 0."

    min_points = _to_int(params.get("min_points_redeem", 0))
    if min_points is None or min_points < 0:
        errors["min_points_redeem"] = "Must be a whole number >= 0."

    expiration_days = params.get("expiration_days")
    if expiration_days in (None, ""):
        expiration_days = None
    else:
        expiration_days = _to_int(expiration_days)
        if expiration_days is None or expiration_days < 0:
            errors["expiration_days"] = "Must be a whole number >= 0, or empty for no expiration."

    if errors:
        raise ValidationError(errors)

    return {
        "name": name,
        "description": (params.get("description") or "").strip(),
        "points_per_currency": rates["points_per_currency"],
        "currency_per_point": rates["currency_per_point"],
        "min_points_redeem": min_points,
        "expiration_days": expiration_days,
    }


def get_active_program(tenant) -> Optional[LoyaltyProgram]:
    return LoyaltyProgram.objects.filter(tenant=tenant, is_active=True).first()


def create_program(tenant: Tenant, actor: Actor, **params) -> LoyaltyProgram:
    """
    Create the tenant's loyalty program. Admins only.

    The tenant row is locked while checking for an existing active program
    so two concurrent creates cannot both succeed.
    """
    _require_role(actor, tenant, PROGRAM_ROLES, "Only administrators can manage loyalty programs")
    cleaned = _clean_program_params(params)
    is_active = _to_bool(params.get("is_active", True), "is_active")

    with transaction.atomic():
        Tenant.objects.select_for_update().get(pk=tenant.pk)
        if is_active and LoyaltyProgram.objects.filter(tenant=tenant, is_active=True).exists():
            raise ValidationError("An active loyalty program already exists for this tenant.")
        program = LoyaltyProgram.objects.create(tenant=tenant, is_active=is_active, **cleaned)

    logger.info("Created loyalty program %s for tenant %s", program.pk, tenant.pk)
    return program


def update_program(program: LoyaltyProgram, actor: Actor, **params) -> LoyaltyProgram:
    """
    Replace the program's mutable fields. Same validation as create_program.
    """
    _require_role(actor, program.tenant, PROGRAM_ROLES, "Only administrators can manage loyalty programs")
    cleaned = _clean_program_params(params)
    requested_active = params.get("is_active")
    if requested_active is not None:
        requested_active = _to_bool(requested_active, "is_active")

    with transaction.atomic():
        Tenant.objects.select_for_update().get(pk=program.tenant_id)
        program = LoyaltyProgram.objects.select_for_update().get(pk=program.pk)
        is_active = program.is_active if requested_active is None else requested_active
        if is_active and (
            LoyaltyProgram.objects.filter(tenant_id=program.tenant_id, is_active=True)
            .exclude(pk=program.pk)
            .exists()
        ):
            raise ValidationError("Another loyalty program is already active for this tenant.")
        for field, value in cleaned.items():
            setattr(program, field, value)
        program.is_active = is_active
        program.save()

    logger.info("Updated loyalty program %s (active=%s)", program.pk, program.is_active)
    return program


def points_for_amount(program: LoyaltyProgram, amount) -> int:
    """Points earned for a purchase amount, rounded down."""
    value = _to_decimal(amount)
    if value is None or value <= 0:
        return 0
    return int((value * program.points_per_currency).to_integral_value(rounding=ROUND_DOWN))


def redemption_value(program: Optional[LoyaltyProgram], points: int) -> Decimal:
    """Currency value of a number of points under the program."""
    if program is None:
        return Decimal("0.00")
    return (Decimal(points) * program.currency_per_point).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# ledger
# ---------------------------------------------------------------------------

def signed_delta(transaction_type: str, points, direction: Optional[str] = None) -> int:
    """
    Turn a requested transaction into the signed delta applied to the wallet.

    earn/redeem take a positive magnitude. adjust takes either a signed,
    non-zero value with no direction, or a positive magnitude plus an
    AdjustDirection.
    """
    if transaction_type not in LEDGER_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type!r}")
    value = _to_int(points)
    if value is None:
        raise ValidationError("points must be a whole number.")

    if transaction_type == WalletTransaction.ADJUST:
        if direction in (None, ""):
            if value == 0:
                raise ValidationError("Adjustment points must be non-zero.")
            return value
        if direction not in AdjustDirection.values:
            raise ValidationError(f"Unknown adjust direction: {direction!r}")
        if value <= 0:
            raise ValidationError("points must be a positive whole number.")
        return value if direction == AdjustDirection.INCREASE else -value

    if direction not in (None, ""):
        raise ValidationError("direction only applies to adjust transactions.")
    if value <= 0:
        raise ValidationError("points must be a positive whole number.")
    return value if transaction_type == WalletTransaction.EARN else -value


def _resolve_customer(tenant, customer) -> Customer:
    customer_id = getattr(customer, "pk", customer)
    try:
        return Customer.objects.get(pk=customer_id, tenant=tenant)
    except (Customer.DoesNotExist, ValueError, TypeError):
        raise ValidationError(f"Customer {customer_id} not found for this tenant.")


def _lock_wallet(tenant, customer, program) -> Wallet:
    wallet, created = Wallet.objects.select_for_update().get_or_create(
        tenant=tenant,
        customer=customer,
        defaults={"program": program},
    )
    if created:
        logger.info("Opened wallet %s for customer %s", wallet.pk, customer.pk)
    return wallet


def _latest_posting(wallet: Wallet):
    return (
        wallet.transactions.order_by("-created_at", "-id")
        .values_list("created_at", flat=True)
        .first()
    )


def _post_locked(
    wallet: Wallet,
    transaction_type: str,
    delta: int,
    actor: Actor,
    description: str = "",
    program: Optional[LoyaltyProgram] = None,
    now=None,
) -> WalletTransaction:
    """
    Append one ledger row and update the wallet snapshot.
    Caller must hold the wallet row lock inside transaction.atomic().
    Rows are appended in time order: `now` may not precede the latest row.
    """
    now = now or timezone.now()
    last_at = _latest_posting(wallet)
    if last_at is not None and now < last_at:
        raise ValidationError(
            f"Transaction time {now.isoformat()} is earlier than the wallet's latest "
            f"transaction ({last_at.isoformat()})."
        )
    new_available = wallet.available_points + delta
    if new_available < 0:
        raise InsufficientBalance(available=wallet.available_points, requested=-delta)

    expires_at = None
    if transaction_type == WalletTransaction.EARN and program is not None and program.expiration_days:
        expires_at = now + timedelta(days=program.expiration_days)

    tx = WalletTransaction.objects.create(
        tenant_id=wallet.tenant_id,
        wallet=wallet,
        customer_id=wallet.customer_id,
        transaction_type=transaction_type,
        points=delta,
        balance_after=new_available,
        description=description or "",
        created_by_id=actor.user_id,
        expires_at=expires_at,
        created_at=now,
    )

    wallet.available_points = new_available
    wallet.total_points = wallet.total_points + delta
    if transaction_type == WalletTransaction.EARN:
        wallet.lifetime_points = wallet.lifetime_points + delta
    wallet.save(update_fields=["available_points", "total_points", "lifetime_points", "updated_at"])

    logger.info(
        "Wallet %s: %s %+d -> %d (tx %s)",
        wallet.pk, transaction_type, delta, new_available, tx.pk,
    )
    return tx


def apply_transaction(
    tenant: Tenant,
    customer,
    transaction_type: str,
    points,
    actor: Actor,
    description: str = "",
    direction: Optional[str] = None,
    now=None,
) -> Tuple[Wallet, WalletTransaction]:
    """
    Record an earn/redeem/adjust against the customer's wallet.

    Args:
        tenant: Tenant instance
        customer: Customer instance or id (must belong to tenant)
        transaction_type: "earn", "redeem" or "adjust"
        points: positive magnitude (or a signed value for adjust without direction)
        actor: caller identity; admin or manager of the tenant
        description: free text stored on the ledger row
        direction: AdjustDirection for adjust transactions
        now: optional timestamp for the ledger row

    Returns:
        (wallet, transaction) after the write

    Raises:
        NotAuthorized: actor may not post transactions for this tenant
        ValidationError: bad type/points/direction, unknown or inactive customer,
            or redeeming below the program's minimum balance
        InsufficientBalance: the debit would take available points below zero
    """
    _require_role(actor, tenant, LEDGER_ROLES, "You do not have permission to record wallet transactions")
    delta = signed_delta(transaction_type, points, direction)
    customer = _resolve_customer(tenant, customer)
    if not customer.is_active:
        raise ValidationError(f"Customer {customer.pk} is inactive.")

    with transaction.atomic():
        program = get_active_program(tenant)
        wallet = _lock_wallet(tenant, customer, program)

        if wallet.available_points + delta < 0:
            logger.warning(
                "Wallet %s: refused %s of %d points, available %d",
                wallet.pk, transaction_type, -delta, wallet.available_points,
            )
            raise InsufficientBalance(available=wallet.available_points, requested=-delta)
        if (
            transaction_type == WalletTransaction.REDEEM
            and program is not None
            and wallet.available_points < program.min_points_redeem
        ):
            raise ValidationError(
                f"At least {program.min_points_redeem} points are required to redeem "
                f"(available {wallet.available_points})."
            )

        tx = _post_locked(wallet, transaction_type, delta, actor, description, program=program, now=now)

    return wallet, tx


def record_purchase_earning(tenant: Tenant, customer, amount, actor: Actor, description: str = ""):
    """
    Earn points for a purchase amount using the active program's rate.
    Returns None when the amount converts to zero points.
    """
    program = get_active_program(tenant)
    if program is None:
        raise ValidationError("No active loyalty program for this tenant.")
    points = points_for_amount(program, amount)
    if points <= 0:
        return None
    return apply_transaction(
        tenant,
        customer,
        WalletTransaction.EARN,
        points,
        actor,
        description=description or f"Purchase of {amount}",
    )


# ---------------------------------------------------------------------------
# expiration
# ---------------------------------------------------------------------------

def lapsed_points(wallet: Wallet, now) -> int:
    """
    Points of `wallet` that have lapsed at `now` and are not yet debited.

    Replays the ledger in posting order. Every credit opens a lot (earn lots
    carry their expires_at, positive adjustments never expire) and every
    debit, expire rows included, drains the open lots soonest-expiring first.
    A debit only reaches lots credited before it. What remains in lots
    lapsed at `now` is owed, never more than the available balance.
    """
    lots = []  # [expires_at or None, remaining]
    rows = wallet.transactions.order_by("created_at", "id").values_list(
        "points", "expires_at"
    )
    for points, expires_at in rows:
        if points > 0:
            lots.append([expires_at, points])
            continue
        owed = -points
        lots.sort(key=lambda lot: (lot[0] is None, lot[0]))
        for lot in lots:
            if owed <= 0:
                break
            taken = min(lot[1], owed)
            lot[1] -= taken
            owed -= taken
        lots = [lot for lot in lots if lot[1] > 0]

    lapsed = sum(remaining for expires_at, remaining in lots if expires_at is not None and expires_at <= now)
    return max(0, min(lapsed, wallet.available_points))


def expire_lapsed_points(tenant: Optional[Tenant] = None, now=None) -> dict:
    """
    Append an `expire` debit to every wallet holding lapsed earnings.
    Safe to re-run: a second pass at the same `now` writes nothing.
    """
    now = now or timezone.now()
    wallets = Wallet.objects.filter(
        available_points__gt=0,
        transactions__transaction_type=WalletTransaction.EARN,
        transactions__expires_at__lte=now,
    )
    if tenant is not None:
        wallets = wallets.filter(tenant=tenant)

    summary = {"wallets_checked": 0, "wallets_expired": 0, "points_expired": 0}
    for wallet_id in wallets.values_list("id", flat=True).distinct().order_by("id"):
        summary["wallets_checked"] += 1
        with transaction.atomic():
            wallet = Wallet.objects.select_for_update().get(pk=wallet_id)
            last_at = _latest_posting(wallet)
            if last_at is not None and last_at > now:
                logger.warning("Wallet %s has transactions after %s, skipping expiration", wallet.pk, now)
                continue
            points = lapsed_points(wallet, now)
            if points <= 0:
                continue
            _post_locked(
                wallet,
                WalletTransaction.EXPIRE,
                -points,
                Actor.system(wallet.tenant_id),
                description=f"Expired {points} points",
                now=now,
            )
        summary["wallets_expired"] += 1
        summary["points_expired"] += points

    logger.info(
        "Points expiration completed: %s points expired across %s wallets (%s checked)",
        summary["points_expired"], summary["wallets_expired"], summary["wallets_checked"],
    )
    return summary
