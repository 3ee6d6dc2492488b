# loyalty/reports.py
"""
Read-only projections over wallets and the ledger for dashboards and reports.
Nothing here writes; repeated calls without intervening writes return the
same data.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db.models import Count, IntegerField, Q, Sum
from django.db.models.functions import Coalesce

from .models import Wallet, WalletTransaction
from .services import get_active_program, redemption_value


def _customer_row(customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "full_name": customer.full_name,
        "email": customer.email,
        "phone_number": customer.phone_number,
    }


def wallet_row(wallet: Wallet, program=None) -> Dict[str, Any]:
    return {
        "id": wallet.id,
        "customer_id": wallet.customer_id,
        "customer": _customer_row(wallet.customer),
        "available_points": wallet.available_points,
        "total_points": wallet.total_points,
        "lifetime_points": wallet.lifetime_points,
        "available_value": redemption_value(program, wallet.available_points),
        "program_id": wallet.program_id,
        "created_at": wallet.created_at,
        "updated_at": wallet.updated_at,
    }


def transaction_row(tx: WalletTransaction) -> Dict[str, Any]:
    return {
        "id": tx.id,
        "wallet_id": tx.wallet_id,
        "customer_id": tx.customer_id,
        "customer_name": tx.customer.full_name if tx.customer_id else None,
        "transaction_type": tx.transaction_type,
        "points": tx.points,
        "balance_after": tx.balance_after,
        "description": tx.description,
        "created_by": tx.created_by.username if tx.created_by_id else None,
        "expires_at": tx.expires_at,
        "created_at": tx.created_at,
    }


def list_wallets(tenant, q: Optional[str] = None) -> List[Dict[str, Any]]:
    """Wallets of the tenant, highest total_points first."""
    qs = Wallet.objects.filter(tenant=tenant).select_related("customer")
    if q:
        qs = qs.filter(
            Q(customer__first_name__icontains=q)
            | Q(customer__last_name__icontains=q)
            | Q(customer__email__icontains=q)
            | Q(customer__phone_number__icontains=q)
        )
    program = get_active_program(tenant)
    return [wallet_row(w, program) for w in qs.order_by("-total_points", "id")]


def recent_transactions(
    tenant,
    limit: int = 100,
    transaction_type: Optional[str] = None,
    date_from=None,
    date_to=None,
) -> List[Dict[str, Any]]:
    """Most recent ledger rows of the tenant, newest first. Dates are inclusive bounds."""
    limit = max(1, min(int(limit), 500))
    qs = WalletTransaction.objects.filter(tenant=tenant).select_related("customer", "created_by")
    if transaction_type:
        qs = qs.filter(transaction_type=transaction_type)
    if date_from is not None:
        qs = qs.filter(created_at__gte=date_from)
    if date_to is not None:
        qs = qs.filter(created_at__lte=date_to)
    return [transaction_row(tx) for tx in qs.order_by("-created_at", "-id")[:limit]]


def wallet_history(wallet: Wallet) -> List[WalletTransaction]:
    """Ledger rows of a wallet in replay order (oldest first)."""
    return list(wallet.transactions.select_related("customer", "created_by").order_by("created_at", "id"))


def wallet_detail(tenant, customer_id) -> Optional[Dict[str, Any]]:
    """
    Wallet of a customer plus its ledger (newest first), or None when the
    customer has no wallet yet.
    """
    wallet = (
        Wallet.objects.filter(tenant=tenant, customer_id=customer_id)
        .select_related("customer")
        .first()
    )
    if wallet is None:
        return None
    row = wallet_row(wallet, get_active_program(tenant))
    row["transactions"] = [transaction_row(tx) for tx in reversed(wallet_history(wallet))]
    return row


def replay_wallet(wallet: Wallet) -> Dict[str, Any]:
    """
    Recompute the balance from the ledger and report where the stored
    snapshot or a balance_after disagrees with the running sum.
    """
    running = 0
    broken_rows = []
    for tx in wallet.transactions.order_by("created_at", "id"):
        running += tx.points
        if tx.balance_after != running:
            broken_rows.append({"id": tx.id, "balance_after": tx.balance_after, "expected": running})
    return {
        "wallet_id": wallet.id,
        "expected_available": running,
        "actual_available": wallet.available_points,
        "broken_rows": broken_rows,
        "ok": running == wallet.available_points and not broken_rows,
    }


def wallet_report(tenant=None) -> List[Dict[str, Any]]:
    """
    Per-wallet totals for the reports screen, highest balance first.
    tenant=None covers every tenant (platform root view).
    """
    qs = Wallet.objects.select_related("customer", "tenant")
    if tenant is not None:
        qs = qs.filter(tenant=tenant)
    qs = qs.annotate(
        total_earned=Coalesce(
            Sum("transactions__points", filter=Q(transactions__transaction_type=WalletTransaction.EARN)),
            0,
            output_field=IntegerField(),
        ),
        total_redeemed=Coalesce(
            Sum("transactions__points", filter=Q(transactions__transaction_type=WalletTransaction.REDEEM)),
            0,
            output_field=IntegerField(),
        ),
        total_expired=Coalesce(
            Sum("transactions__points", filter=Q(transactions__transaction_type=WalletTransaction.EXPIRE)),
            0,
            output_field=IntegerField(),
        ),
        transaction_count=Count("transactions"),
    ).order_by("-available_points", "id")

    return [
        {
            "tenant_id": w.tenant_id,
            "customer_id": w.customer_id,
            "full_name": w.customer.full_name,
            "email": w.customer.email,
            "balance": w.available_points,
            "total_earned": w.total_earned,
            "total_redeemed": -w.total_redeemed,
            "total_expired": -w.total_expired,
            "transaction_count": w.transaction_count,
        }
        for w in qs
    ]


def program_summary(tenant) -> Dict[str, Any]:
    """Dashboard card numbers for the tenant's loyalty program."""
    program = get_active_program(tenant)
    agg = Wallet.objects.filter(tenant=tenant).aggregate(
        wallets=Count("id"),
        available=Coalesce(Sum("available_points"), 0),
        lifetime=Coalesce(Sum("lifetime_points"), 0),
    )
    return {
        "program_id": program.id if program else None,
        "program_name": program.name if program else None,
        "wallet_count": agg["wallets"],
        "outstanding_points": agg["available"],
        "outstanding_value": redemption_value(program, agg["available"]) if program else Decimal("0.00"),
        "lifetime_points": agg["lifetime"],
    }
