# loyalty/views.py
import logging
from datetime import datetime, time

from dateutil.parser import parse as parse_datetime
from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date as django_parse_date
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from common.actors import Actor
from common.permissions import IsInTenant
from .models import LoyaltyProgram, WalletTransaction
from .reports import (
    list_wallets,
    program_summary,
    recent_transactions,
    transaction_row,
    wallet_detail,
    wallet_report,
    wallet_row,
)
from .serializers import LoyaltyProgramSerializer, WalletTransactionCreateSerializer
from .services import (
    InsufficientBalance,
    apply_transaction,
    create_program,
    get_active_program,
    update_program,
)

logger = logging.getLogger(__name__)

PROGRAM_INPUT_FIELDS = (
    "name",
    "description",
    "is_active",
    "points_per_currency",
    "currency_per_point",
    "min_points_redeem",
    "expiration_days",
)


def _resolve_request_tenant(request):
    return getattr(request, "tenant", None)


def _parse_bound(value, end_of_day=False):
    """Parse an ISO datetime or YYYY-MM-DD; a bare date covers the whole day."""
    if not value:
        return None
    day = django_parse_date(value)
    if day is not None:
        naive = datetime.combine(day, time.max if end_of_day else time.min)
        return timezone.make_aware(naive, timezone.get_current_timezone())
    dt = parse_datetime(value)
    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt, timezone.get_current_timezone())
    return dt


def _program_params(data, base=None):
    params = {}
    if base is not None:
        params = {f: getattr(base, f) for f in PROGRAM_INPUT_FIELDS}
    for f in PROGRAM_INPUT_FIELDS:
        if f in data:
            params[f] = data.get(f)
    return params


class LoyaltyAPIView(APIView):
    """
    Maps loyalty service errors onto HTTP responses.
    NotAuthorized is a Django PermissionDenied, which DRF already turns into 403.
    """

    permission_classes = [permissions.IsAuthenticated, IsInTenant]

    def handle_exception(self, exc):
        if isinstance(exc, DjangoValidationError):
            if hasattr(exc, "error_dict"):
                return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
            return Response({"detail": " ".join(exc.messages)}, status=status.HTTP_400_BAD_REQUEST)
        if isinstance(exc, InsufficientBalance):
            return Response(
                {"detail": str(exc), "available": exc.available, "requested": exc.requested},
                status=status.HTTP_409_CONFLICT,
            )
        if isinstance(exc, DatabaseError):
            logger.exception("Loyalty backend failure on %s %s", self.request.method, self.request.path)
            return Response(
                {"detail": "The operation could not be completed. Please try again."},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return super().handle_exception(exc)

    def tenant_or_400(self, request):
        tenant = _resolve_request_tenant(request)
        if tenant is None:
            raise DjangoValidationError("Tenant context missing.")
        return tenant


class LoyaltyProgramView(LoyaltyAPIView):
    """
    GET  /api/v1/loyalty/program   → active program
    POST /api/v1/loyalty/program   → create program (admin)
    """

    def get(self, request):
        tenant = self.tenant_or_400(request)
        program = get_active_program(tenant)
        if program is None:
            return Response({"detail": "No active loyalty program"}, status=status.HTTP_404_NOT_FOUND)
        return Response(LoyaltyProgramSerializer(program).data)

    def post(self, request):
        tenant = self.tenant_or_400(request)
        program = create_program(tenant, Actor.from_request(request), **_program_params(request.data))
        return Response(LoyaltyProgramSerializer(program).data, status=status.HTTP_201_CREATED)


class LoyaltyProgramDetailView(LoyaltyAPIView):
    """
    GET   /api/v1/loyalty/program/<id>
    PUT   /api/v1/loyalty/program/<id>   → full replace (admin)
    PATCH /api/v1/loyalty/program/<id>   → partial; missing fields keep current values
    """

    def _get_program(self, request, pk):
        tenant = self.tenant_or_400(request)
        return get_object_or_404(LoyaltyProgram, pk=pk, tenant=tenant)

    def get(self, request, pk):
        return Response(LoyaltyProgramSerializer(self._get_program(request, pk)).data)

    def put(self, request, pk):
        program = self._get_program(request, pk)
        program = update_program(program, Actor.from_request(request), **_program_params(request.data))
        return Response(LoyaltyProgramSerializer(program).data)

    def patch(self, request, pk):
        program = self._get_program(request, pk)
        params = _program_params(request.data, base=program)
        program = update_program(program, Actor.from_request(request), **params)
        return Response(LoyaltyProgramSerializer(program).data)


class WalletListView(LoyaltyAPIView):
    """
    GET /api/v1/loyalty/wallets?q=
    """

    def get(self, request):
        tenant = self.tenant_or_400(request)
        q = (request.query_params.get("q") or "").strip() or None
        return Response(list_wallets(tenant, q=q))


class WalletDetailView(LoyaltyAPIView):
    """
    GET /api/v1/loyalty/wallets/<customer_id>
    """

    def get(self, request, customer_id):
        tenant = self.tenant_or_400(request)
        data = wallet_detail(tenant, customer_id)
        if data is None:
            return Response({"detail": "Customer has no wallet yet"}, status=status.HTTP_404_NOT_FOUND)
        return Response(data)


class WalletTransactionView(LoyaltyAPIView):
    """
    GET  /api/v1/loyalty/transactions?limit=&type=&date_from=&date_to=
    POST /api/v1/loyalty/transactions
    Body: {
      "customer_id": 12,
      "transaction_type": "earn" | "redeem" | "adjust",
      "points": 150,
      "description": "Full wash",          // optional
      "direction": "increase" | "decrease"  // optional, adjust only
    }
    """

    def get(self, request):
        tenant = self.tenant_or_400(request)
        try:
            limit = int(request.query_params.get("limit") or settings.LOYALTY_RECENT_TRANSACTIONS_LIMIT)
        except (TypeError, ValueError):
            return Response({"detail": "limit must be an integer"}, status=status.HTTP_400_BAD_REQUEST)
        tx_type = request.query_params.get("type") or None
        if tx_type and tx_type not in dict(WalletTransaction.TYPE_CHOICES):
            return Response({"detail": f"Unknown transaction type: {tx_type}"}, status=status.HTTP_400_BAD_REQUEST)
        try:
            date_from = _parse_bound(request.query_params.get("date_from"))
            date_to = _parse_bound(request.query_params.get("date_to"), end_of_day=True)
        except (ValueError, OverflowError):
            return Response({"detail": "date_from/date_to must be ISO dates"}, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            recent_transactions(
                tenant,
                limit=limit,
                transaction_type=tx_type,
                date_from=date_from,
                date_to=date_to,
            )
        )

    def post(self, request):
        tenant = self.tenant_or_400(request)
        serializer = WalletTransactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        wallet, tx = apply_transaction(
            tenant,
            data["customer_id"],
            data["transaction_type"],
            data["points"],
            Actor.from_request(request),
            description=data.get("description") or "",
            direction=data.get("direction"),
        )
        return Response(
            {
                "wallet": wallet_row(wallet, get_active_program(tenant)),
                "transaction": transaction_row(tx),
            },
            status=status.HTTP_201_CREATED,
        )


class WalletReportView(LoyaltyAPIView):
    """
    GET /api/v1/loyalty/reports/wallets[?all=1]
    Superusers may pass all=1 to report across every tenant.
    """

    def get(self, request):
        all_tenants = (request.query_params.get("all") or "").lower() in ("1", "true")
        if all_tenants and request.user.is_superuser:
            return Response(wallet_report(None))
        return Response(wallet_report(self.tenant_or_400(request)))


class ProgramSummaryView(LoyaltyAPIView):
    """
    GET /api/v1/loyalty/reports/summary
    """

    def get(self, request):
        return Response(program_summary(self.tenant_or_400(request)))
