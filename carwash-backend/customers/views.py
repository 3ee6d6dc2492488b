# customers/views.py

from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, permissions
from rest_framework.filters import OrderingFilter

from common.permissions import IsInTenant, TenantScopedViewMixin
from .models import Customer
from .serializers import CustomerSerializer, CustomerListSerializer


class CustomerListCreateView(TenantScopedViewMixin, generics.ListCreateAPIView):
    """
    GET /api/v1/customers/?q=&is_active=&ordering=
    POST /api/v1/customers/
    """

    permission_classes = [permissions.IsAuthenticated, IsInTenant]
    queryset = Customer.objects.all()
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_fields = ["is_active"]
    ordering_fields = ["id", "first_name", "last_name", "created_at"]
    ordering = ["first_name", "last_name", "id"]

    def get_serializer_class(self):
        if self.request.method == "GET":
            return CustomerListSerializer
        return CustomerSerializer

    def get_queryset(self):
        qs = super().get_queryset()

        q = self.request.query_params.get("q")
        if q:
            qs = qs.filter(
                Q(first_name__icontains=q)
                | Q(last_name__icontains=q)
                | Q(email__icontains=q)
                | Q(phone_number__icontains=q)
            )

        return qs

    def perform_create(self, serializer):
        # tenant and created_by are set by the serializer from the request
        serializer.save()


class CustomerDetailView(TenantScopedViewMixin, generics.RetrieveUpdateAPIView):
    """
    GET /api/v1/customers/<id>
    PATCH /api/v1/customers/<id>
    """

    permission_classes = [permissions.IsAuthenticated, IsInTenant]
    serializer_class = CustomerSerializer
    queryset = Customer.objects.all()
