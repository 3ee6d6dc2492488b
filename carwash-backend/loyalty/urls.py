# carwash-backend/loyalty/urls.py

from django.urls import path

from .views import (
    LoyaltyProgramDetailView,
    LoyaltyProgramView,
    ProgramSummaryView,
    WalletDetailView,
    WalletListView,
    WalletReportView,
    WalletTransactionView,
)

app_name = "loyalty"

urlpatterns = [
    path("loyalty/program", LoyaltyProgramView.as_view(), name="program"),
    path("loyalty/program/<int:pk>", LoyaltyProgramDetailView.as_view(), name="program-detail"),
    path("loyalty/wallets", WalletListView.as_view(), name="wallets"),
    path("loyalty/wallets/<int:customer_id>", WalletDetailView.as_view(), name="wallet-detail"),
    path("loyalty/transactions", WalletTransactionView.as_view(), name="transactions"),
    path("loyalty/reports/wallets", WalletReportView.as_view(), name="report-wallets"),
    path("loyalty/reports/summary", ProgramSummaryView.as_view(), name="report-summary"),
]
