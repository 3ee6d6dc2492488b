# customers/urls.py

from django.urls import path

from .views import CustomerListCreateView, CustomerDetailView

app_name = "customers"

urlpatterns = [
    path("customers/", CustomerListCreateView.as_view(), name="customer-list"),
    path("customers/<int:pk>", CustomerDetailView.as_view(), name="customer-detail"),
]
