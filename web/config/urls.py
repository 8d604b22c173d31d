from django.urls import include, path

urlpatterns = [
    path("api/", include("apps.monitoring.urls")),
    path("api/payments/", include("apps.payments.urls")),
    path("api/sales/", include("apps.sales.urls")),
]
