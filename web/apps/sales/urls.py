from django.urls import path

from .views import (
    ProfitsView,
    SaleDetailView,
    SaleProfitView,
    SalesCollectionView,
    SalesStatsView,
    TrackSalesView,
)

app_name = "sales"

urlpatterns = [
    path("", SalesCollectionView.as_view(), name="sales-collection"),  # GET list / POST manual sale
    path("profits/", ProfitsView.as_view(), name="profits"),
    path("stats/", SalesStatsView.as_view(), name="stats"),
    path("track/<str:track_id>/", TrackSalesView.as_view(), name="track-sales"),
    path("<str:serial_id>/profit/", SaleProfitView.as_view(), name="sale-profit"),
    path("<str:serial_id>/", SaleDetailView.as_view(), name="sale-detail"),
]
