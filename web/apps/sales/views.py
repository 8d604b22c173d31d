"""HTTP views for sales administration and reporting.

Listing, editing and reporting require the admin token; recording a manual
sale requires the storefront key. Status edits go through
``SalesService.apply_status`` so the track statistics follow the sale.
"""

import logging

from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.catalog.repository import TrackRepository
from apps.catalog.statistics import TrackStatistics
from gateway.permissions import HasAdminToken, HasAllowedOrigin, HasStorefrontApiKey

from .domain import InvalidSaleTransition, SaleStatus
from .profit import sale_distribution, total_profits
from .reporting import sales_stats
from .repository import SaleRepository
from .schemas import CreateSaleDTO, SaleReadDTO, UpdateSaleDTO
from .services import SalesService

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_STATS_DAYS = 366


def _service() -> SalesService:
    return SalesService(SaleRepository(), TrackStatistics())


def _int_param(request, name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(request.query_params.get(name, default))
    except (TypeError, ValueError):
        value = default
    return max(low, min(value, high))


def _not_found() -> Response:
    return Response({"detail": "SALE_NOT_FOUND", "message": "Sale not found"}, status=status.HTTP_404_NOT_FOUND)


def _paginated(request, qs) -> Response:
    page = _int_param(request, "page", 1, 1, 10**6)
    page_size = _int_param(request, "page_size", 20, 1, MAX_PAGE_SIZE)
    p = Paginator(qs, page_size)
    page_obj = p.get_page(page)
    return Response(
        {
            "count": p.count,
            "page": page_obj.number,
            "page_size": page_size,
            "results": [SaleReadDTO.from_model(s).as_json() for s in page_obj.object_list],
        },
        status=200,
    )


class _SalesView(APIView):
    permission_classes = [HasAdminToken]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "sales"


class SalesCollectionView(_SalesView):
    """``GET`` lists sales (admin); ``POST`` records a manual sale (storefront)."""

    def get_permissions(self):
        if self.request.method == "POST":
            return [HasStorefrontApiKey(), HasAllowedOrigin()]
        return [HasAdminToken()]

    def get(self, request):
        status_filter = request.query_params.get("status")
        if status_filter and status_filter not in {s.value for s in SaleStatus}:
            return Response({"detail": "INVALID_STATUS", "message": "Unknown status filter"}, status=400)
        return _paginated(request, SaleRepository().list(status=status_filter or None))

    def post(self, request):
        """Record a manual sale.

        Returns:
            Response: 201 with the sale plus ``purchaseToken`` and
            ``orderId``; 400 for an invalid body or unknown track; 403 for a
            wrong key or an origin outside ``ALLOWED_ORIGINS``.
        """
        try:
            dto = CreateSaleDTO.model_validate(request.data)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            return Response({"detail": "VALIDATION_ERROR", "message": first.get("msg", "Invalid request body")}, status=400)

        track = TrackRepository().get(dto.track_id)
        if track is None:
            return Response({"detail": "TRACK_NOT_FOUND", "message": "Track not found"}, status=400)
        sale = _service().record_manual_sale(
            track,
            payment_method=dto.payment_method,
            transaction_id=dto.transaction_id,
            status=dto.payment_status,
        )
        body = SaleReadDTO.from_model(sale).as_json()
        body.update(purchaseToken=sale.transaction_id, orderId=sale.serial_id)
        return Response(body, status=status.HTTP_201_CREATED)


class SaleDetailView(_SalesView):
    def get(self, request, serial_id: str):
        sale = SaleRepository().get_by_serial(serial_id)
        if sale is None:
            return _not_found()
        return Response(SaleReadDTO.from_model(sale).as_json(), status=200)

    def patch(self, request, serial_id: str):
        """Update status, method or transaction id of a sale.

        Status changes follow the sale lifecycle and adjust the track
        statistics when the sale enters or leaves ``completed``.
        """
        sale = SaleRepository().get_by_serial(serial_id)
        if sale is None:
            return _not_found()
        try:
            dto = UpdateSaleDTO.model_validate(request.data)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            return Response({"detail": "VALIDATION_ERROR", "message": first.get("msg", "Invalid request body")}, status=400)
        try:
            sale = _service().apply_status(
                sale,
                dto.payment_status or SaleStatus(sale.payment_status),
                transaction_id=dto.transaction_id,
                payment_method=dto.payment_method,
            )
        except InvalidSaleTransition as e:
            return Response({"detail": str(e), "message": e.message}, status=status.HTTP_409_CONFLICT)
        return Response(SaleReadDTO.from_model(sale).as_json(), status=200)

    def delete(self, request, serial_id: str):
        sale = SaleRepository().get_by_serial(serial_id)
        if sale is None:
            return _not_found()
        _service().delete_sale(sale)
        return Response(status=status.HTTP_204_NO_CONTENT)


class TrackSalesView(_SalesView):
    def get(self, request, track_id: str):
        return _paginated(request, SaleRepository().list_for_track(track_id))


class SaleProfitView(_SalesView):
    def get(self, request, serial_id: str):
        sale = SaleRepository().get_by_serial(serial_id)
        if sale is None:
            return _not_found()
        body = {"saleSerialId": sale.serial_id, **sale_distribution(sale).as_dict()}
        return Response(body, status=200)


class ProfitsView(_SalesView):
    def get(self, request):
        return Response(total_profits(SaleRepository().list(status=SaleStatus.COMPLETED.value)), status=200)


class SalesStatsView(_SalesView):
    def get(self, request):
        days = _int_param(request, "days", 30, 1, MAX_STATS_DAYS)
        return Response(sales_stats(SaleRepository(), days=days), status=200)
