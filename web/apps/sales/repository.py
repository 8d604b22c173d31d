"""Repository layer for persisting sales.

The repository owns every write to the ``sales`` table: creation with a
fresh serial id, status mutation and deletion. It does not touch track
statistics; the services that call it pair each status change with the
matching statistics update inside one transaction.
"""

from decimal import Decimal

from django.db.models import QuerySet

from apps.catalog.models import TrackModel

from .domain import SaleStatus
from .models import SaleModel


class SaleRepository:
    """Repository that persists and looks up ``SaleModel`` rows."""

    def create(
        self,
        track: TrackModel,
        status: SaleStatus,
        payment_method: str,
        payment_id: str | None = None,
        transaction_id: str = "",
    ) -> SaleModel:
        """Persist a new sale snapshotting the track's title and price.

        Args:
            track: Purchased track; its current ``title`` and ``price`` are
                copied onto the sale.
            status: Initial payment status.
            payment_method: Free-text label such as ``bKash`` or ``manual``.
            payment_id: Gateway payment id. Unique when present, so a second
                insert for the same payment raises ``IntegrityError``.
            transaction_id: Gateway transaction id (``trxID``).

        Returns:
            SaleModel: The created row with its generated ``serial_id``.
        """
        return SaleModel.objects.create(
            track=track,
            track_title=track.title,
            price=Decimal(track.price),
            payment_status=SaleStatus(status).value,
            payment_method=payment_method,
            payment_id=payment_id or None,
            transaction_id=transaction_id or "",
        )

    def get_by_serial(self, serial_id: str) -> SaleModel | None:
        return SaleModel.objects.select_related("track").filter(serial_id=serial_id).first()

    def get_by_payment_id(self, payment_id: str) -> SaleModel | None:
        """Exact match on the unique ``payment_id`` column only."""
        if not payment_id:
            return None
        return SaleModel.objects.select_related("track").filter(payment_id=payment_id).first()

    def get_by_payment(self, payment_id: str) -> SaleModel | None:
        """Find the sale recorded for a gateway payment.

        Matches the stored ``payment_id`` first and falls back to
        ``transaction_id``, which is where manual sales keep the gateway
        reference.
        """
        if not payment_id:
            return None
        qs = SaleModel.objects.select_related("track")
        sale = qs.filter(payment_id=payment_id).first()
        if sale is None:
            sale = qs.filter(transaction_id=payment_id).order_by("-created_at").first()
        return sale

    def lock(self, sale: SaleModel) -> SaleModel:
        """Re-read ``sale`` with a row lock; call inside ``transaction.atomic``."""
        return SaleModel.objects.select_for_update().get(pk=sale.pk)

    def update_status(
        self,
        sale: SaleModel,
        status: SaleStatus,
        transaction_id: str | None = None,
        payment_method: str | None = None,
        payment_id: str | None = None,
    ) -> SaleModel:
        """Raises ``IntegrityError`` when ``payment_id`` is already taken."""
        sale.payment_status = SaleStatus(status).value
        fields = ["payment_status", "updated_at"]
        if payment_id:
            sale.payment_id = payment_id
            fields.append("payment_id")
        if transaction_id:
            sale.transaction_id = transaction_id
            fields.append("transaction_id")
        if payment_method:
            sale.payment_method = payment_method
            fields.append("payment_method")
        sale.save(update_fields=fields)
        return sale

    def delete(self, sale: SaleModel) -> None:
        sale.delete()

    def list(self, status: str | None = None) -> QuerySet:
        qs = SaleModel.objects.select_related("track").order_by("-created_at", "-id")
        if status:
            qs = qs.filter(payment_status=status)
        return qs

    def list_for_track(self, track_id: str) -> QuerySet:
        return self.list().filter(track_id=track_id)

    def list_since(self, since) -> QuerySet:
        return self.list().filter(created_at__gte=since)
