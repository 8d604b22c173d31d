"""Sale status changes that keep track statistics in step.

Every write that moves a sale into or out of ``completed`` goes through
``apply_status`` so the statistics delta is applied in the same database
transaction as the status change.
"""

import logging

from django.db import transaction

from apps.catalog.models import TrackModel
from apps.catalog.statistics import TrackStatistics

from .domain import SaleStatus, counts_towards_statistics, generate_purchase_token, validate_transition
from .models import SaleModel
from .repository import SaleRepository

logger = logging.getLogger(__name__)


def sync_statistics(stats: TrackStatistics, sale: SaleModel, previous: str, current: str) -> None:
    """Apply the statistics delta implied by ``previous -> current``."""
    if sale.track_id is None:
        return
    was, now = counts_towards_statistics(previous), counts_towards_statistics(current)
    if now and not was:
        stats.increment(sale.track_id, sale.price)
    elif was and not now:
        stats.decrement(sale.track_id, sale.price)


class SalesService:
    """Administrative sale operations: manual sales, status edits, deletes."""

    def __init__(self, sales: SaleRepository, stats: TrackStatistics):
        self.sales = sales
        self.stats = stats

    @transaction.atomic
    def record_manual_sale(
        self,
        track: TrackModel,
        payment_method: str = "manual",
        transaction_id: str = "",
        status: SaleStatus = SaleStatus.COMPLETED,
    ) -> SaleModel:
        """Create a sale outside the gateway flow.

        Only ``completed`` and ``pending`` are accepted as initial states; a
        completed manual sale increments the track statistics. Without a
        ``transaction_id`` a purchase token is generated and stored there.

        Raises:
            ValueError: ``INVALID_STATUS`` for any other initial status.
        """
        status = SaleStatus(status)
        if status not in (SaleStatus.COMPLETED, SaleStatus.PENDING):
            raise ValueError("INVALID_STATUS")
        sale = self.sales.create(
            track=track,
            status=status,
            payment_method=payment_method or "manual",
            transaction_id=transaction_id or generate_purchase_token(),
        )
        sync_statistics(self.stats, sale, SaleStatus.PENDING.value, sale.payment_status)
        logger.info(
            "manual sale recorded",
            extra={"serial_id": sale.serial_id, "track_id": track.pk, "status": sale.payment_status},
        )
        return sale

    @transaction.atomic
    def apply_status(
        self,
        sale: SaleModel,
        status: SaleStatus,
        transaction_id: str | None = None,
        payment_method: str | None = None,
        payment_id: str | None = None,
    ) -> SaleModel:
        """Move ``sale`` to ``status`` under a row lock, adjusting statistics.

        Raises:
            InvalidSaleTransition: When the lifecycle forbids the change.
            IntegrityError: ``payment_id`` already belongs to another sale;
                the whole change is rolled back.
        """
        locked = self.sales.lock(sale)
        previous = locked.payment_status
        validate_transition(previous, status)
        self.sales.update_status(
            locked, status, transaction_id=transaction_id, payment_method=payment_method, payment_id=payment_id
        )
        sync_statistics(self.stats, locked, previous, locked.payment_status)
        if previous != locked.payment_status:
            logger.info(
                "sale status changed",
                extra={"serial_id": locked.serial_id, "from": previous, "to": locked.payment_status},
            )
        return locked

    @transaction.atomic
    def delete_sale(self, sale: SaleModel) -> None:
        locked = self.sales.lock(sale)
        sync_statistics(self.stats, locked, locked.payment_status, SaleStatus.PENDING.value)
        self.sales.delete(locked)
        logger.info("sale deleted", extra={"serial_id": locked.serial_id})
