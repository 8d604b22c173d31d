"""Create-if-absent recording of gateway-confirmed sales.

The gateway payment id is the idempotency key of the callback flow:
``SaleModel.payment_id`` is unique, so of two callbacks racing for the same
payment exactly one insert wins. The insert and the statistics increment
share one savepoint, so the losing callback rolls back both and returns the
winner's sale instead.
"""

import logging

from django.db import IntegrityError, transaction

from apps.catalog.models import TrackModel
from apps.catalog.statistics import TrackStatistics
from apps.sales.domain import SaleStatus
from apps.sales.models import SaleModel
from apps.sales.repository import SaleRepository

logger = logging.getLogger(__name__)


@transaction.atomic
def record_sale_once(
    sales: SaleRepository,
    stats: TrackStatistics,
    track: TrackModel,
    payment_id: str,
    transaction_id: str,
    payment_method: str,
) -> tuple[bool, SaleModel]:
    """Record a completed sale for ``payment_id`` unless one already exists.

    Behavior:
        - No sale for the payment yet: insert a ``completed`` sale and
          increment the track statistics; return ``(False, sale)``.
        - A sale already recorded (earlier or concurrent callback): return
          ``(True, existing)`` with no statistics change.

    Args:
        sales: Sale repository.
        stats: Track statistics updater.
        track: Purchased track, freshly loaded.
        payment_id: Gateway payment id; the idempotency key.
        transaction_id: Gateway ``trxID`` (or the payment id when absent).
        payment_method: Label stored on the sale.

    Returns:
        tuple[bool, SaleModel]: (existing, sale).

    Raises:
        IntegrityError: When the insert fails for a reason other than an
            existing sale for the payment (for example a serial id collision).
    """
    existing = sales.get_by_payment_id(payment_id)
    if existing is not None:
        return True, existing
    try:
        # Nested savepoint: on IntegrityError only the insert and increment roll back.
        with transaction.atomic():
            sale = sales.create(
                track=track,
                status=SaleStatus.COMPLETED,
                payment_method=payment_method,
                payment_id=payment_id,
                transaction_id=transaction_id,
            )
            stats.increment(track.pk, sale.price)
    except IntegrityError:
        existing = sales.get_by_payment_id(payment_id)
        if existing is None:
            raise
        logger.info("sale already recorded by a concurrent callback", extra={"paymentID": payment_id})
        return True, existing
    logger.info(
        "sale recorded",
        extra={"paymentID": payment_id, "serial_id": sale.serial_id, "track_id": track.pk, "price": str(sale.price)},
    )
    return False, sale
