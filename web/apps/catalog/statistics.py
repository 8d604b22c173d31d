"""Atomic maintenance of a track's sale statistics.

``sale_count`` and ``total_sold_price`` are denormalized aggregates over the
track's completed sales. They are updated in place with a single SQL
``UPDATE`` built from ``F()`` expressions, so two sales of the same track
completing at the same time cannot lose an update. Callers that also write a
sale row wrap both writes in the same ``transaction.atomic()`` block.
"""

import logging
from decimal import Decimal

from django.db.models import F, Value
from django.db.models.functions import Greatest

from .models import TrackModel

logger = logging.getLogger(__name__)

_ZERO = Decimal("0.00")


class TrackStatistics:
    """Increment/decrement the statistics aggregate of one track."""

    def increment(self, track_id: str, amount: Decimal) -> bool:
        """Record one completed sale of ``amount`` on the track.

        Args:
            track_id: Primary key of the track.
            amount: Sale price to add to ``total_sold_price``.

        Returns:
            bool: True when the track row was updated, False when the track
            does not exist.
        """
        updated = TrackModel.objects.filter(pk=track_id).update(
            sale_count=F("sale_count") + 1,
            total_sold_price=F("total_sold_price") + Decimal(amount),
        )
        return self._report(track_id, "increment", amount, updated)

    def decrement(self, track_id: str, amount: Decimal) -> bool:
        """Remove one completed sale of ``amount`` from the track.

        Both fields are clamped at zero inside the same statement.

        Args:
            track_id: Primary key of the track.
            amount: Sale price to subtract from ``total_sold_price``.

        Returns:
            bool: True when the track row was updated, False when the track
            does not exist.
        """
        updated = TrackModel.objects.filter(pk=track_id).update(
            sale_count=Greatest(F("sale_count") - 1, Value(0)),
            total_sold_price=Greatest(F("total_sold_price") - Decimal(amount), Value(_ZERO)),
        )
        return self._report(track_id, "decrement", amount, updated)

    def _report(self, track_id, operation, amount, updated) -> bool:
        if not updated:
            logger.warning(
                "track not found for statistics update",
                extra={"track_id": track_id, "operation": operation},
            )
            return False
        logger.info(
            "track statistics updated",
            extra={"track_id": track_id, "operation": operation, "amount": str(amount)},
        )
        return True
