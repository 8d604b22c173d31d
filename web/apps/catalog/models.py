import uuid
from decimal import Decimal

from django.db import models


def _new_track_id() -> str:
    return uuid.uuid4().hex[:24]


class TrackModel(models.Model):
    """Catalog track. Only the statistics fields are written by the sales flow."""

    id = models.CharField(primary_key=True, max_length=64, default=_new_track_id, editable=False)
    title = models.CharField(max_length=255)
    category = models.CharField(max_length=64, blank=True, default="")
    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    # Aggregates over completed sales, maintained incrementally
    sale_count = models.PositiveIntegerField(default=0)
    total_sold_price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "tracks"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.title} ({self.id})"
