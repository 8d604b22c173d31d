from decimal import Decimal

from django.db import models

from apps.catalog.models import TrackModel

from .domain import SaleStatus, generate_serial_id


class SaleModel(models.Model):
    # Public order reference, unique
    serial_id = models.CharField(max_length=32, unique=True, default=generate_serial_id, editable=False)

    # Snapshot of the track at sale time; survives track deletion
    track = models.ForeignKey(TrackModel, null=True, blank=True, on_delete=models.SET_NULL, related_name="sales")
    track_title = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    class Status(models.TextChoices):
        PENDING = SaleStatus.PENDING.value
        COMPLETED = SaleStatus.COMPLETED.value
        FAILED = SaleStatus.FAILED.value
        REFUNDED = SaleStatus.REFUNDED.value

    payment_status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_method = models.CharField(max_length=64, blank=True, default="")

    # Gateway payment id: idempotency key of the checkout callback
    payment_id = models.CharField(max_length=128, unique=True, null=True, blank=True)
    transaction_id = models.CharField(max_length=128, blank=True, default="", db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "sales"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.serial_id} {self.payment_status}"
