"""Pydantic schemas for sales.

Request DTOs validate the admin/storefront sale payloads; ``SaleReadDTO``
is the single JSON shape a sale is rendered in, shared with the payments
API.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .domain import SaleStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateSaleDTO(_CamelModel):
    """Manual sale recorded by an operator or the storefront.

    Attributes:
        track_id: Purchased track.
        payment_method: Free-text label, ``manual`` when omitted.
        transaction_id: External reference, if any.
        payment_status: ``completed`` (default) or ``pending``.
    """

    track_id: str = Field(alias="trackId", min_length=1, max_length=64)
    payment_method: str = Field(default="manual", alias="paymentMethod", max_length=64)
    transaction_id: str = Field(default="", alias="transactionId", max_length=128)
    payment_status: SaleStatus = Field(default=SaleStatus.COMPLETED, alias="paymentStatus")

    @field_validator("payment_status")
    @classmethod
    def initial_status(cls, v: SaleStatus) -> SaleStatus:
        if v not in (SaleStatus.COMPLETED, SaleStatus.PENDING):
            raise ValueError("A new sale must be completed or pending")
        return v


class UpdateSaleDTO(_CamelModel):
    payment_status: SaleStatus | None = Field(default=None, alias="paymentStatus")
    payment_method: str | None = Field(default=None, alias="paymentMethod", max_length=64)
    transaction_id: str | None = Field(default=None, alias="transactionId", max_length=128)


class SaleReadDTO(_CamelModel):
    serial_id: str = Field(alias="saleSerialId")
    track_id: str | None = Field(default=None, alias="trackId")
    track_title: str = Field(alias="trackTitle")
    price: Decimal
    payment_status: SaleStatus = Field(alias="paymentStatus")
    payment_method: str = Field(alias="paymentMethod")
    payment_id: str | None = Field(default=None, alias="paymentId")
    transaction_id: str = Field(default="", alias="transactionId")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @field_serializer("price")
    def _price(self, v: Decimal) -> str:
        return f"{v:.2f}"

    @classmethod
    def from_model(cls, sale) -> "SaleReadDTO":
        return cls(
            serial_id=sale.serial_id,
            track_id=sale.track_id,
            track_title=sale.track_title,
            price=sale.price,
            payment_status=sale.payment_status,
            payment_method=sale.payment_method,
            payment_id=sale.payment_id,
            transaction_id=sale.transaction_id,
            created_at=sale.created_at,
            updated_at=sale.updated_at,
        )

    def as_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
