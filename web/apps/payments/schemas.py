"""Pydantic schemas for the payments API."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreatePaymentDTO(BaseModel):
    """Body of ``POST /api/payments/{gateway}/create``.

    Attributes:
        track_id: Track being bought.
        redirect_url: Optional absolute http(s) URL the buyer returns to.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    track_id: str = Field(alias="trackId", min_length=1, max_length=64)
    redirect_url: str | None = Field(default=None, alias="redirectUrl", max_length=512)

    @field_validator("track_id")
    @classmethod
    def strip_track_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("trackId is required")
        return v

    @field_validator("redirect_url")
    @classmethod
    def validate_redirect(cls, v: str | None) -> str | None:
        if not v:
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("redirectUrl must be an absolute http(s) URL")
        return v


class RefundDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    payment_id: str = Field(alias="paymentID", min_length=1, max_length=128)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    transaction_id: str = Field(alias="trxID", min_length=1, max_length=128)
    reason: str = Field(default="", max_length=255)
