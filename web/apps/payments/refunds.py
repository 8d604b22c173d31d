"""Refund orchestration: the reverse of a recorded sale.

The sale must already exist and be ``completed``. The gateway is asked
first; only an accepted refund moves the sale to ``refunded`` and takes the
sale price back out of the track statistics, both in one transaction.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from apps.sales.domain import SaleStatus
from apps.sales.repository import SaleRepository
from apps.sales.services import SalesService

from .domain import GatewayPort, GatewayRejection, PaymentError, PaymentValidationError

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Customer request"


class RefundRejected(PaymentError):
    """The gateway declined the refund; ``raw`` is its response."""

    code = "REFUND_FAILED"

    def __init__(self, rejection: GatewayRejection):
        super().__init__(rejection.status_message or "Refund failed")
        self.rejection = rejection
        self.raw = rejection.raw


@dataclass(frozen=True)
class RefundReceipt:
    refund_id: str
    serial_id: str
    amount: Decimal
    raw: dict = field(default_factory=dict, compare=False)

    def as_dict(self) -> dict:
        return {"refundID": self.refund_id, "message": "Refund processed successfully", "orderId": self.serial_id}


def _parse_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise PaymentValidationError("Refund amount is not a number", code="INVALID_AMOUNT")
    if not amount.is_finite():
        raise PaymentValidationError("Refund amount is not a number", code="INVALID_AMOUNT")
    return amount


class RefundService:
    def __init__(self, gateway: GatewayPort, sales: SaleRepository, sales_service: SalesService):
        self.gateway = gateway
        self.sales = sales
        self.sales_service = sales_service

    def refund(self, payment_id: str, amount, transaction_id: str, reason: str = "") -> RefundReceipt:
        """Refund the completed sale recorded for ``payment_id``.

        Args:
            payment_id: Gateway payment id; matched against the sale's
                ``payment_id`` and, for older rows, its ``transaction_id``.
            amount: Amount to refund, ``0 < amount <= sale price``.
            transaction_id: Gateway ``trxID`` of the original payment.
            reason: Free text forwarded to the gateway.

        Returns:
            RefundReceipt: Gateway refund id and the refunded sale.

        Raises:
            PaymentValidationError: ``MISSING_FIELDS``, ``SALE_NOT_FOUND``,
                ``SALE_NOT_REFUNDABLE`` or ``INVALID_AMOUNT``; the gateway is
                not called.
            RefundRejected: The gateway declined; the sale is unchanged.
            ConfigurationError, GatewayError: As raised by the gateway port.
        """
        if not payment_id or not transaction_id or amount in (None, ""):
            raise PaymentValidationError("paymentID, amount and trxID are required", code="MISSING_FIELDS")
        sale = self.sales.get_by_payment(payment_id)
        if sale is None:
            raise PaymentValidationError("No sale recorded for this payment", code="SALE_NOT_FOUND")
        if sale.payment_status != SaleStatus.COMPLETED.value:
            raise PaymentValidationError(
                f"Only completed sales can be refunded (sale is {sale.payment_status})", code="SALE_NOT_REFUNDABLE"
            )
        value = _parse_amount(amount)
        if value <= 0 or value > sale.price:
            raise PaymentValidationError("Refund amount must be positive and at most the sale price", code="INVALID_AMOUNT")

        result = self.gateway.refund_payment(payment_id, value, transaction_id, reason or DEFAULT_REASON)
        if isinstance(result, GatewayRejection):
            logger.warning(
                "refund rejected by gateway",
                extra={"paymentID": payment_id, "serial_id": sale.serial_id, "statusCode": result.status_code},
            )
            raise RefundRejected(result)

        sale = self.sales_service.apply_status(sale, SaleStatus.REFUNDED)
        logger.info(
            "sale refunded",
            extra={"paymentID": payment_id, "serial_id": sale.serial_id, "refundID": result.refund_id, "amount": str(value)},
        )
        return RefundReceipt(refund_id=result.refund_id, serial_id=sale.serial_id, amount=value, raw=result.raw)
