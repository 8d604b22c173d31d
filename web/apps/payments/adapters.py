"""In-process stub adapter for the payment gateway port.

``GatewayStub`` implements ``GatewayPort`` without any network calls. It is
wired by the providers when ``USE_HTTP_ADAPTERS`` is false and is used by
unit tests and local development where deterministic behavior is useful.
"""

import threading
import uuid
from decimal import Decimal

from .domain import (
    CreatedPayment,
    ExecutedPayment,
    ExecutionResult,
    GatewayError,
    GatewayPort,
    GatewayRejection,
    PaymentSnapshot,
    QueryResult,
    RefundedPayment,
    RefundResult,
    format_amount,
)

SUCCESS = "0000"


class GatewayStub(GatewayPort):
    """Deterministic gateway.

    Rules:
        - ``create_payment`` rejects non-positive amounts.
        - ``execute_payment`` rejects payment ids starting with ``FAIL``;
          any other id succeeds, including ids this stub never created.
        - ``refund_payment`` rejects a second refund of the same payment.

    Attributes:
        payments: Payment id to state, shared by all calls on the instance.
    """

    def __init__(self, checkout_url: str = "https://sandbox.invalid/checkout"):
        self.checkout_url = checkout_url
        self.payments: dict[str, dict] = {}
        self._lock = threading.Lock()

    def create_payment(self, amount: Decimal, invoice_ref: str, intent: str, callback_url: str) -> CreatedPayment:
        if Decimal(amount) <= 0:
            raise GatewayError("create", "amount must be positive", status_code="2001")
        payment_id = f"TR{uuid.uuid4().hex[:18].upper()}"
        with self._lock:
            self.payments[payment_id] = {
                "amount": Decimal(amount),
                "invoice": invoice_ref,
                "callback_url": callback_url,
                "status": "Initiated",
            }
        return CreatedPayment(
            payment_id=payment_id,
            redirect_url=f"{self.checkout_url}/{payment_id}",
            status_code=SUCCESS,
            status_message="Successful",
            raw={"paymentID": payment_id, "amount": format_amount(amount), "merchantInvoiceNumber": invoice_ref},
        )

    def execute_payment(self, payment_id: str) -> ExecutionResult:
        if payment_id.upper().startswith("FAIL"):
            return GatewayRejection("execute", "2056", "Invalid Payment State")
        with self._lock:
            state = self.payments.setdefault(payment_id, {"amount": None, "status": "Initiated"})
            state["status"] = "Completed"
            state.setdefault("trx_id", f"TRX{payment_id[-8:].upper()}")
        return ExecutedPayment(
            payment_id=payment_id,
            transaction_id=state["trx_id"],
            transaction_status="Completed",
            amount=state["amount"],
        )

    def query_payment(self, payment_id: str) -> QueryResult:
        state = self.payments.get(payment_id)
        if state is None:
            return GatewayRejection("query", "2117", "Payment not found")
        return PaymentSnapshot(
            payment_id=payment_id,
            transaction_status=state["status"],
            status_code=SUCCESS,
            status_message="Successful",
            transaction_id=state.get("trx_id"),
            amount=state["amount"],
        )

    def refund_payment(self, payment_id: str, amount: Decimal, transaction_id: str, reason: str) -> RefundResult:
        with self._lock:
            state = self.payments.setdefault(payment_id, {"amount": Decimal(amount), "status": "Completed"})
            if state.get("refund_id"):
                return GatewayRejection("refund", "2071", "Already refunded", raw={"paymentID": payment_id})
            state["refund_id"] = f"RF{uuid.uuid4().hex[:10].upper()}"
            state["status"] = "Refunded"
        return RefundedPayment(
            payment_id=payment_id,
            refund_id=state["refund_id"],
            original_transaction_id=transaction_id,
            amount=Decimal(amount),
        )
