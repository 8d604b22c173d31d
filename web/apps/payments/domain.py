"""Domain types, errors and the gateway port for the payments flow.

This module holds the tagged result types returned by the payment gateway
port, the error taxonomy used by the orchestrators, the callback outcome
that the views turn into a browser redirect, and the invoice reference
generator.
"""

import secrets
import string
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, Union
from urllib.parse import urlencode


# ---- Errors ----
class PaymentError(Exception):
    """Base class for payment flow errors; ``code`` is a short machine code."""

    code = "PAYMENT_ERROR"

    def __init__(self, message: str = "", code: str | None = None):
        super().__init__(message or code or self.code)
        if code:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class PaymentValidationError(PaymentError, ValueError):
    """Rejected input, raised before any external call (HTTP 400)."""

    code = "VALIDATION_ERROR"


class ConfigurationError(PaymentError, RuntimeError):
    """Gateway credentials or endpoints missing; fatal to the request only."""

    code = "CONFIGURATION_ERROR"


class GatewayError(PaymentError):
    """Transport failure or non-success answer from the payment gateway.

    Attributes:
        operation: ``create``, ``execute``, ``query`` or ``refund``.
        status_code: Gateway status code when the gateway answered.
        status_message: Gateway message when the gateway answered.
        raw: Raw gateway payload, when there is one.
    """

    code = "GATEWAY_ERROR"

    PREFIXES = {
        "create": "Payment Creation Failed",
        "execute": "Payment Execution Failed",
        "query": "Payment Query Failed",
        "refund": "Refund Failed",
        "token": "Token Grant Failed",
    }

    def __init__(
        self,
        operation: str,
        detail: str,
        status_code: str | None = None,
        status_message: str | None = None,
        raw: dict | None = None,
        gateway: str = "bKash",
    ):
        prefix = self.PREFIXES.get(operation, "Gateway Call Failed")
        super().__init__(f"{gateway} {prefix}: {detail}")
        self.operation = operation
        self.status_code = status_code
        self.status_message = status_message
        self.raw = raw or {}


# ---- Gateway results ----
@dataclass(frozen=True)
class CreatedPayment:
    payment_id: str
    redirect_url: str
    status_code: str
    status_message: str = ""
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ExecutedPayment:
    """Successful execution; ``transaction_id`` falls back to the payment id."""

    payment_id: str
    transaction_id: str
    transaction_status: str
    amount: Decimal | None = None
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PaymentSnapshot:
    payment_id: str
    transaction_status: str
    status_code: str
    status_message: str = ""
    transaction_id: str | None = None
    amount: Decimal | None = None
    raw: dict = field(default_factory=dict, compare=False)

    def as_dict(self) -> dict:
        return {
            "transactionStatus": self.transaction_status,
            "statusCode": self.status_code,
            "statusMessage": self.status_message,
            "trxID": self.transaction_id,
            "amount": str(self.amount) if self.amount is not None else None,
        }


@dataclass(frozen=True)
class RefundedPayment:
    payment_id: str
    refund_id: str
    original_transaction_id: str
    amount: Decimal | None = None
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class GatewayRejection:
    """The gateway answered with a non-success status code."""

    operation: str
    status_code: str
    status_message: str
    raw: dict = field(default_factory=dict, compare=False)


ExecutionResult = Union[ExecutedPayment, GatewayRejection]
QueryResult = Union[PaymentSnapshot, GatewayRejection]
RefundResult = Union[RefundedPayment, GatewayRejection]


# ---- Port ----
class GatewayPort(Protocol):
    """Tokenized-checkout payment gateway used by the orchestrators."""

    def create_payment(self, amount: Decimal, invoice_ref: str, intent: str, callback_url: str) -> CreatedPayment:
        """Open a payment; raises ``GatewayError`` unless the gateway accepts it."""
        raise NotImplementedError()

    def execute_payment(self, payment_id: str) -> ExecutionResult:
        """Finalize a payment the buyer authorized at the gateway."""
        raise NotImplementedError()

    def query_payment(self, payment_id: str) -> QueryResult:
        """Read the gateway's view of a payment; no side effects."""
        raise NotImplementedError()

    def refund_payment(self, payment_id: str, amount: Decimal, transaction_id: str, reason: str) -> RefundResult:
        """Refund a completed payment."""
        raise NotImplementedError()


# ---- Invoice references ----
_INVOICE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invoice_reference(track_id: str) -> str:
    """Merchant invoice number ``TRK-<trackId>-<epoch ms>-<6 random>``."""
    suffix = "".join(secrets.choice(_INVOICE_ALPHABET) for _ in range(6))
    return f"TRK-{track_id}-{int(time.time() * 1000)}-{suffix}"


def format_amount(amount: Decimal) -> str:
    """Amount as the gateway expects it: a two-decimal string."""
    return f"{Decimal(amount):.2f}"


# ---- Callback ----
CANCEL_STATUSES = frozenset({"cancel", "cancelled"})


class CallbackPage(str, Enum):
    SUCCESS = "payment-success.html"
    FAILED = "payment-failed.html"
    CANCEL = "payment-cancel.html"


@dataclass(frozen=True)
class CallbackParams:
    """Query/body fields of a gateway callback; every field is untrusted."""

    payment_id: str = ""
    status: str = ""
    track_id: str = ""
    redirect_url: str = ""
    order_id: str = ""
    signature: str = ""

    @classmethod
    def from_mapping(cls, data: Any) -> "CallbackParams":
        def pick(*names):
            for name in names:
                value = data.get(name)
                if value:
                    return str(value).strip()
            return ""

        return cls(
            payment_id=pick("paymentID", "paymentId"),
            status=pick("status").lower(),
            track_id=pick("trackId"),
            redirect_url=pick("redirectUrl"),
            order_id=pick("orderId"),
            signature=pick("sig"),
        )

    @property
    def has_context(self) -> bool:
        return bool(self.track_id or self.order_id)


@dataclass(frozen=True)
class CallbackOutcome:
    """Where the buyer's browser goes next.

    Attributes:
        page: Target page under the redirect base.
        base: Redirect base without trailing slash.
        params: Query parameters appended to the page URL, in order.
    """

    page: CallbackPage
    base: str
    params: tuple = ()

    @property
    def reason(self) -> str | None:
        return dict(self.params).get("reason")

    @property
    def url(self) -> str:
        target = f"{self.base}/{self.page.value}"
        if not self.params:
            return target
        return f"{target}?{urlencode(self.params)}"
