"""HTTP client for the bKash tokenized-checkout API.

This module implements the ``GatewayPort`` over ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by the gateway middleware.
- A circuit breaker shared by every client of the gateway, so an unhealthy
    gateway is not hammered from every worker thread, with HALF_OPEN probing
    after a timeout.
- Token caching: the ``id_token`` from the token grant is reused until
    shortly before it expires.

Calls are never retried: create and execute are not idempotent on the
merchant side.
"""

import logging
import threading
import time
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .config import PaymentsConfig
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

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger(__name__)

# Refresh the token this many seconds before the gateway says it expires.
TOKEN_LEEWAY_SECS = 60.0


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Raises:
            RuntimeError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN probe flag after a call finishes."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False

    def reset(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._opened_at = 0.0
            self._half_open_probe_in_flight = False


_gateway_cb = CircuitBreaker(
    "bkash",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def gateway_circuit_state() -> str:
    return _gateway_cb.state


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers: dict[str, str] = {"Accept": "application/json"}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _decimal(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _message(data: dict) -> str:
    return str(data.get("statusMessage") or data.get("errorMessage") or data.get("message") or "Unknown error")


# ---------------- Gateway Adapter ---------------- #

class HttpGatewayClient(GatewayPort):
    """bKash tokenized-checkout client with token caching and circuit breaker.

    Credentials are checked before every call, so a misconfigured deployment
    fails with ``ConfigurationError`` without touching the network.
    """

    def __init__(self, config: PaymentsConfig, breaker: CircuitBreaker | None = None):
        self.config = config
        self.breaker = breaker or _gateway_cb
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}/tokenized/checkout/{path}"

    def _post(self, operation: str, path: str, payload: dict, headers: dict) -> dict:
        """POST ``payload`` and return the decoded JSON object.

        Transport errors and 5xx answers count as circuit failures. Any
        other answer, including a gateway-level rejection, closes the
        circuit: the gateway is reachable and deciding.

        Raises:
            GatewayError: Circuit open, transport error, 5xx, or a body that
                is not a JSON object.
        """
        try:
            self.breaker.before_call()
        except RuntimeError as exc:
            raise GatewayError(operation, str(exc)) from exc
        try:
            try:
                with httpx.Client(timeout=self.config.timeout) as client:
                    resp = client.post(self._url(path), json=payload, headers=_request_headers(headers))
            except httpx.RequestError as exc:
                self.breaker.on_failure()
                logger.warning("gateway transport error", extra={"operation": operation, "error": str(exc)})
                raise GatewayError(operation, str(exc) or exc.__class__.__name__) from exc
            if resp.status_code >= 500:
                self.breaker.on_failure()
                raise GatewayError(operation, f"HTTP {resp.status_code}")
            self.breaker.on_success()
            try:
                data = resp.json()
            except ValueError as exc:
                raise GatewayError(operation, f"invalid response (HTTP {resp.status_code})") from exc
            if not isinstance(data, dict):
                raise GatewayError(operation, f"invalid response (HTTP {resp.status_code})")
            return data
        finally:
            self.breaker.on_finish()

    def _id_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            data = self._post(
                "token",
                "token/grant",
                {"app_key": self.config.app_key, "app_secret": self.config.app_secret},
                {"username": self.config.username, "password": self.config.password},
            )
            token = data.get("id_token")
            if not token:
                # Grant responses can echo credentials; never attach them as raw.
                raise GatewayError("token", _message(data), status_code=data.get("statusCode"))
            try:
                expires_in = float(data.get("expires_in") or 3600)
            except (TypeError, ValueError):
                expires_in = 3600.0
            self._token = token
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_LEEWAY_SECS, 0.0)
            logger.info("gateway token granted", extra={"expires_in": expires_in})
            return token

    def _call(self, operation: str, path: str, payload: dict) -> dict:
        self.config.require_credentials()
        headers = {"Authorization": self._id_token(), "X-APP-Key": self.config.app_key}
        return self._post(operation, path, payload, headers)

    def _succeeded(self, data: dict) -> bool:
        return str(data.get("statusCode", "")) == self.config.success_code

    def create_payment(self, amount: Decimal, invoice_ref: str, intent: str, callback_url: str) -> CreatedPayment:
        data = self._call(
            "create",
            "create",
            {
                "mode": "0011",
                "payerReference": invoice_ref,
                "callbackURL": callback_url,
                "amount": format_amount(amount),
                "currency": self.config.currency,
                "intent": intent,
                "merchantInvoiceNumber": invoice_ref,
            },
        )
        if not self._succeeded(data) or not data.get("paymentID"):
            raise GatewayError(
                "create",
                _message(data),
                status_code=data.get("statusCode"),
                status_message=data.get("statusMessage"),
                raw=data,
            )
        return CreatedPayment(
            payment_id=data["paymentID"],
            redirect_url=data.get("bkashURL") or data.get("checkoutURL") or "",
            status_code=data["statusCode"],
            status_message=data.get("statusMessage", ""),
            raw=data,
        )

    def execute_payment(self, payment_id: str) -> ExecutionResult:
        data = self._call("execute", "execute", {"paymentID": payment_id})
        if not self._succeeded(data):
            logger.warning(
                "gateway rejected execution",
                extra={"paymentID": payment_id, "statusCode": data.get("statusCode")},
            )
            return GatewayRejection("execute", str(data.get("statusCode", "")), _message(data), raw=data)
        return ExecutedPayment(
            payment_id=data.get("paymentID") or payment_id,
            transaction_id=data.get("trxID") or payment_id,
            transaction_status=data.get("transactionStatus", ""),
            amount=_decimal(data.get("amount")),
            raw=data,
        )

    def query_payment(self, payment_id: str) -> QueryResult:
        data = self._call("query", "payment/status", {"paymentID": payment_id})
        if not self._succeeded(data):
            return GatewayRejection("query", str(data.get("statusCode", "")), _message(data), raw=data)
        return PaymentSnapshot(
            payment_id=data.get("paymentID") or payment_id,
            transaction_status=data.get("transactionStatus", ""),
            status_code=data["statusCode"],
            status_message=data.get("statusMessage", ""),
            transaction_id=data.get("trxID"),
            amount=_decimal(data.get("amount")),
            raw=data,
        )

    def refund_payment(self, payment_id: str, amount: Decimal, transaction_id: str, reason: str) -> RefundResult:
        data = self._call(
            "refund",
            "payment/refund",
            {
                "paymentID": payment_id,
                "amount": format_amount(amount),
                "trxID": transaction_id,
                "sku": "refund",
                "reason": reason or "Customer request",
            },
        )
        # Successful refunds may omit statusCode; a refundTrxID is the proof.
        code = data.get("statusCode")
        if (code is not None and str(code) != self.config.success_code) or not data.get("refundTrxID"):
            return GatewayRejection("refund", str(code or ""), _message(data), raw=data)
        return RefundedPayment(
            payment_id=payment_id,
            refund_id=data["refundTrxID"],
            original_transaction_id=data.get("originalTrxID") or transaction_id,
            amount=_decimal(data.get("amount")),
            raw=data,
        )
