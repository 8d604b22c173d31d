"""Checkout orchestration: create a payment, settle its callback, query it.

A purchase moves through three states. It is *initiated* once the gateway
accepted the payment (nothing is stored locally), *confirmed* once the
gateway executed it, and *recorded* once the sale row and the track
statistics are written. Cancelled and failed payments only produce a
redirect.
"""

import logging
from decimal import Decimal
from urllib.parse import urlencode

from django.db import IntegrityError

from apps.catalog.repository import TrackRepository
from apps.catalog.statistics import TrackStatistics
from apps.sales.domain import InvalidSaleTransition, SaleStatus
from apps.sales.repository import SaleRepository
from apps.sales.schemas import SaleReadDTO
from apps.sales.services import SalesService

from .config import PaymentsConfig
from .domain import (
    CANCEL_STATUSES,
    CallbackOutcome,
    CallbackPage,
    CallbackParams,
    ConfigurationError,
    GatewayError,
    GatewayPort,
    GatewayRejection,
    PaymentSnapshot,
    PaymentValidationError,
    generate_invoice_reference,
)
from .idempotency import record_sale_once
from .signing import sign_context, verify_context

logger = logging.getLogger(__name__)

PAYMENT_INTENT = "sale"


class CheckoutService:
    """Purchase flow against one payment gateway.

    Attributes:
        gateway: Gateway port (HTTP client or stub).
        config: Redirect targets, callback URL and signing secret.
    """

    def __init__(
        self,
        gateway: GatewayPort,
        config: PaymentsConfig,
        tracks: TrackRepository,
        sales: SaleRepository,
        stats: TrackStatistics,
        sales_service: SalesService | None = None,
    ):
        self.gateway = gateway
        self.config = config
        self.tracks = tracks
        self.sales = sales
        self.stats = stats
        self.sales_service = sales_service or SalesService(sales, stats)

    # ---- CreatePayment ----
    def create_payment(self, track_id: str, redirect_url: str | None = None) -> dict:
        """Open a gateway payment for one track; never creates a sale.

        Args:
            track_id: Track being bought.
            redirect_url: Where the buyer should land after paying. Carried
                through the gateway inside the signed callback URL.

        Returns:
            dict: ``paymentID``, ``paymentURL``, ``merchantInvoiceNumber``,
            ``amount`` and ``trackTitle``.

        Raises:
            PaymentValidationError: ``TRACK_NOT_FOUND`` or ``INVALID_PRICE``.
            ConfigurationError: Gateway credentials are missing.
            GatewayError: The gateway refused or could not be reached.
        """
        track = self.tracks.get(track_id)
        if track is None:
            raise PaymentValidationError("Track not found", code="TRACK_NOT_FOUND")
        price = Decimal(track.price)
        if price <= 0:
            raise PaymentValidationError("Track price must be positive", code="INVALID_PRICE")

        invoice = generate_invoice_reference(track.pk)
        created = self.gateway.create_payment(price, invoice, PAYMENT_INTENT, self.callback_url(track.pk, redirect_url))
        logger.info(
            "payment created",
            extra={"paymentID": created.payment_id, "trackId": track.pk, "invoice": invoice},
        )
        return {
            "paymentID": created.payment_id,
            "paymentURL": created.redirect_url,
            "merchantInvoiceNumber": invoice,
            "amount": f"{price:.2f}",
            "trackTitle": track.title,
        }

    def callback_url(self, track_id: str = "", redirect_url: str | None = None, order_id: str = "") -> str:
        """Callback URL carrying the signed purchase context."""
        params = [("trackId", track_id)] if track_id else []
        if redirect_url:
            params.append(("redirectUrl", redirect_url))
        if order_id:
            params.append(("orderId", order_id))
        params.append(("sig", sign_context(track_id, redirect_url or "", order_id, self.config.signing_secret)))
        sep = "&" if "?" in self.config.callback_url else "?"
        return f"{self.config.callback_url}{sep}{urlencode(params)}"

    # ---- HandleCallback ----
    def handle_callback(self, params: CallbackParams) -> CallbackOutcome:
        """Settle a gateway callback and pick the buyer's landing page.

        Every input is untrusted. The purchase context is acted on only when
        its signature verifies; an unverified ``redirectUrl`` is ignored.

        Returns:
            CallbackOutcome: Never raises; workflow errors and unexpected
            failures after validation are encoded as the ``reason`` of a
            failure outcome (``error`` for the latter).
        """
        verified = verify_context(
            params.signature, params.track_id, params.redirect_url, params.order_id, self.config.signing_secret
        )
        base = self.config.redirect_base(params.redirect_url if verified else None)

        if not params.payment_id:
            return self._failed(base, params, "missing-payment-id")
        if params.status in CANCEL_STATUSES:
            logger.info("payment cancelled by buyer", extra={"paymentID": params.payment_id, "trackId": params.track_id})
            return CallbackOutcome(CallbackPage.CANCEL, base)
        if params.has_context and not verified:
            return self._failed(base, params, "invalid-signature")

        try:
            return self._settle(base, params)
        except Exception:
            logger.exception(
                "payment callback crashed", extra={"paymentID": params.payment_id, "trackId": params.track_id}
            )
            return self._failed(self.config.redirect_base(), params, "error")

    def _settle(self, base: str, params: CallbackParams) -> CallbackOutcome:
        existing = self.sales.get_by_payment_id(params.payment_id)
        if existing is not None:
            logger.info(
                "callback replay",
                extra={"paymentID": params.payment_id, "serial_id": existing.serial_id, "status": existing.payment_status},
            )
            if existing.payment_status != SaleStatus.COMPLETED.value:
                return self._failed(base, params, "invalid-sale-state")
            return self._success(base, existing)

        try:
            result = self.gateway.execute_payment(params.payment_id)
        except (GatewayError, ConfigurationError) as exc:
            logger.error(
                "payment execution error",
                extra={"paymentID": params.payment_id, "trackId": params.track_id, "error": exc.message},
            )
            return self._failed(self.config.redirect_base(), params, "error")

        if isinstance(result, GatewayRejection):
            return self._failed(base, params, "payment-failed", ("paymentID", params.payment_id))

        if not params.track_id:
            return self._settle_legacy_order(base, params, result.transaction_id)

        track = self.tracks.get(params.track_id)
        if track is None:
            return self._failed(base, params, "track-not-found")

        _, sale = record_sale_once(
            self.sales,
            self.stats,
            track,
            payment_id=params.payment_id,
            transaction_id=result.transaction_id,
            payment_method=self.config.gateway_name,
        )
        return self._success(base, sale)

    def _settle_legacy_order(self, base: str, params: CallbackParams, transaction_id: str) -> CallbackOutcome:
        """Complete a sale created before payment, located by ``orderId``."""
        sale = self.sales.get_by_serial(params.order_id) if params.order_id else None
        if sale is None:
            return self._failed(base, params, "missing-track-id")
        if sale.payment_id and sale.payment_id != params.payment_id:
            return self._failed(base, params, "invalid-sale-state")
        try:
            sale = self.sales_service.apply_status(
                sale,
                SaleStatus.COMPLETED,
                transaction_id=transaction_id,
                payment_method=self.config.gateway_name,
                payment_id=params.payment_id,
            )
        except (InvalidSaleTransition, IntegrityError):
            # IntegrityError: payment_id already recorded on another sale
            return self._failed(base, params, "invalid-sale-state")
        logger.info("legacy order completed", extra={"paymentID": params.payment_id, "serial_id": sale.serial_id})
        return CallbackOutcome(CallbackPage.SUCCESS, base, (("orderId", sale.serial_id),))

    def _success(self, base: str, sale) -> CallbackOutcome:
        query = [("orderId", sale.serial_id)]
        if sale.track_id:
            query.append(("trackId", sale.track_id))
        return CallbackOutcome(CallbackPage.SUCCESS, base, tuple(query))

    def _failed(self, base: str, params: CallbackParams, reason: str, *extra) -> CallbackOutcome:
        logger.warning(
            "payment callback failed",
            extra={"paymentID": params.payment_id, "trackId": params.track_id, "reason": reason},
        )
        return CallbackOutcome(CallbackPage.FAILED, base, (("reason", reason),) + tuple(extra))

    # ---- QueryStatus ----
    def query_status(self, payment_id: str) -> dict:
        """Gateway view of a payment next to the local sale, if any. Read-only.

        Raises:
            PaymentValidationError: ``MISSING_PAYMENT_ID`` for a blank id.
            ConfigurationError, GatewayError: As raised by the gateway port.
        """
        if not payment_id:
            raise PaymentValidationError("paymentID is required", code="MISSING_PAYMENT_ID")
        result = self.gateway.query_payment(payment_id)
        if isinstance(result, PaymentSnapshot):
            gateway_status = result.as_dict()
        else:
            gateway_status = {"statusCode": result.status_code, "statusMessage": result.status_message}
        sale = self.sales.get_by_payment(payment_id)
        return {
            "paymentID": payment_id,
            "gatewayStatus": gateway_status,
            "saleStatus": sale.payment_status if sale else None,
            "sale": SaleReadDTO.from_model(sale).as_json() if sale else None,
        }
