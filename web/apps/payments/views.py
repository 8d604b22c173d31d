"""HTTP views for the payments app.

Views are kept small: they validate requests (via Pydantic), delegate to
the orchestrators obtained from ``providers`` and map the outcome to an HTTP
response. ``{gateway}`` in every route names a registered gateway; unknown
names answer 404.

JSON endpoints map errors the same way:

- ``PaymentValidationError`` and DTO errors → 400 ``{"detail": CODE, "message": ...}``.
- ``ConfigurationError`` → 500 ``CONFIGURATION_ERROR``.
- ``GatewayError`` → 502 ``GATEWAY_ERROR``.

The raw ``error`` text is added only when ``DEBUG`` is on. The callback is
different: it is a browser redirect, so it always answers 302, throttled
requests included (``reason=too-many-requests``).
"""

import logging

from django.conf import settings
from django.http import HttpResponseRedirect
from pydantic import ValidationError
from rest_framework import status
from rest_framework.exceptions import Throttled
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.sales.domain import InvalidSaleTransition
from gateway.permissions import HasAdminToken, HasStorefrontApiKey

from .config import PaymentsConfig
from .domain import (
    CallbackOutcome,
    CallbackPage,
    CallbackParams,
    ConfigurationError,
    GatewayError,
    PaymentValidationError,
)
from .providers import get_checkout_service, get_refund_service
from .refunds import RefundRejected
from .schemas import CreatePaymentDTO, RefundDTO

logger = logging.getLogger(__name__)


def _error(detail: str, message: str, status_code: int, exc: Exception | None = None, **extra) -> Response:
    body = {"detail": detail, "message": message, **extra}
    if exc is not None and settings.DEBUG:
        body["error"] = repr(exc)
    return Response(body, status=status_code)


def _invalid_payload(exc: ValidationError) -> Response:
    first = exc.errors()[0] if exc.errors() else {}
    return _error("VALIDATION_ERROR", first.get("msg", "Invalid request body"), status.HTTP_400_BAD_REQUEST, exc)


def _gateway_failure(exc: Exception) -> Response:
    """Map configuration and gateway errors raised by an orchestrator."""
    if isinstance(exc, ConfigurationError):
        logger.error("payment gateway misconfigured", extra={"error": exc.message})
        return _error(exc.code, "Payment gateway is not configured", status.HTTP_500_INTERNAL_SERVER_ERROR, exc)
    logger.error("payment gateway error", extra={"error": exc.message, "operation": getattr(exc, "operation", None)})
    return _error("GATEWAY_ERROR", exc.message, status.HTTP_502_BAD_GATEWAY, exc)


class CreatePaymentView(APIView):
    """Open a gateway payment for a track; no sale is recorded here."""

    permission_classes = [HasStorefrontApiKey]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments_create"

    def post(self, request, gateway: str):
        """Create a payment.

        Returns:
            Response: 200 with ``{paymentID, paymentURL, merchantInvoiceNumber,
            amount, trackTitle}``; 400 for an unknown track, a non-positive
            price or an invalid body; 500/502 for gateway problems.
        """
        try:
            dto = CreatePaymentDTO.model_validate(request.data)
        except ValidationError as e:
            return _invalid_payload(e)

        service = get_checkout_service(gateway)
        try:
            body = service.create_payment(dto.track_id, dto.redirect_url)
        except PaymentValidationError as e:
            return _error(e.code, e.message, status.HTTP_400_BAD_REQUEST)
        except (ConfigurationError, GatewayError) as e:
            return _gateway_failure(e)
        return Response(body, status=status.HTTP_200_OK)


class PaymentCallbackView(APIView):
    """Gateway redirect back to the merchant; always answers 302."""

    authentication_classes = []
    permission_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments_callback"

    def get(self, request, gateway: str):
        return self._settle(gateway, request.query_params)

    def post(self, request, gateway: str):
        data = request.query_params.dict()
        body = request.data
        data.update(body.dict() if hasattr(body, "dict") else dict(body or {}))
        return self._settle(gateway, data)

    def handle_exception(self, exc):
        if isinstance(exc, Throttled):
            outcome = CallbackOutcome(
                CallbackPage.FAILED, PaymentsConfig.from_settings().redirect_base(), (("reason", "too-many-requests"),)
            )
            logger.warning("payment callback throttled", extra={"paymentID": self.request.query_params.get("paymentID")})
            return HttpResponseRedirect(outcome.url)
        return super().handle_exception(exc)

    def _settle(self, gateway: str, data) -> HttpResponseRedirect:
        service = get_checkout_service(gateway)
        outcome = service.handle_callback(CallbackParams.from_mapping(data))
        logger.info(
            "payment callback handled",
            extra={"page": outcome.page.value, "reason": outcome.reason, "paymentID": data.get("paymentID")},
        )
        return HttpResponseRedirect(outcome.url)


class PaymentStatusView(APIView):
    permission_classes = [HasStorefrontApiKey]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments_status"

    def get(self, request, gateway: str, payment_id: str):
        service = get_checkout_service(gateway)
        try:
            body = service.query_status(payment_id)
        except PaymentValidationError as e:
            return _error(e.code, e.message, status.HTTP_400_BAD_REQUEST)
        except (ConfigurationError, GatewayError) as e:
            return _gateway_failure(e)
        return Response(body, status=status.HTTP_200_OK)


class RefundView(APIView):
    """Refund a completed sale (admin only)."""

    permission_classes = [HasAdminToken]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments_refund"

    def post(self, request, gateway: str):
        """Refund a payment.

        Returns:
            Response: 200 with ``{refundID, message, orderId}``; 400 when no
            completed sale matches, the amount is invalid, or the gateway
            declines (its payload under ``gateway``); 500/502 for gateway
            problems.
        """
        try:
            dto = RefundDTO.model_validate(request.data)
        except ValidationError as e:
            return _invalid_payload(e)

        service = get_refund_service(gateway)
        try:
            receipt = service.refund(dto.payment_id, dto.amount, dto.transaction_id, dto.reason)
        except PaymentValidationError as e:
            return _error(e.code, e.message, status.HTTP_400_BAD_REQUEST)
        except InvalidSaleTransition as e:
            return _error("SALE_NOT_REFUNDABLE", e.message, status.HTTP_400_BAD_REQUEST)
        except RefundRejected as e:
            return _error(e.code, e.message, status.HTTP_400_BAD_REQUEST, gateway=e.raw)
        except (ConfigurationError, GatewayError) as e:
            return _gateway_failure(e)
        return Response(receipt.as_dict(), status=status.HTTP_200_OK)
