"""Orchestrator tests for create, callback and refund against the stub gateway."""
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest
from django.db import IntegrityError

from apps.catalog.models import TrackModel
from apps.catalog.repository import TrackRepository
from apps.catalog.statistics import TrackStatistics
from apps.payments.adapters import GatewayStub
from apps.payments.checkout import CheckoutService
from apps.payments.config import PaymentsConfig
from apps.payments.domain import CallbackPage, CallbackParams, GatewayError, PaymentValidationError
from apps.payments.refunds import RefundRejected, RefundService
from apps.payments.signing import sign_context
from apps.sales.domain import SaleStatus
from apps.sales.models import SaleModel
from apps.sales.repository import SaleRepository
from apps.sales.services import SalesService

SECRET = "unit-secret"
BASE = "https://shop.example.com"


class CountingGateway(GatewayStub):
    def __init__(self):
        super().__init__()
        self.executed = []

    def execute_payment(self, payment_id):
        self.executed.append(payment_id)
        return super().execute_payment(payment_id)


class BrokenGateway(GatewayStub):
    def execute_payment(self, payment_id):
        raise GatewayError("execute", "connection refused")


def _config(**overrides):
    values = dict(callback_url="http://api.test/api/payments/bkash/callback", portfolio_url=BASE + "/", signing_secret=SECRET)
    values.update(overrides)
    return PaymentsConfig(**values)


def _checkout(gateway=None, **config):
    sales, stats = SaleRepository(), TrackStatistics()
    return CheckoutService(gateway or CountingGateway(), _config(**config), TrackRepository(), sales, stats, SalesService(sales, stats))


def _callback(payment_id="TRPAY1", status="success", track_id="T1", redirect_url="", order_id="", sig=None):
    if sig is None:
        sig = sign_context(track_id, redirect_url, order_id, SECRET)
    return CallbackParams(
        payment_id=payment_id, status=status, track_id=track_id, redirect_url=redirect_url, order_id=order_id, signature=sig
    )


def _stats(track_id="T1"):
    t = TrackModel.objects.get(pk=track_id)
    return t.sale_count, t.total_sold_price


# ---- CreatePayment ----

@pytest.mark.django_db
def test_create_payment_returns_gateway_url_and_invoice(make_track):
    make_track("T1", price="500.00", title="Night Drive")
    body = _checkout().create_payment("T1")
    assert body["paymentURL"]
    assert body["merchantInvoiceNumber"].startswith("TRK-T1-")
    assert body["amount"] == "500.00"
    assert body["trackTitle"] == "Night Drive"
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_create_payment_embeds_signed_context_in_callback_url(make_track):
    make_track("T1")
    gateway = CountingGateway()
    body = _checkout(gateway).create_payment("T1", "https://portfolio.example.com/")
    callback = gateway.payments[body["paymentID"]]["callback_url"]
    qs = parse_qs(urlparse(callback).query)
    assert qs["trackId"] == ["T1"]
    assert qs["redirectUrl"] == ["https://portfolio.example.com/"]
    assert qs["sig"] == [sign_context("T1", "https://portfolio.example.com/", "", SECRET)]


@pytest.mark.django_db
@pytest.mark.parametrize("track_id,price,code", [("missing", None, "TRACK_NOT_FOUND"), ("T0", "0.00", "INVALID_PRICE")])
def test_create_payment_validation(make_track, track_id, price, code):
    if price is not None:
        make_track(track_id, price=price)
    with pytest.raises(PaymentValidationError) as exc:
        _checkout().create_payment(track_id)
    assert exc.value.code == code


# ---- HandleCallback ----

@pytest.mark.django_db
def test_successful_callback_records_one_sale_and_redirects(make_track):
    make_track("T1", price="500.00")
    outcome = _checkout().handle_callback(_callback())

    sale = SaleModel.objects.get()
    assert sale.payment_status == "completed"
    assert sale.price == Decimal("500.00")
    assert sale.payment_id == "TRPAY1"
    assert sale.payment_method == "bKash"
    assert _stats() == (1, Decimal("500.00"))
    assert outcome.url == f"{BASE}/payment-success.html?orderId={sale.serial_id}&trackId=T1"


@pytest.mark.django_db
def test_replayed_callback_is_idempotent(make_track):
    make_track("T1", price="500.00")
    gateway = CountingGateway()
    svc = _checkout(gateway)
    first = svc.handle_callback(_callback())
    second = svc.handle_callback(_callback())

    assert SaleModel.objects.count() == 1
    assert _stats() == (1, Decimal("500.00"))
    assert first.url == second.url
    assert gateway.executed == ["TRPAY1"]


@pytest.mark.django_db
def test_cancel_redirects_without_gateway_call(make_track):
    make_track("T1")
    gateway = CountingGateway()
    outcome = _checkout(gateway).handle_callback(_callback(status="cancel"))
    assert outcome.url == f"{BASE}/payment-cancel.html"
    assert gateway.executed == []
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_missing_payment_id_has_no_side_effects(make_track):
    make_track("T1")
    gateway = CountingGateway()
    outcome = _checkout(gateway).handle_callback(_callback(payment_id=""))
    assert outcome.url == f"{BASE}/payment-failed.html?reason=missing-payment-id"
    assert gateway.executed == []
    assert _stats() == (0, Decimal("0.00"))


@pytest.mark.django_db
def test_failed_execution_records_nothing(make_track):
    make_track("T1")
    outcome = _checkout().handle_callback(_callback(payment_id="FAIL123"))
    assert outcome.url == f"{BASE}/payment-failed.html?reason=payment-failed&paymentID=FAIL123"
    assert SaleModel.objects.count() == 0
    assert _stats() == (0, Decimal("0.00"))


@pytest.mark.django_db
def test_gateway_error_maps_to_error_reason(make_track):
    make_track("T1")
    outcome = _checkout(BrokenGateway()).handle_callback(_callback())
    assert outcome.reason == "error"
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_unsigned_context_is_rejected_before_execution(make_track):
    make_track("T1")
    gateway = CountingGateway()
    outcome = _checkout(gateway).handle_callback(_callback(sig="forged"))
    assert outcome.reason == "invalid-signature"
    assert gateway.executed == []


@pytest.mark.django_db
def test_tampered_redirect_url_is_not_used(make_track):
    make_track("T1")
    params = _callback(redirect_url="https://portfolio.example.com")
    tampered = CallbackParams(**{**params.__dict__, "redirect_url": "https://evil.example.net"})
    outcome = _checkout().handle_callback(tampered)
    assert outcome.base == BASE
    assert outcome.reason == "invalid-signature"


@pytest.mark.django_db
def test_verified_redirect_url_wins_and_loses_trailing_slash(make_track):
    make_track("T1")
    outcome = _checkout().handle_callback(_callback(status="cancel", redirect_url="https://portfolio.example.com/"))
    assert outcome.url == "https://portfolio.example.com/payment-cancel.html"


@pytest.mark.django_db
def test_redirect_base_falls_back_to_frontend_then_localhost(make_track):
    make_track("T1")
    params = _callback(status="cancel")
    assert _checkout(portfolio_url="", frontend_url="https://front.example.com").handle_callback(params).base == "https://front.example.com"
    assert _checkout(portfolio_url="").handle_callback(params).base == "http://localhost:3000"


@pytest.mark.django_db
def test_unknown_track_after_success(make_track):
    outcome = _checkout().handle_callback(_callback(track_id="GONE"))
    assert outcome.reason == "track-not-found"
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_success_without_any_context_is_missing_track_id():
    outcome = _checkout().handle_callback(_callback(track_id="", sig=""))
    assert outcome.reason == "missing-track-id"


@pytest.mark.django_db
def test_legacy_order_id_completes_pending_sale(make_track):
    track = make_track("T1", price="500.00")
    sales, stats = SaleRepository(), TrackStatistics()
    pending = SalesService(sales, stats).record_manual_sale(track, status=SaleStatus.PENDING)

    outcome = _checkout().handle_callback(_callback(track_id="", order_id=pending.serial_id))

    pending.refresh_from_db()
    assert pending.payment_status == "completed"
    assert pending.payment_method == "bKash"
    assert outcome.url == f"{BASE}/payment-success.html?orderId={pending.serial_id}"
    assert _stats() == (1, Decimal("500.00"))


@pytest.mark.django_db
def test_legacy_order_replay_and_refund_find_the_sale_by_payment_id(make_track):
    track = make_track("T1", price="500.00")
    sales, stats = SaleRepository(), TrackStatistics()
    pending = SalesService(sales, stats).record_manual_sale(track, status=SaleStatus.PENDING)
    gateway = CountingGateway()
    svc = _checkout(gateway)
    params = _callback(track_id="", order_id=pending.serial_id)

    first = svc.handle_callback(params)
    second = svc.handle_callback(params)

    pending.refresh_from_db()
    assert pending.payment_id == "TRPAY1"
    assert gateway.executed == ["TRPAY1"]
    assert first.page is CallbackPage.SUCCESS
    assert second.page is CallbackPage.SUCCESS
    assert second.params[0] == ("orderId", pending.serial_id)
    assert _stats() == (1, Decimal("500.00"))

    _refunds(gateway).refund("TRPAY1", Decimal("500.00"), pending.transaction_id, "")
    pending.refresh_from_db()
    assert pending.payment_status == "refunded"
    assert _stats() == (0, Decimal("0.00"))


@pytest.mark.django_db
def test_legacy_order_bound_to_another_payment_is_not_rebound(make_track):
    track = make_track("T1", price="500.00")
    sales, stats = SaleRepository(), TrackStatistics()
    pending = SalesService(sales, stats).record_manual_sale(track, status=SaleStatus.PENDING)
    svc = _checkout()
    svc.handle_callback(_callback(payment_id="TRPAY1", track_id="", order_id=pending.serial_id))

    outcome = svc.handle_callback(_callback(payment_id="TRPAY2", track_id="", order_id=pending.serial_id))

    pending.refresh_from_db()
    assert outcome.reason == "invalid-sale-state"
    assert pending.payment_id == "TRPAY1"
    assert _stats() == (1, Decimal("500.00"))


@pytest.mark.django_db
def test_manual_sale_sharing_the_gateway_reference_does_not_skip_execution(make_track):
    track = make_track("T1", price="500.00")
    sales, stats = SaleRepository(), TrackStatistics()
    manual = SalesService(sales, stats).record_manual_sale(track, transaction_id="TRPAY1", status=SaleStatus.PENDING)
    gateway = CountingGateway()

    outcome = _checkout(gateway).handle_callback(_callback())

    recorded = SaleModel.objects.get(payment_id="TRPAY1")
    assert gateway.executed == ["TRPAY1"]
    assert recorded.pk != manual.pk
    assert recorded.payment_status == "completed"
    assert outcome.url == f"{BASE}/payment-success.html?orderId={recorded.serial_id}&trackId=T1"
    assert _stats() == (1, Decimal("500.00"))


@pytest.mark.django_db
def test_replay_after_refund_lands_on_failure_page(make_track):
    make_track("T1", price="500.00")
    gateway = CountingGateway()
    svc = _checkout(gateway)
    svc.handle_callback(_callback())
    _refunds(gateway).refund("TRPAY1", Decimal("500.00"), "TX", "")

    outcome = svc.handle_callback(_callback())

    assert outcome.page is CallbackPage.FAILED
    assert outcome.reason == "invalid-sale-state"
    assert gateway.executed == ["TRPAY1"]
    assert _stats() == (0, Decimal("0.00"))


@pytest.mark.django_db
def test_unexpected_error_after_execution_redirects_with_error_reason(make_track, monkeypatch):
    make_track("T1", price="500.00")

    def collide(self, *args, **kwargs):
        raise IntegrityError("duplicate serial_id")

    monkeypatch.setattr(SaleRepository, "create", collide)
    outcome = _checkout().handle_callback(_callback(redirect_url="https://portfolio.example.com"))

    assert outcome.url == f"{BASE}/payment-failed.html?reason=error"
    assert SaleModel.objects.count() == 0
    assert _stats() == (0, Decimal("0.00"))


# ---- QueryStatus ----

@pytest.mark.django_db
def test_query_status_joins_gateway_and_sale(make_track):
    make_track("T1")
    svc = _checkout()
    svc.handle_callback(_callback())
    body = svc.query_status("TRPAY1")
    assert body["gatewayStatus"]["transactionStatus"] == "Completed"
    assert body["saleStatus"] == "completed"
    assert body["sale"]["paymentId"] == "TRPAY1"
    assert SaleModel.objects.count() == 1


# ---- Refund ----

def _refunds(gateway):
    sales, stats = SaleRepository(), TrackStatistics()
    return RefundService(gateway, sales, SalesService(sales, stats))


@pytest.mark.django_db
def test_refund_reverses_statistics(make_track):
    make_track("T1", price="500.00")
    gateway = CountingGateway()
    _checkout(gateway).handle_callback(_callback())
    sale = SaleModel.objects.get()

    receipt = _refunds(gateway).refund("TRPAY1", Decimal("500.00"), sale.transaction_id, "")

    sale.refresh_from_db()
    assert receipt.refund_id
    assert sale.payment_status == "refunded"
    assert _stats() == (0, Decimal("0.00"))


@pytest.mark.django_db
def test_refund_without_sale_is_rejected_before_gateway():
    class NoRefund(GatewayStub):
        def refund_payment(self, *a, **kw):
            raise AssertionError("gateway must not be called")

    with pytest.raises(PaymentValidationError) as exc:
        _refunds(NoRefund()).refund("UNKNOWN", Decimal("1"), "TX", "")
    assert exc.value.code == "SALE_NOT_FOUND"


@pytest.mark.django_db
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("500.01")])
def test_refund_amount_bounds(make_track, amount):
    make_track("T1", price="500.00")
    gateway = CountingGateway()
    _checkout(gateway).handle_callback(_callback())
    with pytest.raises(PaymentValidationError) as exc:
        _refunds(gateway).refund("TRPAY1", amount, "TX", "")
    assert exc.value.code == "INVALID_AMOUNT"


@pytest.mark.django_db
def test_second_refund_is_not_refundable(make_track):
    make_track("T1", price="500.00")
    gateway = CountingGateway()
    _checkout(gateway).handle_callback(_callback())
    _refunds(gateway).refund("TRPAY1", Decimal("500.00"), "TX", "")
    with pytest.raises(PaymentValidationError) as exc:
        _refunds(gateway).refund("TRPAY1", Decimal("500.00"), "TX", "")
    assert exc.value.code == "SALE_NOT_REFUNDABLE"


@pytest.mark.django_db
def test_gateway_rejection_leaves_sale_completed(make_track):
    make_track("T1", price="500.00")
    gateway = CountingGateway()
    _checkout(gateway).handle_callback(_callback())
    gateway.payments["TRPAY1"]["refund_id"] = "RF-EARLIER"

    with pytest.raises(RefundRejected) as exc:
        _refunds(gateway).refund("TRPAY1", Decimal("500.00"), "TX", "")

    assert exc.value.raw == {"paymentID": "TRPAY1"}
    assert SaleModel.objects.get().payment_status == "completed"
    assert _stats() == (1, Decimal("500.00"))
