"""API tests for the payments endpoints.

They run against the in-process ``GatewayStub`` (``USE_HTTP_ADAPTERS`` is
off in tests), so a payment created through the API can be called back,
queried and refunded in the same test.
"""
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest
from django.db import IntegrityError
from rest_framework.throttling import ScopedRateThrottle

from apps.catalog.models import TrackModel
from apps.payments.domain import ConfigurationError, GatewayError, GatewayRejection
from apps.payments.signing import sign_context
from apps.sales.models import SaleModel

CREATE_URL = "/api/payments/bkash/create"
CALLBACK_URL = "/api/payments/bkash/callback"
REFUND_URL = "/api/payments/bkash/refund"
SHOP = "https://shop.example.com"


def _signed(track_id="T1", redirect_url="", order_id=""):
    return sign_context(track_id, redirect_url, order_id, "test-signing-secret")


def _pay(client, payment_id="TRPAY1", track_id="T1"):
    return client.get(CALLBACK_URL, {"paymentID": payment_id, "status": "success", "trackId": track_id, "sig": _signed(track_id)})


@pytest.mark.django_db
def test_create_payment_scenario(client, make_track):
    make_track("T1", price="500.00")
    r = client.post(CREATE_URL, data={"trackId": "T1"}, content_type="application/json")
    assert r.status_code == 200
    body = r.json()
    assert body["paymentURL"]
    assert body["merchantInvoiceNumber"].startswith("TRK-T1-")
    assert body["amount"] == "500.00"
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_create_payment_errors(client, make_track):
    r = client.post(CREATE_URL, data={"trackId": "nope"}, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "TRACK_NOT_FOUND"

    r = client.post(CREATE_URL, data={}, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"

    make_track("T1")
    r = client.post(CREATE_URL, data={"trackId": "T1", "redirectUrl": "javascript:alert(1)"}, content_type="application/json")
    assert r.status_code == 400


@pytest.mark.django_db
def test_unknown_gateway_is_404(client, make_track):
    make_track("T1")
    r = client.post("/api/payments/paypal/create", data={"trackId": "T1"}, content_type="application/json")
    assert r.status_code == 404


@pytest.mark.django_db
def test_gateway_error_maps_to_502_and_hides_detail(client, settings, make_track, monkeypatch):
    settings.DEBUG = False
    make_track("T1")

    def boom(self, *a, **kw):
        raise GatewayError("create", "Invalid Amount", status_code="2007")

    monkeypatch.setattr("apps.payments.adapters.GatewayStub.create_payment", boom)
    r = client.post(CREATE_URL, data={"trackId": "T1"}, content_type="application/json")
    assert r.status_code == 502
    assert r.json()["detail"] == "GATEWAY_ERROR"
    assert r.json()["message"] == "bKash Payment Creation Failed: Invalid Amount"
    assert "error" not in r.json()


@pytest.mark.django_db
def test_configuration_error_maps_to_500(client, make_track, monkeypatch):
    make_track("T1")

    def unconfigured(self, *a, **kw):
        raise ConfigurationError("Payment gateway credentials are not configured: BKASH_APP_KEY")

    monkeypatch.setattr("apps.payments.adapters.GatewayStub.create_payment", unconfigured)
    r = client.post(CREATE_URL, data={"trackId": "T1"}, content_type="application/json")
    assert r.status_code == 500
    assert r.json()["detail"] == "CONFIGURATION_ERROR"


@pytest.mark.django_db
def test_storefront_key_guards_create(client, settings, make_track):
    settings.STOREFRONT_API_KEY = "k1"
    make_track("T1")
    assert client.post(CREATE_URL, data={"trackId": "T1"}, content_type="application/json").status_code == 403
    r = client.post(f"{CREATE_URL}?apiKey=k1", data={"trackId": "T1"}, content_type="application/json")
    assert r.status_code == 200


@pytest.mark.django_db
def test_callback_success_redirects_and_records(client, make_track):
    make_track("T1", price="500.00")
    r = _pay(client)
    sale = SaleModel.objects.get()
    assert r.status_code == 302
    assert r["Location"] == f"{SHOP}/payment-success.html?orderId={sale.serial_id}&trackId=T1"
    t = TrackModel.objects.get(pk="T1")
    assert (t.sale_count, t.total_sold_price) == (1, Decimal("500.00"))


@pytest.mark.django_db
def test_callback_cancel_and_missing_payment(client, make_track):
    make_track("T1")
    r = client.get(CALLBACK_URL, {"paymentID": "TRPAY1", "status": "cancel", "trackId": "T1", "sig": _signed()})
    assert r["Location"] == f"{SHOP}/payment-cancel.html"

    r = client.get(CALLBACK_URL, {"status": "success"})
    assert r.status_code == 302
    assert r["Location"] == f"{SHOP}/payment-failed.html?reason=missing-payment-id"
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_callback_post_reads_body_and_query(client, make_track):
    make_track("T1", price="500.00")
    r = client.post(
        f"{CALLBACK_URL}?trackId=T1&sig={_signed()}",
        data={"paymentID": "TRPAY2", "status": "success"},
    )
    assert r.status_code == 302
    assert "/payment-success.html?orderId=" in r["Location"]
    assert SaleModel.objects.get().payment_id == "TRPAY2"


@pytest.mark.django_db
def test_callback_failure_carries_payment_id(client, make_track):
    make_track("T1")
    r = _pay(client, payment_id="FAILX")
    assert r["Location"] == f"{SHOP}/payment-failed.html?reason=payment-failed&paymentID=FAILX"


@pytest.mark.django_db
def test_duplicate_callbacks_record_once(client, make_track):
    make_track("T1", price="500.00")
    first, second = _pay(client), _pay(client)
    assert first["Location"] == second["Location"]
    assert SaleModel.objects.count() == 1
    assert TrackModel.objects.get(pk="T1").sale_count == 1


@pytest.mark.django_db
def test_callback_internal_error_still_redirects(client, make_track, monkeypatch):
    make_track("T1", price="500.00")

    def collide(self, *args, **kwargs):
        raise IntegrityError("duplicate serial_id")

    monkeypatch.setattr("apps.sales.repository.SaleRepository.create", collide)
    r = _pay(client)
    assert r.status_code == 302
    assert r["Location"] == f"{SHOP}/payment-failed.html?reason=error"
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_throttled_callback_redirects_instead_of_429(client, make_track, monkeypatch):
    make_track("T1")
    monkeypatch.setattr(ScopedRateThrottle, "allow_request", lambda self, request, view: False)
    monkeypatch.setattr(ScopedRateThrottle, "wait", lambda self: 30)
    r = _pay(client)
    assert r.status_code == 302
    assert r["Location"] == f"{SHOP}/payment-failed.html?reason=too-many-requests"
    assert SaleModel.objects.count() == 0


@pytest.mark.django_db
def test_status_endpoint(client, make_track):
    make_track("T1")
    _pay(client)
    r = client.get("/api/payments/bkash/status/TRPAY1")
    assert r.status_code == 200
    body = r.json()
    assert body["paymentID"] == "TRPAY1"
    assert body["saleStatus"] == "completed"
    assert body["gatewayStatus"]["statusCode"] == "0000"


@pytest.mark.django_db
def test_refund_flow(client, admin_headers, make_track):
    make_track("T1", price="500.00")
    _pay(client)
    sale = SaleModel.objects.get()
    payload = {"paymentID": "TRPAY1", "amount": "500.00", "trxID": sale.transaction_id}

    assert client.post(REFUND_URL, data=payload, content_type="application/json").status_code == 403

    r = client.post(REFUND_URL, data=payload, content_type="application/json", **admin_headers)
    assert r.status_code == 200
    assert r.json()["refundID"]
    assert r.json()["orderId"] == sale.serial_id
    sale.refresh_from_db()
    assert sale.payment_status == "refunded"
    t = TrackModel.objects.get(pk="T1")
    assert (t.sale_count, t.total_sold_price) == (0, Decimal("0.00"))

    r = client.post(REFUND_URL, data=payload, content_type="application/json", **admin_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "SALE_NOT_REFUNDABLE"


@pytest.mark.django_db
def test_refund_unknown_payment(client, admin_headers):
    payload = {"paymentID": "NOPE", "amount": "10.00", "trxID": "TX"}
    r = client.post(REFUND_URL, data=payload, content_type="application/json", **admin_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "SALE_NOT_FOUND"


@pytest.mark.django_db
def test_refund_rejection_returns_gateway_payload(client, admin_headers, make_track, monkeypatch):
    make_track("T1", price="500.00")
    _pay(client)

    def declined(self, payment_id, amount, transaction_id, reason):
        return GatewayRejection("refund", "2071", "Already refunded", raw={"statusCode": "2071"})

    monkeypatch.setattr("apps.payments.adapters.GatewayStub.refund_payment", declined)
    r = client.post(
        REFUND_URL,
        data={"paymentID": "TRPAY1", "amount": "500.00", "trxID": "TX"},
        content_type="application/json",
        **admin_headers,
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "REFUND_FAILED"
    assert r.json()["gateway"] == {"statusCode": "2071"}
    assert SaleModel.objects.get().payment_status == "completed"


@pytest.mark.django_db
def test_health_reports_db_and_circuit(client):
    r = client.get("/api/health/")
    assert r.status_code == 200
    assert r.json()["components"]["db"]["ok"] is True
    assert r.json()["components"]["payment_gateway"]["circuit"] == "CLOSED"


@pytest.mark.django_db
def test_request_id_is_echoed(client):
    r = client.get("/api/health/", HTTP_X_REQUEST_ID="rid-7")
    assert r["X-Request-ID"] == "rid-7"
