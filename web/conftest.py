from decimal import Decimal

import pytest


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.ADMIN_API_TOKEN = "admin-token"
    settings.STOREFRONT_API_KEY = ""
    settings.ALLOWED_ORIGINS = []
    settings.PORTFOLIO_URL = "https://shop.example.com/"
    settings.FRONTEND_URL = ""
    settings.CALLBACK_SIGNING_SECRET = "test-signing-secret"
    settings.BKASH_CALLBACK_URL = "http://testserver/api/payments/bkash/callback"


@pytest.fixture(autouse=True)
def fresh_process_state():
    # Throttle counters, cached gateway clients and the circuit breaker outlive a test otherwise.
    from django.core.cache import cache

    from apps.payments.http_adapters import _gateway_cb
    from apps.payments.providers import reset_gateways

    cache.clear()
    reset_gateways()
    _gateway_cb.reset()
    yield
    reset_gateways()
    _gateway_cb.reset()


@pytest.fixture
def admin_headers():
    return {"HTTP_AUTHORIZATION": "Bearer admin-token"}


@pytest.fixture
def make_track(db):
    from apps.catalog.models import TrackModel

    def _make(track_id="T1", price="500.00", title="Night Drive", category="beats"):
        return TrackModel.objects.create(id=track_id, title=title, price=Decimal(price), category=category)

    return _make
