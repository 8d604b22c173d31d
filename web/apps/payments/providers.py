"""Service provider helpers for wiring the payments flow with its ports.

``get_gateway`` returns the gateway client registered under a URL name:
the HTTP client when ``settings.USE_HTTP_ADAPTERS`` is truthy, otherwise
the in-process stub. The HTTP client is kept per process so its cached
token is reused across requests. The stub is also kept per process so a
payment created through it can later be executed and refunded.
"""

import threading

from django.conf import settings
from django.http import Http404

from apps.catalog.repository import TrackRepository
from apps.catalog.statistics import TrackStatistics
from apps.sales.repository import SaleRepository
from apps.sales.services import SalesService

from .adapters import GatewayStub
from .checkout import CheckoutService
from .config import PaymentsConfig
from .domain import GatewayPort
from .http_adapters import HttpGatewayClient
from .refunds import RefundService

# URL name -> HTTP client factory
GATEWAYS = {
    "bkash": HttpGatewayClient,
}

_clients: dict[tuple[str, bool], GatewayPort] = {}
_clients_lock = threading.Lock()


def get_gateway(name: str, config: PaymentsConfig) -> GatewayPort:
    """Return the gateway client for ``name``.

    Raises:
        Http404: When no gateway is registered under ``name``.
    """
    factory = GATEWAYS.get((name or "").lower())
    if factory is None:
        raise Http404("Unknown payment gateway")
    use_http = bool(getattr(settings, "USE_HTTP_ADAPTERS", True))
    key = (name.lower(), use_http)
    with _clients_lock:
        client = _clients.get(key)
        if client is None or (use_http and client.config != config):
            client = factory(config) if use_http else GatewayStub()
            _clients[key] = client
        return client


def reset_gateways() -> None:
    """Forget cached clients (tests, settings overrides)."""
    with _clients_lock:
        _clients.clear()


def get_checkout_service(name: str) -> CheckoutService:
    config = PaymentsConfig.from_settings()
    sales, stats = SaleRepository(), TrackStatistics()
    return CheckoutService(
        gateway=get_gateway(name, config),
        config=config,
        tracks=TrackRepository(),
        sales=sales,
        stats=stats,
        sales_service=SalesService(sales, stats),
    )


def get_refund_service(name: str) -> RefundService:
    config = PaymentsConfig.from_settings()
    sales, stats = SaleRepository(), TrackStatistics()
    return RefundService(get_gateway(name, config), sales, SalesService(sales, stats))
