"""Configuration snapshot for the payments flow.

``PaymentsConfig`` is built once from Django settings by the providers and
handed to the gateway client and the orchestrators, so none of them reads
settings or the environment while handling a request.
"""

from dataclasses import dataclass

from django.conf import settings

from .domain import ConfigurationError

DEFAULT_REDIRECT_BASE = "http://localhost:3000"


@dataclass(frozen=True)
class PaymentsConfig:
    """Gateway credentials, endpoints and buyer-facing redirect targets.

    Attributes:
        gateway_name: Label stored on sales as ``payment_method``.
        base_url: Tokenized-checkout API root.
        app_key, app_secret, username, password: Merchant credentials for the
            token grant.
        callback_url: URL the gateway redirects the buyer's browser to.
        portfolio_url, frontend_url: Redirect bases, in priority order after an
            explicit (verified) ``redirectUrl``.
        success_code: Gateway status code meaning success.
        currency: Single currency sent with every payment.
        timeout: Outbound HTTP timeout in seconds.
        signing_secret: Key for the callback context signature.
    """

    gateway_name: str = "bKash"
    base_url: str = ""
    app_key: str = ""
    app_secret: str = ""
    username: str = ""
    password: str = ""
    callback_url: str = ""
    portfolio_url: str = ""
    frontend_url: str = ""
    success_code: str = "0000"
    currency: str = "BDT"
    timeout: float = 10.0
    signing_secret: str = ""

    @classmethod
    def from_settings(cls) -> "PaymentsConfig":
        return cls(
            base_url=settings.BKASH_BASE_URL.rstrip("/"),
            app_key=settings.BKASH_APP_KEY,
            app_secret=settings.BKASH_APP_SECRET,
            username=settings.BKASH_USERNAME,
            password=settings.BKASH_PASSWORD,
            callback_url=settings.BKASH_CALLBACK_URL,
            portfolio_url=settings.PORTFOLIO_URL,
            frontend_url=settings.FRONTEND_URL,
            success_code=settings.PAYMENT_SUCCESS_CODE,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.HTTP_TIMEOUT_SECS,
            signing_secret=settings.CALLBACK_SIGNING_SECRET,
        )

    def require_credentials(self) -> None:
        """Raise ``ConfigurationError`` naming every missing credential."""
        missing = [
            name
            for name, value in (
                ("BKASH_APP_KEY", self.app_key),
                ("BKASH_APP_SECRET", self.app_secret),
                ("BKASH_USERNAME", self.username),
                ("BKASH_PASSWORD", self.password),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Payment gateway credentials are not configured: {', '.join(missing)}")

    def redirect_base(self, requested: str | None = None) -> str:
        """First non-empty of ``requested``, portfolio, frontend, localhost; no trailing slash."""
        base = requested or self.portfolio_url or self.frontend_url or DEFAULT_REDIRECT_BASE
        return base.rstrip("/")
