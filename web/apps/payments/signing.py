"""Signature over the business context embedded in the callback URL.

The gateway does not sign the browser redirect it sends back, so the
context the merchant puts on the callback URL (``trackId``, ``redirectUrl``,
``orderId``) is signed when the payment is created and verified before the
callback acts on it.
"""

from django.utils.crypto import constant_time_compare, salted_hmac

_SALT = "apps.payments.callback-context"


def _message(track_id: str, redirect_url: str, order_id: str) -> str:
    # Unit separator keeps ("a", "bc") and ("ab", "c") distinct.
    return "\x1f".join((track_id or "", redirect_url or "", order_id or ""))


def sign_context(track_id: str = "", redirect_url: str = "", order_id: str = "", secret: str = "") -> str:
    """Return the hex signature for the given callback context."""
    return salted_hmac(_SALT, _message(track_id, redirect_url, order_id), secret=secret or None, algorithm="sha256").hexdigest()


def verify_context(signature: str, track_id: str = "", redirect_url: str = "", order_id: str = "", secret: str = "") -> bool:
    if not signature:
        return False
    return constant_time_compare(signature, sign_context(track_id, redirect_url, order_id, secret))
