"""Sale lifecycle: statuses, allowed transitions and serial ids.

A sale counts towards its track's statistics exactly while it is
``completed``. Every status change is checked against ``ALLOWED_TRANSITIONS``
and the statistics delta is derived from ``counts_towards_statistics`` on
the old and new status.
"""

import secrets
import string
from datetime import datetime, timezone
from enum import Enum


class SaleStatus(str, Enum):
    """Payment status of a sale."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Refunded is terminal; completed only moves forward to refunded.
ALLOWED_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.PENDING: frozenset({SaleStatus.COMPLETED, SaleStatus.FAILED}),
    SaleStatus.FAILED: frozenset({SaleStatus.PENDING}),
    SaleStatus.COMPLETED: frozenset({SaleStatus.REFUNDED}),
    SaleStatus.REFUNDED: frozenset(),
}

_SERIAL_ALPHABET = string.ascii_uppercase + string.digits


class InvalidSaleTransition(ValueError):
    """Raised when a status change is not part of the sale lifecycle."""

    def __init__(self, current: SaleStatus, target: SaleStatus):
        super().__init__("INVALID_TRANSITION")
        self.current = current
        self.target = target

    @property
    def message(self) -> str:
        return f"Cannot move a {self.current.value} sale to {self.target.value}"


def generate_serial_id(now: datetime | None = None) -> str:
    """Return a new order reference ``ORDER-YYYYMMDD-XXXXXX``.

    The date part is the UTC creation date; the suffix is six random
    uppercase alphanumerics. Uniqueness is enforced by the database.
    """
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_SERIAL_ALPHABET) for _ in range(6))
    return f"ORDER-{now.strftime('%Y%m%d')}-{suffix}"


def generate_purchase_token() -> str:
    """``purchase_<epoch ms>_<random>`` handed back for a manual sale."""
    return f"purchase_{int(datetime.now(timezone.utc).timestamp() * 1000)}_{secrets.token_hex(4)}"


def counts_towards_statistics(status: SaleStatus | str) -> bool:
    return SaleStatus(status) is SaleStatus.COMPLETED


def validate_transition(current: SaleStatus | str, target: SaleStatus | str) -> None:
    """Raise ``InvalidSaleTransition`` unless ``current -> target`` is allowed.

    Re-applying the current status is accepted as a no-op.
    """
    current, target = SaleStatus(current), SaleStatus(target)
    if current is target:
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidSaleTransition(current, target)
