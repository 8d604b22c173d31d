"""Sales reporting over a trailing window of days.

Only completed sales contribute counts and revenue to the date, track and
method groupings; the status grouping counts every sale.
"""

from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from .domain import SaleStatus
from .repository import SaleRepository

ZERO = Decimal("0.00")


def _bucket():
    return {"count": 0, "revenue": ZERO}


def sales_stats(repo: SaleRepository, days: int = 30, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    start = now - timedelta(days=days)
    sales = list(repo.list_since(start))

    by_date: dict[str, dict] = {}
    by_track: "OrderedDict[str, dict]" = OrderedDict()
    by_method: dict[str, dict] = {}
    by_status: dict[str, dict] = {}

    for sale in sales:
        completed = sale.payment_status == SaleStatus.COMPLETED.value
        day = sale.created_at.date().isoformat()
        track_key = sale.track_id or "unknown"
        method = sale.payment_method or "unknown"

        by_date.setdefault(day, _bucket())
        by_track.setdefault(track_key, {"trackId": sale.track_id, "trackTitle": sale.track_title, **_bucket()})
        by_method.setdefault(method, _bucket())
        by_status.setdefault(sale.payment_status, _bucket())

        by_status[sale.payment_status]["count"] += 1
        if not completed:
            continue
        by_status[sale.payment_status]["revenue"] += sale.price
        for bucket in (by_date[day], by_track[track_key], by_method[method]):
            bucket["count"] += 1
            bucket["revenue"] += sale.price

    completed_sales = [s for s in sales if s.payment_status == SaleStatus.COMPLETED.value]
    tracks = [_money(t) for t in by_track.values()]
    return {
        "period": {"days": days, "startDate": start.isoformat(), "endDate": now.isoformat()},
        "salesByDate": [{"date": d, **_money(v)} for d, v in sorted(by_date.items())],
        "salesByTrack": tracks,
        "salesByMethod": [{"method": m, **_money(v)} for m, v in by_method.items()],
        "salesByStatus": [{"status": s, **_money(v)} for s, v in by_status.items()],
        "topTracks": sorted(tracks, key=lambda t: Decimal(t["revenue"]), reverse=True)[:10],
        "totalSales": len(sales),
        "completedSales": len(completed_sales),
        "totalRevenue": str(sum((s.price for s in completed_sales), ZERO)),
    }


def _money(bucket: dict) -> dict:
    return {**bucket, "revenue": str(bucket["revenue"])}
