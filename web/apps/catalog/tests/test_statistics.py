"""Tests for the atomic track statistics updater."""
from decimal import Decimal

import pytest

from apps.catalog.models import TrackModel
from apps.catalog.statistics import TrackStatistics


@pytest.mark.django_db
def test_increment_adds_one_sale_and_its_price(make_track):
    make_track("T1", price="500.00")
    assert TrackStatistics().increment("T1", Decimal("500.00")) is True
    t = TrackModel.objects.get(pk="T1")
    assert t.sale_count == 1
    assert t.total_sold_price == Decimal("500.00")


@pytest.mark.django_db
def test_decrement_is_clamped_at_zero(make_track):
    make_track("T1", price="500.00")
    stats = TrackStatistics()
    stats.increment("T1", Decimal("100.00"))
    stats.decrement("T1", Decimal("500.00"))
    stats.decrement("T1", Decimal("500.00"))
    t = TrackModel.objects.get(pk="T1")
    assert t.sale_count == 0
    assert t.total_sold_price == Decimal("0.00")


@pytest.mark.django_db
def test_missing_track_is_reported_not_raised(caplog):
    with caplog.at_level("WARNING", logger="apps.catalog.statistics"):
        assert TrackStatistics().increment("nope", Decimal("1.00")) is False
    assert "track not found for statistics update" in caplog.text


@pytest.mark.django_db
def test_updates_do_not_read_modify_write(make_track):
    """A stale in-memory instance does not clobber the counter."""
    stale = make_track("T1", price="10.00")
    stats = TrackStatistics()
    stats.increment("T1", Decimal("10.00"))
    stats.increment("T1", Decimal("10.00"))
    stale.title = "Renamed"
    stale.save(update_fields=["title"])
    t = TrackModel.objects.get(pk="T1")
    assert t.sale_count == 2
    assert t.total_sold_price == Decimal("20.00")
