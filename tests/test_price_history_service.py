from datetime import datetime, timedelta, timezone

import pytest

from repricer.core.errors import ValidationError
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.price_history_entity import PriceHistoryRecord


def entry(item_id="item-1", new_price=10.0, old_price=None, status="Done", success=True, **kwargs):
    return {
        "item_id": item_id,
        "new_price": new_price,
        "old_price": old_price,
        "status": status,
        "success": success,
        **kwargs,
    }


async def seed(history_repo, item_id, prices, days_ago, success=True, sku=None):
    """Insert records with explicit timestamps, oldest first."""
    previous = None
    for price, age in zip(prices, days_ago):
        change = round(price - previous, 2) if previous is not None else None
        await history_repo.insert(
            PriceHistoryRecord(
                item_id=item_id,
                sku=sku,
                new_price=price,
                old_price=previous,
                change_amount=change,
                status="Done" if success else "Error",
                success=success,
                strategy_name="Beat by $1",
                created_at=utc_now() - timedelta(days=age),
            )
        )
        previous = price


@pytest.mark.asyncio
async def test_record_derives_change_fields(history):
    record = await history.record(entry(new_price=110, old_price=100))

    assert record.id is not None
    assert record.change_amount == 10
    assert record.change_percentage == 10
    assert record.change_direction == "increased"


@pytest.mark.asyncio
@pytest.mark.parametrize("old, new, direction", [(100, 90, "decreased"), (100, 100, "unchanged"), (0, 5, "increased")])
async def test_direction_follows_change_amount(history, old, new, direction):
    record = await history.record(entry(new_price=new, old_price=old))

    assert record.change_direction == direction
    if old == 0:
        assert record.change_percentage is None


@pytest.mark.asyncio
async def test_record_without_old_price_has_no_direction(history):
    record = await history.record(entry(new_price=10))

    assert record.change_amount is None
    assert record.change_direction is None


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["item_id", "new_price", "status", "success"])
async def test_record_requires_fields(history, missing):
    data = entry()
    data.pop(missing)

    with pytest.raises(ValidationError):
        await history.record(data)


@pytest.mark.asyncio
async def test_record_many_is_all_or_nothing(history, history_repo):
    with pytest.raises(ValidationError):
        await history.record_many([entry(item_id="bulk"), entry(item_id="bulk", status=None)])

    assert await history_repo.count_records({"item_id": "bulk"}) == 0

    records = await history.record_many([entry(item_id="bulk"), entry(item_id="bulk", new_price=12, old_price=10)])
    assert len(records) == 2
    assert records[1].change_direction == "increased"


@pytest.mark.asyncio
async def test_query_is_most_recent_first_and_paged(history, history_repo):
    await seed(history_repo, "item-q", [10, 11, 12, 13, 14], [5, 4, 3, 2, 1])

    first_page = await history.query("item-q", limit=2)
    second_page = await history.query("item-q", limit=2, page=2)

    assert [r.new_price for r in first_page] == [14, 13]
    assert [r.new_price for r in second_page] == [12, 11]


@pytest.mark.asyncio
async def test_query_rejects_unknown_sort_field(history):
    with pytest.raises(ValidationError):
        await history.query("item-q", sort_by="$where")


@pytest.mark.asyncio
async def test_paginate_returns_pagination_and_statistics(history, history_repo):
    await seed(history_repo, "item-p", [10, 20, 30], [3, 2, 1])

    result = await history.paginate("item-p", limit=2)

    assert result.pagination.total_records == 3
    assert result.pagination.total_pages == 2
    assert result.pagination.has_next_page is True
    assert result.pagination.has_prev_page is False
    assert result.statistics.avg_price == 20
    assert result.statistics.min_price == 10
    assert result.statistics.max_price == 30
    assert result.statistics.strategies_used == ["Beat by $1"]


@pytest.mark.asyncio
async def test_analytics_over_window(history, history_repo):
    await seed(history_repo, "item-an", [50, 40, 44, 48], [40, 6, 4, 2])

    result = await history.analytics("item-an", period="7d")

    assert result.total_records == 3
    assert result.price_at_start == 40
    assert result.current_price == 48
    assert result.total_change == 8
    assert result.percent_change == 20
    assert [p.price for p in result.price_points] == [40, 44, 48]


@pytest.mark.asyncio
async def test_analytics_ignores_failed_records(history, history_repo):
    await seed(history_repo, "item-x", [10, 11], [2, 1], success=False)

    result = await history.analytics("item-x", period="all")

    assert result.total_records == 0
    assert result.message == "No price records found in this period"


@pytest.mark.asyncio
async def test_summary(history, history_repo):
    empty = await history.summary("nothing")
    assert empty.has_history is False

    await seed(history_repo, "item-s", [10, 12], [2, 1])
    summary = await history.summary("item-s")

    assert summary.has_history is True
    assert summary.current_price == 12
    assert summary.last_change_amount == 2
    assert summary.last_strategy == "Beat by $1"


@pytest.mark.asyncio
@pytest.mark.parametrize("prices, trend, direction", [
    ([100, 101, 102], "stable", "increasing"),
    ([100, 96, 93], "moderate", "decreasing"),
    ([100, 120, 130], "volatile", "increasing"),
])
async def test_trend_classification(history, history_repo, prices, trend, direction):
    await seed(history_repo, "item-t", prices, [3, 2, 1])

    result = await history.trend("item-t", days=30)

    assert result.trend == trend
    assert result.direction == direction
    assert result.data_points == 3


@pytest.mark.asyncio
async def test_trend_without_data(history):
    assert (await history.trend("none")).trend == "no-data"


@pytest.mark.asyncio
async def test_archive_keeps_most_recent_per_item(history, history_repo):
    await seed(history_repo, "item-a1", [1, 2, 3, 4], [4, 3, 2, 1])
    await seed(history_repo, "item-a2", [5, 6], [2, 1])

    result = await history.archive(keep_recent_count=2)
    again = await history.archive(keep_recent_count=2)

    assert result.archived_count == 2
    assert again.archived_count == 0
    remaining = await history.query("item-a1")
    assert [r.new_price for r in remaining] == [4, 3]
    assert await history_repo.count_records({"item_id": "item-a2"}) == 2


@pytest.mark.asyncio
async def test_cleanup_failed_only_removes_old_failures(history, history_repo):
    await seed(history_repo, "item-cf", [1, 2], [40, 1], success=False)
    await seed(history_repo, "item-ok", [3], [40])

    result = await history.cleanup_failed(days_old=30)

    assert result.deleted_count == 1
    assert await history_repo.count_records({"item_id": "item-cf"}) == 1
    assert await history_repo.count_records({"item_id": "item-ok"}) == 1


def test_timestamps_are_naive_utc():
    now = utc_now()

    assert now.tzinfo is None
    assert abs(datetime.now(timezone.utc).replace(tzinfo=None) - now) < timedelta(seconds=5)
