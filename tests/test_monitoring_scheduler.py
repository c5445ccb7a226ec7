import asyncio
from unittest.mock import AsyncMock

import pytest

from repricer.infra.adapter.entity.competitor_entity import CompetitorSnapshot
from repricer.infra.adapter.entity.price_history_entity import HistoryStatus

USER_ID = "seller-1"


@pytest.mark.asyncio
async def test_cycle_continues_after_item_failure(monitoring, gateway, history, listing_repo, beat_by_one, make_listing):
    for item_id in ("item-1", "item-2", "item-3"):
        await make_listing(item_id, beat_by_one, 80, 150)
        gateway.set_item(item_id, 100, [95])
    gateway.fail_update["item-2"] = asyncio.TimeoutError()

    summary = await monitoring.run_cycle()

    assert summary.total == 3
    assert summary.updated == 2
    assert summary.failed == 1
    assert ("item-3", 94) in gateway.updates
    failed = await history.query("item-2")
    assert failed[0].status == HistoryStatus.ERROR.value
    assert failed[0].success is False

    listing = await listing_repo.get("item-3")
    assert listing.last_monitoring_check is not None


@pytest.mark.asyncio
async def test_cycle_skips_unmonitored_listings(monitoring, gateway, beat_by_one, make_listing):
    await make_listing("on", beat_by_one)
    await make_listing("off", beat_by_one, monitoring_enabled=False)
    gateway.set_item("on", 100, [95])
    gateway.set_item("off", 100, [95])

    summary = await monitoring.run_cycle()

    assert [r.item_id for r in summary.results] == ["on"]


@pytest.mark.asyncio
async def test_overlapping_cycle_is_skipped(monitoring, gateway, beat_by_one, make_listing):
    await make_listing("slow", beat_by_one)
    gateway.set_item("slow", 100, [95])
    gateway.delay = 0.1

    first, second = await asyncio.gather(monitoring.run_cycle(), monitoring.run_cycle())

    assert first.skipped is False
    assert second.skipped is True
    assert len(gateway.updates) == 1


@pytest.mark.asyncio
async def test_listing_enumeration_failure_aborts_cycle(monitoring, listing_repo):
    listing_repo.find_monitored = AsyncMock(side_effect=RuntimeError("mongo down"))

    with pytest.raises(RuntimeError):
        await monitoring.run_cycle()
    assert monitoring.cycle_running is False


@pytest.mark.asyncio
async def test_run_for_item(monitoring, gateway, history, beat_by_one, make_listing):
    await make_listing("single", beat_by_one)
    gateway.set_item("single", 100, [95])

    result = await monitoring.run_for_item("single", user_id=USER_ID)

    assert result.success is True
    records = await history.query("single")
    assert records[0].source == "manual"


@pytest.mark.asyncio
async def test_run_for_all_with_competitors_leaves_competitors_untouched(
        monitoring, gateway, competitor_repo, beat_by_one, make_listing
):
    await make_listing("with", beat_by_one)
    await make_listing("without", beat_by_one)
    snapshot = CompetitorSnapshot(competitor_item_id="x1", price=95)
    await competitor_repo.upsert_competitor(USER_ID, "with", snapshot)
    gateway.set_item("with", 100, [95])
    gateway.set_item("without", 100, [])

    summary = await monitoring.run_for_all_with_competitors()

    assert [r.item_id for r in summary.results] == ["with"]
    stored = await competitor_repo.get_competitors(USER_ID, "with")
    assert [c.competitor_item_id for c in stored] == ["x1"]


@pytest.mark.asyncio
async def test_start_and_stop(monitoring):
    monitoring.start()
    try:
        status = monitoring.status()
        assert status["running"] is True
        assert status["next_run_time"] is not None
    finally:
        monitoring.stop()

    assert monitoring.status()["running"] is False


@pytest.mark.asyncio
async def test_maintenance_runs_archive_and_cleanup(monitoring, history):
    history.archive = AsyncMock(return_value=type("R", (), {"archived_count": 3})())
    history.cleanup_failed = AsyncMock(return_value=type("R", (), {"deleted_count": 2})())

    result = await monitoring.run_maintenance()

    assert result == {"archived": 3, "deleted_failed": 2}
    history.archive.assert_awaited_once_with(1000)
    history.cleanup_failed.assert_awaited_once_with(30)
