import asyncio
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import PyMongoError

from repricer.core.repricing.state import RepricingState
from repricer.infra.adapter.entity.competitor_entity import CompetitorRule
from repricer.infra.adapter.entity.price_history_entity import HistorySource, HistoryStatus

USER_ID = "seller-1"


@pytest.mark.asyncio
async def test_beat_lowest_updates_price_and_records_done(orchestrator, gateway, history, listing_repo, beat_by_one, make_listing):
    await make_listing("item-a", beat_by_one, 80, 150)
    gateway.set_item("item-a", 100, [95, 98])

    result = await orchestrator.execute("item-a", USER_ID)

    assert result.success is True
    assert result.price_changes is True
    assert result.new_price == 94
    assert result.state == RepricingState.DONE
    assert gateway.updates == [("item-a", 94)]

    records = await history.query("item-a")
    assert len(records) == 1
    assert records[0].status == HistoryStatus.DONE.value
    assert records[0].success is True
    assert records[0].change_amount == -6
    assert records[0].change_direction == "decreased"
    assert records[0].competitor_lowest_price == 95

    listing = await listing_repo.get("item-a")
    assert listing.last_known_price == 94
    assert listing.last_repriced_at is not None


@pytest.mark.asyncio
async def test_keep_current_is_recorded_as_skipped(orchestrator, gateway, history, keep_current, make_listing):
    await make_listing("item-c", keep_current)
    gateway.set_item("item-c", 50, [])

    result = await orchestrator.execute("item-c", USER_ID)

    assert result.success is True
    assert result.price_changes is False
    assert result.new_price == 50
    assert result.state == RepricingState.SKIPPED
    assert gateway.updates == []

    records = await history.query("item-c")
    assert [r.status for r in records] == [HistoryStatus.SKIPPED.value]
    assert records[0].success is True


@pytest.mark.asyncio
async def test_update_timeout_is_recorded_as_error(orchestrator, gateway, history, beat_by_one, make_listing):
    await make_listing("item-e", beat_by_one, 80, 150)
    gateway.set_item("item-e", 100, [95])
    gateway.delay = 1

    result = await orchestrator.execute("item-e", USER_ID)

    assert result.success is False
    assert result.state == RepricingState.ERROR
    records = await history.query("item-e")
    assert len(records) == 1
    assert records[0].status == HistoryStatus.ERROR.value
    assert records[0].success is False
    assert records[0].error.kind == "timeout"
    assert records[0].error.operation == "update_price"


@pytest.mark.asyncio
async def test_rejected_update_keeps_api_detail(orchestrator, gateway, history, beat_by_one, make_listing):
    await make_listing("item-r", beat_by_one)
    gateway.set_item("item-r", 100, [95])
    gateway.reject_update["item-r"] = "Invalid price"

    result = await orchestrator.execute("item-r", USER_ID)

    assert result.success is False
    records = await history.query("item-r")
    assert records[0].error.kind == "api_error"
    assert records[0].error.status_code == 400
    assert records[0].new_price == 94


@pytest.mark.asyncio
async def test_current_price_failure_uses_last_known_price(orchestrator, gateway, history, beat_by_one, make_listing):
    await make_listing("item-f", beat_by_one, last_known_price=42.5)
    gateway.set_item("item-f", 100, [95])
    gateway.fail_price["item-f"] = RuntimeError("connection reset")

    result = await orchestrator.execute("item-f", USER_ID)

    assert result.success is False
    assert result.trail == [RepricingState.IDLE, RepricingState.FETCHING_COMPETITORS, RepricingState.ERROR]
    records = await history.query("item-f")
    assert records[0].new_price == 42.5
    assert records[0].old_price is None
    assert records[0].change_direction is None
    assert records[0].error.kind == "unclassified"


@pytest.mark.asyncio
async def test_missing_strategy_is_rejected_without_history(orchestrator, gateway, history, make_listing):
    await make_listing("item-v", None)
    gateway.set_item("item-v", 100, [95])

    result = await orchestrator.execute("item-v", USER_ID)

    assert result.success is False
    assert result.rejected is True
    assert result.state == RepricingState.IDLE
    assert await history.query("item-v") == []


@pytest.mark.asyncio
async def test_unknown_listing_is_rejected(orchestrator, history):
    result = await orchestrator.execute("nope", USER_ID)

    assert result.rejected is True
    assert "not found" in result.message


@pytest.mark.asyncio
async def test_inactive_strategy_is_rejected(orchestrator, strategy_repo, gateway, history, beat_by_one, make_listing):
    beat_by_one.is_active = False
    await strategy_repo.replace(beat_by_one)
    await make_listing("item-i", beat_by_one)
    gateway.set_item("item-i", 100, [95])

    result = await orchestrator.execute("item-i", USER_ID)

    assert result.rejected is True
    assert await history.query("item-i") == []


@pytest.mark.asyncio
async def test_rule_filters_competitors_and_counts_usage(orchestrator, gateway, rule_repo, beat_by_one, make_listing):
    rule = await rule_repo.insert(CompetitorRule(rule_name="Near price", min_percent_of_current_price=90))
    await make_listing("item-g", beat_by_one, competitor_rule_id=rule.id)
    gateway.set_item("item-g", 100, [50, 97])

    result = await orchestrator.execute("item-g", USER_ID)

    assert result.new_price == 96
    assert result.competitors_found == 2
    assert result.competitors_admissible == 1
    stored = await rule_repo.get(rule.id)
    assert stored.usage_count == 1
    assert stored.total_competitors_found == 2
    assert stored.competitors_excluded == 1


@pytest.mark.asyncio
async def test_concurrent_execution_for_same_item_is_rejected(orchestrator, gateway, history, beat_by_one, make_listing):
    await make_listing("item-l", beat_by_one)
    gateway.set_item("item-l", 100, [95])
    gateway.delay = 0.05

    first, second = await asyncio.gather(
        orchestrator.execute("item-l", USER_ID),
        orchestrator.execute("item-l", USER_ID),
    )

    outcomes = sorted([first.busy, second.busy])
    assert outcomes == [False, True]
    assert len(gateway.updates) == 1
    assert len(await history.query("item-l")) == 1


@pytest.mark.asyncio
async def test_waiting_execution_runs_after_the_first(orchestrator, gateway, history, beat_by_one, make_listing):
    await make_listing("item-w", beat_by_one)
    gateway.set_item("item-w", 100, [95])
    gateway.delay = 0.05

    first, second = await asyncio.gather(
        orchestrator.execute("item-w", USER_ID),
        orchestrator.execute("item-w", USER_ID, wait=True, source=HistorySource.MANUAL),
    )

    assert first.success and second.success
    # the second run sees the already-updated price
    assert second.state == RepricingState.SKIPPED
    assert len(gateway.updates) == 1


@pytest.mark.asyncio
async def test_history_failure_does_not_raise(orchestrator, gateway, history, beat_by_one, make_listing):
    await make_listing("item-h", beat_by_one)
    gateway.set_item("item-h", 100, [95])
    history.record = AsyncMock(side_effect=RuntimeError("mongo down"))

    result = await orchestrator.execute("item-h", USER_ID)

    assert result.success is False
    assert result.state == RepricingState.DONE
    assert "Bookkeeping failed" in result.message


@pytest.mark.asyncio
async def test_store_failure_while_resolving_sku_is_returned(orchestrator, listing_repo, gateway, history):
    listing_repo.get = AsyncMock(side_effect=PyMongoError("connection refused"))

    result = await orchestrator.execute("item-x", USER_ID)

    assert result.success is False
    assert result.rejected is True
    assert "connection refused" in result.message
    assert gateway.updates == []


@pytest.mark.asyncio
async def test_store_failure_while_loading_is_returned(orchestrator, strategy_repo, gateway, history, beat_by_one, make_listing):
    await make_listing("item-y", beat_by_one, sku="SKU-Y")
    gateway.set_item("item-y", 100, [90])
    strategy_repo.get = AsyncMock(side_effect=PyMongoError("timed out"))

    result = await orchestrator.execute("item-y", USER_ID, sku="SKU-Y")

    assert result.success is False
    assert result.rejected is True
    assert result.state == RepricingState.IDLE
    assert await history.query("item-y") == []
