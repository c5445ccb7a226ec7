import asyncio
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from repricer.core.catalog.catalog_service import CatalogService
from repricer.core.gateway.marketplace_gateway import MarketplaceGateway, PriceUpdateResult
from repricer.core.history.price_history_service import PriceHistoryService
from repricer.core.repricing.orchestrator import RepricingOrchestrator
from repricer.core.scheduler.monitoring_scheduler import MonitoringScheduler
from repricer.infra.adapter.competitor_rule_repository import CompetitorRuleRepository
from repricer.infra.adapter.entity.competitor_entity import CompetitorSnapshot
from repricer.infra.adapter.entity.listing_entity import Listing
from repricer.infra.adapter.entity.strategy_entity import PricingStrategy
from repricer.infra.adapter.listing_repository import ListingRepository
from repricer.infra.adapter.manual_competitor_repository import ManualCompetitorRepository
from repricer.infra.adapter.price_history_repository import PriceHistoryRepository
from repricer.infra.adapter.strategy_repository import StrategyRepository

USER_ID = "seller-1"


class FakeGateway(MarketplaceGateway):
    """In-memory marketplace: prices per item, competitors per item, scripted failures."""

    def __init__(self):
        self.prices: Dict[str, float] = {}
        self.competitors: Dict[str, List[CompetitorSnapshot]] = {}
        self.updates: List[tuple] = []
        self.fail_update: Dict[str, Exception] = {}
        self.reject_update: Dict[str, str] = {}
        self.fail_price: Dict[str, Exception] = {}
        self.delay: float = 0

    def set_item(self, item_id: str, price: float, competitor_prices: List[float] = ()):
        self.prices[item_id] = price
        self.competitors[item_id] = [
            CompetitorSnapshot(competitor_item_id=f"{item_id}-c{i}", price=p, title="Widget")
            for i, p in enumerate(competitor_prices)
        ]

    async def get_manual_competitors(self, item_id: str, user_id: Optional[str] = None) -> List[CompetitorSnapshot]:
        return list(self.competitors.get(item_id, []))

    async def get_current_price(self, item_id: str, sku: Optional[str] = None, user_id: Optional[str] = None) -> float:
        if item_id in self.fail_price:
            raise self.fail_price[item_id]
        return self.prices[item_id]

    async def update_price(self, item_id, new_price, sku=None, user_id=None) -> PriceUpdateResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if item_id in self.fail_update:
            raise self.fail_update[item_id]
        if item_id in self.reject_update:
            return PriceUpdateResult(success=False, error=self.reject_update[item_id], status_code=400)
        self.updates.append((item_id, new_price))
        self.prices[item_id] = new_price
        return PriceUpdateResult(success=True, raw={"responses": [{"statusCode": 200}]})


@pytest.fixture
def db():
    return AsyncMongoMockClient()["repricer_test"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def listing_repo(db):
    return ListingRepository(db)


@pytest.fixture
def strategy_repo(db):
    return StrategyRepository(db)


@pytest.fixture
def rule_repo(db):
    return CompetitorRuleRepository(db)


@pytest.fixture
def competitor_repo(db):
    return ManualCompetitorRepository(db)


@pytest.fixture
def history_repo(db):
    return PriceHistoryRepository(db)


@pytest.fixture
def history(history_repo):
    return PriceHistoryService(history_repo)


@pytest.fixture
def orchestrator(gateway, history, listing_repo, strategy_repo, rule_repo):
    return RepricingOrchestrator(
        gateway,
        history,
        listing_repo,
        strategy_repo,
        rule_repo,
        timeout=0.2,
        lock_wait=1,
    )


@pytest.fixture
def monitoring(orchestrator, listing_repo, competitor_repo, history):
    return MonitoringScheduler(
        orchestrator,
        listing_repo,
        competitor_repo,
        history=history,
        batch_size=2,
        batch_delay=0,
        item_delay=0,
    )


@pytest.fixture
def catalog(strategy_repo, rule_repo, listing_repo, competitor_repo):
    return CatalogService(strategy_repo, rule_repo, listing_repo, competitor_repo, max_retries=2, backoff_seconds=0)


@pytest_asyncio.fixture
async def beat_by_one(strategy_repo):
    return await strategy_repo.insert(
        PricingStrategy(
            strategy_name="Beat by $1",
            repricing_rule="BEAT_LOWEST",
            adjustment_type="AMOUNT",
            adjustment_value=1,
        )
    )


@pytest_asyncio.fixture
async def keep_current(strategy_repo):
    return await strategy_repo.insert(
        PricingStrategy(
            strategy_name="Match, keep when alone",
            repricing_rule="MATCH_LOWEST",
            no_competition_action="KEEP_CURRENT",
        )
    )


@pytest.fixture
def make_listing(listing_repo):
    async def _make(item_id: str, strategy, min_price=None, max_price=None, **kwargs) -> Listing:
        return await listing_repo.insert(
            Listing(
                item_id=item_id,
                user_id=kwargs.pop("user_id", USER_ID),
                strategy_id=strategy.id if strategy is not None else None,
                min_price=min_price,
                max_price=max_price,
                **kwargs,
            )
        )

    return _make
