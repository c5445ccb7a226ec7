from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from repricer.core.errors import ConcurrencyConflict, NotFoundError, ValidationError
from repricer.infra.adapter.competitor_rule_repository import CompetitorRuleRepository
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.competitor_entity import CompetitorRule, CompetitorSnapshot
from repricer.infra.adapter.entity.listing_entity import Listing
from repricer.infra.adapter.entity.strategy_entity import AdjustmentType, PricingStrategy
from repricer.infra.adapter.listing_repository import ListingRepository
from repricer.infra.adapter.manual_competitor_repository import ManualCompetitorRepository
from repricer.infra.adapter.strategy_repository import StrategyRepository

logger = logging.getLogger(__name__)

Identifier = Union[str, ObjectId]


def as_object_id(value: Identifier, kind: str) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValidationError(f"Invalid {kind} id '{value}'", f"{kind}_id")


def _validation_error(e: PydanticValidationError, what: str) -> ValidationError:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return ValidationError(f"Invalid {what}: {field + ': ' if field else ''}{message}", field or None)


def with_percent_adjustment(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Accepts ``adjustment_percent`` (10 for 10%) as input and stores it as the
    fraction in ``adjustment_value``. Giving both fields is ambiguous and is
    rejected; ``adjustment_value`` alone is already a fraction.
    """
    if "adjustment_percent" not in data:
        return data

    data = dict(data)
    percent = data.pop("adjustment_percent")
    if data.get("adjustment_value") is not None:
        raise ValidationError("Give either adjustment_percent or adjustment_value, not both", "adjustment_percent")
    if data.get("adjustment_type") not in (None, AdjustmentType.PERCENTAGE):
        raise ValidationError("adjustment_percent requires adjustment_type PERCENTAGE", "adjustment_type")
    try:
        fraction = Decimal(str(percent)) / 100
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid adjustment_percent {percent!r}", "adjustment_percent") from e
    if fraction < 0:
        raise ValidationError("adjustment_percent cannot be negative", "adjustment_percent")

    data["adjustment_type"] = AdjustmentType.PERCENTAGE
    data["adjustment_value"] = float(fraction)
    return data


class CatalogService:
    """
    Strategies, competitor rules, manual competitors and their attachment to
    listings.

    Listing writes are optimistic: read, change, write only if ``version`` is
    unchanged; a lost race is retried with exponential backoff and surfaces
    as ``ConcurrencyConflict`` when retries run out.
    """

    def __init__(
        self,
        strategy_repo: StrategyRepository,
        rule_repo: CompetitorRuleRepository,
        listing_repo: ListingRepository,
        competitor_repo: ManualCompetitorRepository,
        max_retries: int = 3,
        backoff_seconds: float = 0.2,
    ):
        self.strategy_repo = strategy_repo
        self.rule_repo = rule_repo
        self.listing_repo = listing_repo
        self.competitor_repo = competitor_repo
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    # -------------------------------
    # Pricing strategies
    # -------------------------------
    async def create_strategy(self, data: Dict[str, Any], owner_id: Optional[str] = None) -> PricingStrategy:
        try:
            data = with_percent_adjustment(data)
            strategy = PricingStrategy(**{**data, "owner_id": owner_id or data.get("owner_id")})
        except PydanticValidationError as e:
            raise _validation_error(e, "pricing strategy") from e

        if await self.strategy_repo.get_by_name(strategy.owner_id, strategy.strategy_name):
            raise ValidationError(f"Strategy '{strategy.strategy_name}' already exists", "strategy_name")
        strategy = await self.strategy_repo.insert(strategy)
        logger.info(f"Created pricing strategy '{strategy.strategy_name}'")
        return strategy

    async def get_strategy(self, strategy_id: Identifier) -> PricingStrategy:
        strategy = await self.strategy_repo.get(as_object_id(strategy_id, "strategy"))
        if strategy is None:
            raise NotFoundError("Pricing strategy", strategy_id)
        return strategy

    async def list_strategies(self, owner_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[PricingStrategy]:
        return await self.strategy_repo.list(owner_id, is_active)

    async def update_strategy(self, strategy_id: Identifier, changes: Dict[str, Any]) -> PricingStrategy:
        current = await self.get_strategy(strategy_id)
        changes = with_percent_adjustment(changes)
        protected = {"_id", "id", "owner_id", "created_at", "usage_count", "last_used"}
        merged = {**current.model_dump(), **{k: v for k, v in changes.items() if k not in protected}}
        merged["id"] = current.id
        try:
            updated = PricingStrategy(**merged)
        except PydanticValidationError as e:
            raise _validation_error(e, "pricing strategy") from e

        if updated.strategy_name != current.strategy_name:
            clash = await self.strategy_repo.get_by_name(updated.owner_id, updated.strategy_name)
            if clash is not None and clash.id != current.id:
                raise ValidationError(f"Strategy '{updated.strategy_name}' already exists", "strategy_name")

        updated.updated_at = utc_now()
        await self.strategy_repo.replace(updated)
        return updated

    async def delete_strategy(self, strategy_id: Identifier) -> bool:
        strategy = await self.get_strategy(strategy_id)
        attached = await self.listing_repo.count_with_strategy(strategy.id)
        if attached:
            raise ValidationError(
                f"Strategy '{strategy.strategy_name}' is assigned to {attached} listing(s)",
                "strategy_id",
            )
        return await self.strategy_repo.delete(strategy.id) > 0

    # -------------------------------
    # Competitor rules
    # -------------------------------
    async def create_rule(self, data: Dict[str, Any], owner_id: Optional[str] = None) -> CompetitorRule:
        try:
            rule = CompetitorRule(**{**data, "owner_id": owner_id or data.get("owner_id")})
        except PydanticValidationError as e:
            raise _validation_error(e, "competitor rule") from e
        return await self.rule_repo.insert(rule)

    async def get_rule(self, rule_id: Identifier) -> CompetitorRule:
        rule = await self.rule_repo.get(as_object_id(rule_id, "rule"))
        if rule is None:
            raise NotFoundError("Competitor rule", rule_id)
        return rule

    async def list_rules(self, owner_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[CompetitorRule]:
        return await self.rule_repo.list(owner_id, is_active)

    # -------------------------------
    # Listings
    # -------------------------------
    async def add_listing(self, listing: Listing) -> Listing:
        if await self.listing_repo.get(listing.item_id, listing.sku, listing.user_id):
            raise ValidationError(f"Listing {listing.item_id} already exists", "item_id")
        return await self.listing_repo.insert(listing)

    async def assign_strategy(
        self,
        item_id: str,
        strategy_id: Identifier,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sku: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Listing:
        strategy = await self.get_strategy(strategy_id)
        if not strategy.is_active:
            raise ValidationError(f"Strategy '{strategy.strategy_name}' is inactive", "strategy_id")
        for name, value in (("min_price", min_price), ("max_price", max_price)):
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative", name)
        if min_price is not None and max_price is not None and min_price > max_price:
            raise ValidationError("Minimum price cannot be greater than maximum price", "min_price")

        changes = {"strategy_id": strategy.id, "min_price": min_price, "max_price": max_price}
        listing = await self.listing_repo.get(item_id, sku, user_id)
        if listing is None and user_id is not None:
            return await self.listing_repo.insert(Listing(item_id=item_id, sku=sku, user_id=user_id, **changes))
        return await self._update_listing(item_id, sku, user_id, lambda _listing: changes)

    async def assign_rule(
        self,
        item_id: str,
        rule_id: Optional[Identifier],
        sku: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Listing:
        """Attach a competitor rule, or detach it with ``rule_id=None``."""
        rule_oid = None
        if rule_id is not None:
            rule_oid = (await self.get_rule(rule_id)).id
        return await self._update_listing(item_id, sku, user_id, lambda _listing: {"competitor_rule_id": rule_oid})

    async def set_monitoring(
        self,
        item_id: str,
        enabled: bool,
        sku: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Listing:
        return await self._update_listing(item_id, sku, user_id, lambda _listing: {"monitoring_enabled": enabled})

    async def _update_listing(
        self,
        item_id: str,
        sku: Optional[str],
        user_id: Optional[str],
        build_changes: Callable[[Listing], Dict[str, Any]],
    ) -> Listing:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds),
            retry=retry_if_result(lambda applied: not applied),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            await retrying(self._write_listing, item_id, sku, user_id, build_changes)
        except RetryError as e:
            raise ConcurrencyConflict(
                f"Listing {item_id} kept changing; gave up after {self.max_retries + 1} attempts"
            ) from e
        return await self.listing_repo.get(item_id, sku, user_id)

    async def _write_listing(
        self,
        item_id: str,
        sku: Optional[str],
        user_id: Optional[str],
        build_changes: Callable[[Listing], Dict[str, Any]],
    ) -> bool:
        """One read-change-write round; ``False`` when another writer bumped the version first."""
        listing = await self.listing_repo.get(item_id, sku, user_id)
        if listing is None:
            raise NotFoundError("Listing", item_id)

        changes = build_changes(listing)
        try:
            Listing(**{**listing.model_dump(), **changes})
        except PydanticValidationError as e:
            raise _validation_error(e, "listing") from e

        applied = await self.listing_repo.update_versioned(listing, changes) > 0
        if not applied:
            logger.warning(f"Version conflict writing listing {item_id} (version {listing.version})")
        return applied

    # -------------------------------
    # Manual competitors
    # -------------------------------
    async def add_competitor(self, user_id: str, item_id: str, data: Dict[str, Any]) -> List[CompetitorSnapshot]:
        try:
            competitor = CompetitorSnapshot(**data)
        except PydanticValidationError as e:
            raise _validation_error(e, "competitor") from e
        await self.competitor_repo.upsert_competitor(user_id, item_id, competitor)
        return await self.competitor_repo.get_competitors(user_id, item_id)

    async def remove_competitor(self, user_id: str, item_id: str, competitor_item_id: str) -> List[CompetitorSnapshot]:
        removed = await self.competitor_repo.remove_competitor(user_id, item_id, competitor_item_id)
        if not removed:
            raise NotFoundError("Competitor", competitor_item_id)
        return await self.competitor_repo.get_competitors(user_id, item_id)

    async def list_competitors(self, user_id: str, item_id: str) -> List[CompetitorSnapshot]:
        return await self.competitor_repo.get_competitors(user_id, item_id)
