import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Tuple
import logging

from pydantic import ValidationError as PydanticValidationError

from repricer.core.errors import ExternalApiError, NotFoundError, RepricerError, ValidationError
from repricer.core.gateway.marketplace_gateway import MarketplaceGateway
from repricer.core.history.price_history_service import PriceHistoryService
from repricer.core.pricing.competitor_filter import CompetitorFilter, FilterResult
from repricer.core.pricing.price_engine import PriceDecision, PriceEngine
from repricer.core.repricing.item_lock import ItemBusy, ItemLockRegistry
from repricer.core.repricing.state import RepricingRun, RepricingState
from repricer.infra.adapter.competitor_rule_repository import CompetitorRuleRepository
from repricer.infra.adapter.entity.competitor_entity import CompetitorRule
from repricer.infra.adapter.entity.listing_entity import Listing
from repricer.infra.adapter.entity.price_history_entity import (
    ApiErrorDetail,
    HistorySource,
    HistoryStatus,
    TimeoutDetail,
    UnclassifiedErrorDetail,
)
from repricer.infra.adapter.entity.strategy_entity import PricingStrategy
from repricer.infra.adapter.listing_repository import ListingRepository
from repricer.infra.adapter.strategy_repository import StrategyRepository

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    item_id: str
    success: bool
    message: str
    state: RepricingState
    sku: Optional[str] = None
    price_changes: bool = False
    old_price: Optional[float] = None
    new_price: Optional[float] = None
    competitor_lowest_price: Optional[float] = None
    competitors_found: int = 0
    competitors_admissible: int = 0
    history_id: Optional[str] = None
    rejected: bool = False
    busy: bool = False
    trail: List[RepricingState] = field(default_factory=list)


class RepricingOrchestrator:
    """
    Drives one listing through fetch, filter, compute and update.

    ``execute`` never raises for a per-item failure: marketplace errors end in
    an ``Error`` history row, invalid configuration is rejected without one,
    and the outcome is always an ``ExecutionResult``.
    """

    def __init__(
        self,
        gateway: MarketplaceGateway,
        history: PriceHistoryService,
        listing_repo: ListingRepository,
        strategy_repo: StrategyRepository,
        rule_repo: CompetitorRuleRepository,
        engine: Optional[PriceEngine] = None,
        locks: Optional[ItemLockRegistry] = None,
        timeout: float = 30,
        lock_wait: float = 60,
    ):
        self.gateway = gateway
        self.history = history
        self.listing_repo = listing_repo
        self.strategy_repo = strategy_repo
        self.rule_repo = rule_repo
        self.engine = engine or PriceEngine()
        self.locks = locks or ItemLockRegistry()
        self.timeout = timeout
        self.lock_wait = lock_wait

    async def execute(
        self,
        item_id: str,
        user_id: Optional[str] = None,
        sku: Optional[str] = None,
        source: HistorySource = HistorySource.API,
        wait: bool = False,
    ) -> ExecutionResult:
        if sku is None:
            # lock on the same key the scheduler uses for this listing
            try:
                sku = await self._resolve_sku(item_id, user_id)
            except Exception as e:
                logger.error(f"Could not look up listing {item_id}: {str(e)}", exc_info=True)
                return ExecutionResult(
                    item_id=item_id,
                    success=False,
                    message=f"Could not look up listing {item_id}: {str(e)}",
                    state=RepricingState.IDLE,
                    rejected=True,
                )
        try:
            async with self.locks.hold(item_id, sku, wait=wait, timeout=self.lock_wait):
                return await self._execute(item_id, user_id, sku, source)
        except ItemBusy as e:
            logger.info(str(e))
            return ExecutionResult(
                item_id=item_id,
                sku=sku,
                success=False,
                message=str(e),
                state=RepricingState.IDLE,
                rejected=True,
                busy=True,
            )

    async def _execute(self, item_id: str, user_id: Optional[str], sku: Optional[str], source) -> ExecutionResult:
        run = RepricingRun()
        try:
            listing, strategy, rule = await self.load(item_id, user_id, sku)
        except (ValidationError, NotFoundError) as e:
            logger.warning(f"Repricing rejected for item {item_id}: {str(e)}")
            return ExecutionResult(
                item_id=item_id,
                sku=sku,
                success=False,
                message=str(e),
                state=run.state,
                rejected=True,
                trail=list(run.trail),
            )
        except Exception as e:
            logger.error(f"Could not load repricing configuration for item {item_id}: {str(e)}", exc_info=True)
            return ExecutionResult(
                item_id=item_id,
                sku=sku,
                success=False,
                message=f"Could not load repricing configuration: {str(e)}",
                state=run.state,
                rejected=True,
                trail=list(run.trail),
            )

        base = self._history_base(listing, strategy, source)
        old_price: Optional[float] = None
        attempted: Optional[float] = None
        try:
            run.advance(RepricingState.FETCHING_COMPETITORS)
            competitors = await self._call(
                "get_manual_competitors",
                self.gateway.get_manual_competitors(item_id, listing.user_id),
            )
            old_price = await self._call(
                "get_current_price",
                self.gateway.get_current_price(item_id, listing.sku, listing.user_id),
            )

            run.advance(RepricingState.FILTERING)
            filtered = CompetitorFilter(rule).apply(competitors, old_price, listing.identifiers)
            if rule is not None and rule.id is not None:
                await self.rule_repo.record_execution(rule.id, len(competitors), filtered.excluded_count)

            run.advance(RepricingState.COMPUTING)
            decision = self.engine.compute(
                strategy,
                filtered.prices,
                old_price,
                listing.min_price,
                listing.max_price,
            )

            if not decision.update_needed:
                run.advance(RepricingState.SKIPPED)
                return await self._skip(run, base, listing, decision, filtered, len(competitors))

            run.advance(RepricingState.UPDATING)
            attempted = decision.candidate
            update = await self._call(
                "update_price",
                self.gateway.update_price(item_id, decision.candidate, listing.sku, listing.user_id),
            )
            if not update.success:
                raise ExternalApiError(
                    update.error or "Price update rejected by marketplace",
                    ApiErrorDetail(
                        operation="update_price",
                        message=update.error or "Price update rejected by marketplace",
                        status_code=update.status_code,
                        response=update.raw,
                    ),
                )

            run.advance(RepricingState.DONE)
            return await self._done(run, base, listing, strategy, decision, filtered, len(competitors), update.raw)
        except ExternalApiError as e:
            return await self._fail(run, base, listing, old_price, attempted, e.message, e.detail)
        except Exception as e:
            logger.error(f"Unexpected error repricing item {item_id}: {str(e)}", exc_info=True)
            if run.finished:
                # the decision is already recorded; only the bookkeeping after it failed
                return ExecutionResult(
                    item_id=item_id,
                    sku=listing.sku,
                    success=False,
                    message=f"Bookkeeping failed after {run.state.value}: {str(e)}",
                    state=run.state,
                    old_price=old_price,
                    trail=list(run.trail),
                )
            return await self._fail(
                run, base, listing, old_price, attempted, str(e), UnclassifiedErrorDetail(payload=repr(e))
            )

    async def _resolve_sku(self, item_id: str, user_id: Optional[str]) -> Optional[str]:
        try:
            listing = await self.listing_repo.get(item_id, None, user_id)
        except PydanticValidationError:
            return None
        return listing.sku if listing else None

    async def load(
        self,
        item_id: str,
        user_id: Optional[str] = None,
        sku: Optional[str] = None,
    ) -> Tuple[Listing, PricingStrategy, Optional[CompetitorRule]]:
        """Listing, strategy and rule for an item, or ``ValidationError``/``NotFoundError``."""
        try:
            listing = await self.listing_repo.get(item_id, sku, user_id)
            if listing is None:
                raise NotFoundError("Listing", item_id)
            if listing.strategy_id is None:
                raise ValidationError(f"No pricing strategy assigned to item {item_id}", "strategy_id")

            strategy = await self.strategy_repo.get(listing.strategy_id)
            if strategy is None:
                raise NotFoundError("Pricing strategy", listing.strategy_id)
            if not strategy.is_active:
                raise ValidationError(f"Pricing strategy '{strategy.strategy_name}' is inactive", "is_active")

            rule = None
            if listing.competitor_rule_id is not None:
                rule = await self.rule_repo.get(listing.competitor_rule_id)
                if rule is None:
                    raise NotFoundError("Competitor rule", listing.competitor_rule_id)
                if not rule.is_active:
                    logger.info(f"Competitor rule '{rule.rule_name}' is inactive; item {item_id} uses all competitors")
                    rule = None
        except PydanticValidationError as e:
            raise ValidationError(f"Stored configuration for item {item_id} is invalid: {e.errors()[0]['msg']}") from e
        return listing, strategy, rule

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as e:
            raise ExternalApiError(
                f"{operation} timed out after {self.timeout}s",
                TimeoutDetail(operation=operation, timeout_seconds=self.timeout),
            ) from e
        except RepricerError as e:
            if isinstance(e, ExternalApiError):
                raise
            raise ExternalApiError(str(e), ApiErrorDetail(operation=operation, message=str(e))) from e
        except Exception as e:
            raise ExternalApiError(
                f"{operation} failed: {str(e)}",
                UnclassifiedErrorDetail(payload=repr(e)),
            ) from e

    @staticmethod
    def _history_base(listing: Listing, strategy: PricingStrategy, source) -> Dict[str, Any]:
        return {
            "item_id": listing.item_id,
            "sku": listing.sku,
            "user_id": listing.user_id,
            "title": listing.title,
            "strategy_name": strategy.strategy_name,
            "repricing_rule": strategy.repricing_rule,
            "min_price": listing.min_price,
            "max_price": listing.max_price,
            "source": source,
        }

    @staticmethod
    def _metadata(decision: PriceDecision, filtered: FilterResult, found: int) -> Dict[str, Any]:
        return {
            "competitors_found": found,
            "competitors_admissible": len(filtered.admissible),
            "excluded_by_reason": filtered.excluded_by_reason,
            "raw_price": decision.raw_price,
            "constraint_applied": decision.constraint_applied,
        }

    async def _skip(self, run, base, listing, decision, filtered, found) -> ExecutionResult:
        record = await self.history.record({
            **base,
            "old_price": decision.current_price,
            "new_price": decision.candidate,
            "competitor_lowest_price": decision.lowest_competitor_price,
            "status": HistoryStatus.SKIPPED,
            "success": True,
            "reason": decision.reason,
            "metadata": self._metadata(decision, filtered, found),
        })
        await self.listing_repo.record_price(listing.id, decision.current_price, repriced=False)
        logger.info(f"Item {listing.item_id}: no update needed ({decision.reason})")
        return ExecutionResult(
            item_id=listing.item_id,
            sku=listing.sku,
            success=True,
            message="No price change needed",
            state=run.state,
            old_price=decision.current_price,
            new_price=decision.candidate,
            competitor_lowest_price=decision.lowest_competitor_price,
            competitors_found=found,
            competitors_admissible=len(filtered.admissible),
            history_id=str(record.id),
            trail=list(run.trail),
        )

    async def _done(self, run, base, listing, strategy, decision, filtered, found, raw) -> ExecutionResult:
        record = await self.history.record({
            **base,
            "old_price": decision.current_price,
            "new_price": decision.candidate,
            "competitor_lowest_price": decision.lowest_competitor_price,
            "status": HistoryStatus.DONE,
            "success": True,
            "reason": decision.reason,
            "api_response": raw,
            "metadata": self._metadata(decision, filtered, found),
        })
        await self.listing_repo.record_price(listing.id, decision.candidate, repriced=True)
        await self.strategy_repo.mark_used(strategy.id)
        logger.info(f"Item {listing.item_id}: price updated {decision.current_price} -> {decision.candidate}")
        return ExecutionResult(
            item_id=listing.item_id,
            sku=listing.sku,
            success=True,
            message=f"Price updated from {decision.current_price:.2f} to {decision.candidate:.2f}",
            state=run.state,
            price_changes=True,
            old_price=decision.current_price,
            new_price=decision.candidate,
            competitor_lowest_price=decision.lowest_competitor_price,
            competitors_found=found,
            competitors_admissible=len(filtered.admissible),
            history_id=str(record.id),
            trail=list(run.trail),
        )

    async def _fail(self, run, base, listing, old_price, attempted, message, detail) -> ExecutionResult:
        run.fail()
        if attempted is not None:
            new_price = attempted
        elif old_price is not None:
            new_price = old_price
        else:
            new_price = listing.last_known_price or 0.0
        logger.error(f"Repricing failed for item {listing.item_id}: {message}")

        history_id = None
        try:
            record = await self.history.record({
                **base,
                "old_price": old_price,
                "new_price": new_price,
                "status": HistoryStatus.ERROR,
                "success": False,
                "reason": message[:500],
                "error": detail.model_dump() if detail is not None else None,
            })
            history_id = str(record.id)
        except Exception as e:
            logger.error(f"Could not record failure for item {listing.item_id}: {str(e)}", exc_info=True)

        return ExecutionResult(
            item_id=listing.item_id,
            sku=listing.sku,
            success=False,
            message=message,
            state=run.state,
            old_price=old_price,
            history_id=history_id,
            trail=list(run.trail),
        )
