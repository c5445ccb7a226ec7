from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence
import logging

from repricer.infra.adapter.entity.strategy_entity import (
    AdjustmentType,
    NoCompetitionAction,
    PricingStrategy,
    RepricingRule,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceDecision:
    candidate: float
    update_needed: bool
    current_price: float
    lowest_competitor_price: Optional[float] = None
    raw_price: Optional[float] = None
    constraint_applied: Optional[str] = None
    reason: str = ""


class PriceEngine:
    """
    Computes the candidate price for one listing.

    All arithmetic is done on ``Decimal`` and the result is rounded half-up to
    cents before comparing it with the current price.
    """

    def compute(
        self,
        strategy: PricingStrategy,
        competitor_prices: Sequence[float],
        current_price: float,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> PriceDecision:
        current = to_money(current_price)
        prices = [Decimal(str(p)) for p in competitor_prices if p is not None and p > 0]

        if not prices and strategy.no_competition_action == NoCompetitionAction.KEEP_CURRENT:
            # nothing to react to: the listing stays as is, even outside its bounds
            return PriceDecision(
                candidate=float(current),
                update_needed=False,
                current_price=float(current),
                raw_price=float(current),
                reason="No competitors; keeping current price",
            )

        if not prices:
            raw, reason = self._no_competition_price(strategy, current, min_price, max_price)
            lowest = None
        else:
            lowest = min(prices)
            raw = self._apply_rule(strategy, lowest)
            reason = f"{strategy.repricing_rule} against lowest competitor {to_money(lowest)}"

        candidate, constraint = self._clamp(raw, min_price, max_price)
        candidate = to_money(candidate)

        if candidate <= 0:
            logger.warning(f"Strategy '{strategy.strategy_name}' produced non-positive price {candidate}; keeping {current}")
            candidate = current
            constraint = "non_positive"

        update_needed = abs(candidate - current) >= CENT
        return PriceDecision(
            candidate=float(candidate),
            update_needed=update_needed,
            current_price=float(current),
            lowest_competitor_price=float(lowest) if lowest is not None else None,
            raw_price=float(to_money(raw)),
            constraint_applied=constraint,
            reason=reason,
        )

    @staticmethod
    def _apply_rule(strategy: PricingStrategy, lowest: Decimal) -> Decimal:
        rule = strategy.repricing_rule
        if rule == RepricingRule.MATCH_LOWEST:
            return lowest

        value = Decimal(str(strategy.adjustment_value or 0))
        is_percentage = strategy.adjustment_type == AdjustmentType.PERCENTAGE

        if rule == RepricingRule.BEAT_LOWEST:
            return lowest * (1 - value) if is_percentage else lowest - value
        if rule == RepricingRule.STAY_ABOVE:
            return lowest * (1 + value) if is_percentage else lowest + value
        raise ValueError(f"Unknown repricing rule {rule}")

    @staticmethod
    def _no_competition_price(strategy, current: Decimal, min_price, max_price):
        action = strategy.no_competition_action
        if action == NoCompetitionAction.USE_MAX_PRICE:
            if max_price is None:
                return current, "No competitors and no maximum price; keeping current price"
            return Decimal(str(max_price)), "No competitors; using maximum price"
        if action == NoCompetitionAction.USE_MIN_PRICE:
            if min_price is None:
                return current, "No competitors and no minimum price; keeping current price"
            return Decimal(str(min_price)), "No competitors; using minimum price"
        raise ValueError(f"Unknown no-competition action {action}")

    @staticmethod
    def _clamp(price: Decimal, min_price, max_price):
        if min_price is not None and price < Decimal(str(min_price)):
            return Decimal(str(min_price)), "min_price"
        if max_price is not None and price > Decimal(str(max_price)):
            return Decimal(str(max_price)), "max_price"
        return price, None
