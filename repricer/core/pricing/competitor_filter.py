from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from repricer.infra.adapter.entity.competitor_entity import CompetitorRule, CompetitorSnapshot

logger = logging.getLogger(__name__)

IDENTIFIER_FIELDS = ("mpn", "upc", "ean", "isbn")
MAX_PERCENT_OF_CURRENT_PRICE = 1000


@dataclass
class PriceAnalysis:
    competitor_count: int
    lowest_price: Optional[float]
    highest_price: Optional[float]
    average_price: Optional[float]


@dataclass
class FilterResult:
    admissible: List[CompetitorSnapshot]
    excluded_count: int
    excluded_by_reason: Dict[str, int] = field(default_factory=dict)

    @property
    def prices(self) -> List[float]:
        return [competitor.price for competitor in self.admissible]

    def analysis(self) -> PriceAnalysis:
        prices = [p for p in self.prices if p > 0]
        if not prices:
            return PriceAnalysis(len(self.admissible), None, None, None)
        average = sum(Decimal(str(p)) for p in prices) / len(prices)
        return PriceAnalysis(
            competitor_count=len(self.admissible),
            lowest_price=min(prices),
            highest_price=max(prices),
            average_price=float(round(average, 2)),
        )


class CompetitorFilter:
    """
    Applies a competitor rule to a list of snapshots.

    Predicates run in a fixed order and the first one that fails decides the
    exclusion reason. Without a rule every competitor is admissible.
    """

    def __init__(self, rule: Optional[CompetitorRule] = None):
        self.rule = rule
        self._predicates: List[Tuple[str, Callable[[CompetitorSnapshot, float, Mapping[str, str]], bool]]] = [
            ("price_range", self._in_price_range),
            ("country", self._allowed_country),
            ("condition", self._allowed_condition),
            ("seller", self._allowed_seller),
            ("title", self._allowed_title),
            ("identifier", self._matches_identifiers),
            ("shipping", self._allowed_shipping),
        ]

    def apply(
        self,
        competitors: Sequence[CompetitorSnapshot],
        current_price: float,
        identifiers: Optional[Mapping[str, str]] = None,
    ) -> FilterResult:
        if self.rule is None:
            return FilterResult(admissible=list(competitors), excluded_count=0)

        identifiers = identifiers or {}
        admissible: List[CompetitorSnapshot] = []
        reasons: Counter = Counter()

        for competitor in competitors:
            reason = self.exclusion_reason(competitor, current_price, identifiers)
            if reason is None:
                admissible.append(competitor)
            else:
                reasons[reason] += 1

        excluded = sum(reasons.values())
        if excluded:
            logger.debug(f"Competitor rule '{self.rule.rule_name}' excluded {excluded} of {len(competitors)}: {dict(reasons)}")
        return FilterResult(admissible=admissible, excluded_count=excluded, excluded_by_reason=dict(reasons))

    def exclusion_reason(
        self,
        competitor: CompetitorSnapshot,
        current_price: float,
        identifiers: Mapping[str, str],
    ) -> Optional[str]:
        for reason, predicate in self._predicates:
            if not predicate(competitor, current_price, identifiers):
                return reason
        return None

    def _in_price_range(self, competitor, current_price, _identifiers) -> bool:
        if current_price is None or current_price <= 0:
            return True
        pct = Decimal(str(competitor.price)) / Decimal(str(current_price)) * 100
        if pct < Decimal(str(self.rule.min_percent_of_current_price)):
            return False
        # the ceiling of the range means "no upper limit"
        if self.rule.max_percent_of_current_price >= MAX_PERCENT_OF_CURRENT_PRICE:
            return True
        return pct <= Decimal(str(self.rule.max_percent_of_current_price))

    def _allowed_country(self, competitor, _current_price, _identifiers) -> bool:
        if not self.rule.exclude_countries or not competitor.country:
            return True
        excluded = {country.strip().lower() for country in self.rule.exclude_countries}
        return competitor.country.strip().lower() not in excluded

    def _allowed_condition(self, competitor, _current_price, _identifiers) -> bool:
        if not self.rule.exclude_conditions or not competitor.condition:
            return True
        return competitor.condition not in self.rule.exclude_conditions

    def _allowed_seller(self, competitor, _current_price, _identifiers) -> bool:
        if not self.rule.exclude_sellers or not competitor.seller_name:
            return True
        return competitor.seller_name not in self.rule.exclude_sellers

    def _allowed_title(self, competitor, _current_price, _identifiers) -> bool:
        if not self.rule.exclude_product_title_words:
            return True
        title = (competitor.title or "").lower()
        return not any(word.lower() in title for word in self.rule.exclude_product_title_words if word)

    def _matches_identifiers(self, competitor, _current_price, identifiers) -> bool:
        if not self.rule.find_competitors_based_on_mpn:
            return True
        for key in IDENTIFIER_FIELDS:
            ours = identifiers.get(key)
            theirs = getattr(competitor, key)
            if ours and theirs and ours.strip().lower() == theirs.strip().lower():
                return True
        return False

    def _allowed_shipping(self, competitor, _current_price, _identifiers) -> bool:
        if self.rule.max_shipping_cost is None:
            return True
        return competitor.shipping_cost <= self.rule.max_shipping_cost
