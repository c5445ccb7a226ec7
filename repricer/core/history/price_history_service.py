import math
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union
import logging

from pydantic import ValidationError as PydanticValidationError

from repricer.core.errors import ValidationError
from repricer.core.history.models import (
    HistoryStatistics,
    HistorySummary,
    MaintenanceResult,
    PaginatedHistory,
    Pagination,
    PriceAnalytics,
    PricePoint,
    TrendAnalysis,
)
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.price_history_entity import (
    ChangeDirection,
    PriceHistoryCreate,
    PriceHistoryRecord,
)
from repricer.infra.adapter.price_history_repository import PriceHistoryRepository
from repricer.infra.config.config import (
    ANALYTICS_PERIOD_DAYS,
    DEFAULT_ANALYTICS_PERIOD,
    HISTORY_SORT_FIELDS,
)

logger = logging.getLogger(__name__)

HistoryEntry = Union[PriceHistoryCreate, Dict[str, Any]]


def _round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def derive_change(entry: PriceHistoryCreate) -> PriceHistoryCreate:
    """Fill change amount, percentage and direction from old/new price."""
    if entry.old_price is None:
        return entry

    changes: Dict[str, Any] = {}
    amount = entry.change_amount
    if amount is None:
        amount = _round2(entry.new_price - entry.old_price)
        changes["change_amount"] = amount
    if entry.change_percentage is None and entry.old_price > 0:
        changes["change_percentage"] = _round2(amount / entry.old_price * 100)
    if entry.change_direction is None:
        if amount > 0:
            changes["change_direction"] = ChangeDirection.INCREASED.value
        elif amount < 0:
            changes["change_direction"] = ChangeDirection.DECREASED.value
        else:
            changes["change_direction"] = ChangeDirection.UNCHANGED.value
    return entry.model_copy(update=changes) if changes else entry


class PriceHistoryService:
    """Append-only audit trail of repricing decisions plus its read models."""

    def __init__(self, repo: PriceHistoryRepository):
        self.repo = repo

    @staticmethod
    def _validate(entry: HistoryEntry) -> PriceHistoryCreate:
        if isinstance(entry, PriceHistoryCreate):
            return entry
        try:
            return PriceHistoryCreate(**entry)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"Invalid price history entry: {field}: {first.get('msg')}", field) from e

    def _build(self, entry: HistoryEntry) -> PriceHistoryRecord:
        entry = derive_change(self._validate(entry))
        return PriceHistoryRecord(**entry.model_dump())

    async def record(self, entry: HistoryEntry) -> PriceHistoryRecord:
        record = await self.repo.insert(self._build(entry))
        logger.debug(f"Recorded {record.status} history for item {record.item_id} ({record.new_price})")
        return record

    async def record_many(self, entries: Iterable[HistoryEntry]) -> List[PriceHistoryRecord]:
        # validate everything before writing anything
        records = [self._build(entry) for entry in entries]
        return await self.repo.insert_many(records)

    async def query(
        self,
        item_id: str,
        sku: Optional[str] = None,
        limit: int = 100,
        page: int = 1,
        sort_by: str = "created_at",
        sort_order: int = -1,
    ) -> List[PriceHistoryRecord]:
        if not item_id:
            raise ValidationError("item_id is required", "item_id")
        if sort_by not in HISTORY_SORT_FIELDS:
            raise ValidationError(f"Cannot sort price history by '{sort_by}'", "sort_by")
        limit = max(1, limit)
        page = max(1, page)
        direction = 1 if sort_order == 1 else -1
        sort = [(sort_by, direction)]
        if sort_by != "created_at":
            sort.append(("created_at", -1))
        sort.append(("_id", -1))
        return await self.repo.find(
            self.repo.item_query(item_id, sku),
            sort=sort,
            skip=(page - 1) * limit,
            limit=limit,
        )

    async def paginate(
        self,
        item_id: str,
        sku: Optional[str] = None,
        limit: int = 100,
        page: int = 1,
        sort_by: str = "created_at",
        sort_order: int = -1,
    ) -> PaginatedHistory:
        records = await self.query(item_id, sku, limit, page, sort_by, sort_order)
        limit = max(1, limit)
        page = max(1, page)
        total_records = await self.repo.count_records(self.repo.item_query(item_id, sku))
        total_pages = math.ceil(total_records / limit)
        return PaginatedHistory(
            records=records,
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_records=total_records,
                records_per_page=limit,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
            statistics=await self.statistics(item_id, sku),
        )

    async def statistics(self, item_id: str, sku: Optional[str] = None) -> Optional[HistoryStatistics]:
        query = self.repo.item_query(item_id, sku)
        query["success"] = True
        records = await self.repo.find(query)
        if not records:
            return None

        prices = [r.new_price for r in records]
        strategies = []
        for r in records:
            if r.strategy_name and r.strategy_name not in strategies:
                strategies.append(r.strategy_name)
        return HistoryStatistics(
            total_records=len(records),
            avg_price=_round2(sum(prices) / len(prices)),
            min_price=min(prices),
            max_price=max(prices),
            total_price_change=_round2(sum(r.change_amount or 0 for r in records)),
            first_record=min(r.created_at for r in records),
            last_update=max(r.created_at for r in records),
            strategies_used=strategies,
        )

    async def analytics(self, item_id: str, sku: Optional[str] = None, period: str = DEFAULT_ANALYTICS_PERIOD) -> PriceAnalytics:
        if not item_id:
            raise ValidationError("item_id is required", "item_id")
        if period not in ANALYTICS_PERIOD_DAYS:
            period = DEFAULT_ANALYTICS_PERIOD

        end_date = utc_now()
        days = ANALYTICS_PERIOD_DAYS[period]
        start_date = end_date - timedelta(days=days) if days is not None else None

        query = self.repo.item_query(item_id, sku)
        query["success"] = True
        created_at: Dict[str, Any] = {"$lte": end_date}
        if start_date is not None:
            created_at["$gte"] = start_date
        query["created_at"] = created_at

        records = await self.repo.find(query, sort=[("created_at", 1), ("_id", 1)])
        if not records:
            return PriceAnalytics(
                item_id=item_id,
                sku=sku,
                period=period,
                start_date=start_date,
                end_date=end_date,
                message="No price records found in this period",
            )

        price_at_start = records[0].new_price
        current_price = records[-1].new_price
        total_change = _round2(current_price - price_at_start)
        percent_change = _round2(total_change / price_at_start * 100) if price_at_start > 0 else None

        window_start = start_date or records[0].created_at
        window_days = max(1, math.ceil((end_date - window_start).total_seconds() / 86400))
        change_frequency = (
            f"{len(records) / window_days:.2f} changes per day" if len(records) > 1 else "No changes"
        )

        return PriceAnalytics(
            item_id=item_id,
            sku=sku,
            period=period,
            start_date=start_date,
            end_date=end_date,
            price_at_start=price_at_start,
            current_price=current_price,
            total_change=total_change,
            percent_change=percent_change,
            total_records=len(records),
            change_frequency=change_frequency,
            price_points=[
                PricePoint(
                    price=r.new_price,
                    date=r.created_at,
                    change_amount=r.change_amount,
                    change_percentage=r.change_percentage,
                )
                for r in records
            ],
        )

    async def summary(self, item_id: str, sku: Optional[str] = None) -> HistorySummary:
        query = self.repo.item_query(item_id, sku)
        query["success"] = True
        recent = await self.repo.find(query, sort=[("created_at", -1), ("_id", -1)], limit=10)
        if not recent:
            return HistorySummary(has_history=False)

        latest = recent[0]
        return HistorySummary(
            has_history=True,
            total_changes=len(recent),
            latest_change=latest.created_at,
            current_price=latest.new_price,
            last_change_amount=latest.change_amount,
            price_direction=latest.change_direction or ChangeDirection.UNCHANGED.value,
            last_strategy=latest.strategy_name,
        )

    async def trend(self, item_id: str, sku: Optional[str] = None, days: int = 30) -> TrendAnalysis:
        """Classify recent movement as stable, moderate (>5%) or volatile (>10%)."""
        query = self.repo.item_query(item_id, sku)
        query["success"] = True
        query["created_at"] = {"$gte": utc_now() - timedelta(days=days)}
        records = await self.repo.find(query, sort=[("created_at", 1), ("_id", 1)])
        if not records:
            return TrendAnalysis(trend="no-data")

        first_price = records[0].new_price
        last_price = records[-1].new_price
        total_change = last_price - first_price
        percent_change = total_change / first_price * 100 if first_price > 0 else 0
        changes = [abs(r.change_amount) for r in records if r.change_amount is not None]
        average_change = sum(changes) / len(changes) if changes else 0

        trend = "stable"
        if abs(percent_change) > 10:
            trend = "volatile"
        elif abs(percent_change) > 5:
            trend = "moderate"

        direction = "unchanged"
        if total_change > 0:
            direction = "increasing"
        elif total_change < 0:
            direction = "decreasing"

        return TrendAnalysis(
            trend=trend,
            direction=direction,
            total_change=_round2(total_change),
            percent_change=_round2(percent_change),
            volatility=_round2(average_change),
            average_change=_round2(average_change),
            data_points=len(records),
        )

    async def archive(self, keep_recent_count: int = 1000) -> MaintenanceResult:
        """Keep only the newest ``keep_recent_count`` rows per item."""
        if keep_recent_count < 0:
            raise ValidationError("keep_recent_count cannot be negative", "keep_recent_count")
        archived = 0
        for item_id in await self.repo.item_ids():
            ids = await self.repo.ids_beyond(item_id, keep_recent_count)
            archived += await self.repo.delete_ids(ids)
        if archived:
            logger.info(f"Archived {archived} price history records")
        return MaintenanceResult(archived_count=archived)

    async def cleanup_failed(self, days_old: int = 30) -> MaintenanceResult:
        if days_old < 0:
            raise ValidationError("days_old cannot be negative", "days_old")
        deleted = await self.repo.delete_failed_before(utc_now() - timedelta(days=days_old))
        if deleted:
            logger.info(f"Deleted {deleted} failed price history records older than {days_old} days")
        return MaintenanceResult(deleted_count=deleted)
