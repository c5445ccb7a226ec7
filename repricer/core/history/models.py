from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from repricer.infra.adapter.entity.price_history_entity import PriceHistoryRecord


class PricePoint(BaseModel):
    price: float
    date: datetime
    change_amount: Optional[float] = None
    change_percentage: Optional[float] = None


class PriceAnalytics(BaseModel):
    item_id: str
    sku: Optional[str] = None
    period: str
    start_date: Optional[datetime] = None
    end_date: datetime
    price_at_start: Optional[float] = None
    current_price: Optional[float] = None
    total_change: Optional[float] = None
    percent_change: Optional[float] = None
    total_records: int = 0
    change_frequency: str = "No changes"
    price_points: List[PricePoint] = []
    message: Optional[str] = None


class HistorySummary(BaseModel):
    has_history: bool
    total_changes: int = 0
    latest_change: Optional[datetime] = None
    current_price: Optional[float] = None
    last_change_amount: Optional[float] = None
    price_direction: str = "unchanged"
    last_strategy: Optional[str] = None


class TrendAnalysis(BaseModel):
    trend: str
    direction: str = "unchanged"
    total_change: float = 0
    percent_change: float = 0
    volatility: float = 0
    average_change: float = 0
    data_points: int = 0


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    records_per_page: int
    has_next_page: bool
    has_prev_page: bool


class HistoryStatistics(BaseModel):
    total_records: int
    avg_price: float
    min_price: float
    max_price: float
    total_price_change: float
    first_record: datetime
    last_update: datetime
    strategies_used: List[str]


class PaginatedHistory(BaseModel):
    records: List[PriceHistoryRecord]
    pagination: Pagination
    statistics: Optional[HistoryStatistics] = None


class MaintenanceResult(BaseModel):
    success: bool = True
    archived_count: int = 0
    deleted_count: int = 0
