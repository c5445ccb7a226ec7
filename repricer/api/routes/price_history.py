from fastapi import APIRouter, Depends, Query, Request
from typing import List, Optional
import logging

from repricer.api.dto.repricing_dto import MaintenanceResponse
from repricer.core.history.models import HistorySummary, PaginatedHistory, PriceAnalytics, TrendAnalysis
from repricer.core.history.price_history_service import PriceHistoryService
from repricer.infra.adapter.entity.price_history_entity import PriceHistoryRecord
from repricer.infra.config.config import DEFAULT_ANALYTICS_PERIOD

router = APIRouter()
logger = logging.getLogger(__name__)


def get_history_service(request: Request) -> PriceHistoryService:
    return request.app.state.history_service


@router.get("/price-history/{item_id}", response_model=PaginatedHistory)
async def get_price_history(
        item_id: str,
        sku: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
        page: int = Query(1, ge=1),
        sort_by: str = Query("created_at"),
        sort_order: int = Query(-1),
        history: PriceHistoryService = Depends(get_history_service)
):
    return await history.paginate(item_id, sku, limit, page, sort_by, sort_order)


@router.get("/price-history/{item_id}/records", response_model=List[PriceHistoryRecord])
async def get_price_history_records(
        item_id: str,
        sku: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
        history: PriceHistoryService = Depends(get_history_service)
):
    return await history.query(item_id, sku, limit)


@router.get("/price-history/{item_id}/analytics", response_model=PriceAnalytics)
async def get_price_analytics(
        item_id: str,
        sku: Optional[str] = Query(None),
        period: str = Query(DEFAULT_ANALYTICS_PERIOD, pattern="^(7d|30d|90d|1y|all)$"),
        history: PriceHistoryService = Depends(get_history_service)
):
    return await history.analytics(item_id, sku, period)


@router.get("/price-history/{item_id}/summary", response_model=HistorySummary)
async def get_price_summary(
        item_id: str,
        sku: Optional[str] = Query(None),
        history: PriceHistoryService = Depends(get_history_service)
):
    return await history.summary(item_id, sku)


@router.get("/price-history/{item_id}/trend", response_model=TrendAnalysis)
async def get_price_trend(
        item_id: str,
        sku: Optional[str] = Query(None),
        days: int = Query(30, ge=1, le=3650),
        history: PriceHistoryService = Depends(get_history_service)
):
    return await history.trend(item_id, sku, days)


@router.post("/price-history/archive", response_model=MaintenanceResponse)
async def archive_price_history(
        keep_recent_count: int = Query(1000, ge=0),
        history: PriceHistoryService = Depends(get_history_service)
):
    result = await history.archive(keep_recent_count)
    return MaintenanceResponse(**result.model_dump())


@router.post("/price-history/cleanup-failed", response_model=MaintenanceResponse)
async def cleanup_failed_price_history(
        days_old: int = Query(30, ge=0),
        history: PriceHistoryService = Depends(get_history_service)
):
    result = await history.cleanup_failed(days_old)
    return MaintenanceResponse(**result.model_dump())
