from fastapi import APIRouter, Depends, Request
from typing import Optional
from repricer.api.dto.repricing_dto import CycleSummaryResponse, ExecuteItemRequest, ExecutionResultResponse
from repricer.core.scheduler.monitoring_scheduler import MonitoringScheduler
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def get_scheduler(request: Request) -> MonitoringScheduler:
    return request.app.state.scheduler


@router.post("/repricing/cycle", response_model=CycleSummaryResponse)
async def run_cycle(scheduler: MonitoringScheduler = Depends(get_scheduler)):
    summary = await scheduler.run_cycle(trigger="manual")
    return CycleSummaryResponse.model_validate(summary)


@router.post("/repricing/items/{item_id}", response_model=ExecutionResultResponse)
async def execute_item(
        item_id: str,
        body: Optional[ExecuteItemRequest] = None,
        scheduler: MonitoringScheduler = Depends(get_scheduler)
):
    logger.info(f"Manual repricing requested for item {item_id}")
    body = body or ExecuteItemRequest()
    result = await scheduler.run_for_item(item_id, sku=body.sku, user_id=body.user_id)
    return ExecutionResultResponse.model_validate(result)


@router.post("/repricing/competitors", response_model=CycleSummaryResponse)
async def execute_all_with_competitors(scheduler: MonitoringScheduler = Depends(get_scheduler)):
    summary = await scheduler.run_for_all_with_competitors()
    return CycleSummaryResponse.model_validate(summary)
