from fastapi import APIRouter, Depends, Request
from repricer.api.controllers.scheduler_controller import SchedulerController
from repricer.api.dto.repricing_dto import SchedulerStatusResponse
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def get_scheduler_controller(request: Request) -> SchedulerController:

    return request.app.state.scheduler_controller


@router.post("/monitoring/start", response_model=SchedulerStatusResponse)
async def start_monitoring(controller: SchedulerController = Depends(get_scheduler_controller)):
    return await controller.start()


@router.post("/monitoring/stop", response_model=SchedulerStatusResponse)
async def stop_monitoring(controller: SchedulerController = Depends(get_scheduler_controller)):
    return await controller.stop()


@router.get("/monitoring/status", response_model=SchedulerStatusResponse)
async def get_monitoring_status(controller: SchedulerController = Depends(get_scheduler_controller)):
    return await controller.get_status()
