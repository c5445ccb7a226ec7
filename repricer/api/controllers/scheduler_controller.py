import logging

from repricer.api.dto.repricing_dto import (
    CycleSummaryResponse,
    SchedulerStatus,
    SchedulerStatusResponse,
)
from repricer.core.scheduler.monitoring_scheduler import MonitoringScheduler

logger = logging.getLogger(__name__)


class SchedulerController:
    def __init__(self, scheduler: MonitoringScheduler):
        self.scheduler = scheduler

    def _response(self, message: str) -> SchedulerStatusResponse:
        status = self.scheduler.status()
        last_cycle = status["last_cycle"]
        return SchedulerStatusResponse(
            status=SchedulerStatus.RUNNING if status["running"] else SchedulerStatus.STOPPED,
            message=message,
            cycle_running=status["cycle_running"],
            interval_minutes=status["interval_minutes"],
            batch_size=status["batch_size"],
            next_run=status["next_run_time"],
            last_cycle=CycleSummaryResponse.model_validate(last_cycle) if last_cycle else None,
        )

    async def start(self) -> SchedulerStatusResponse:
        if self.scheduler.running:
            return self._response("Monitoring is already running.")
        self.scheduler.start()
        return self._response("Monitoring started.")

    async def stop(self) -> SchedulerStatusResponse:
        if not self.scheduler.running:
            return self._response("Monitoring is not running.")
        self.scheduler.stop()
        return self._response("Monitoring stopped.")

    async def get_status(self) -> SchedulerStatusResponse:
        if self.scheduler.cycle_running:
            return self._response("A monitoring cycle is in progress.")
        return self._response("Monitoring is running." if self.scheduler.running else "Monitoring is stopped.")
