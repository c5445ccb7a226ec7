import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from repricer.core.history.price_history_service import PriceHistoryService
from repricer.core.repricing.orchestrator import ExecutionResult, RepricingOrchestrator
from repricer.core.repricing.state import RepricingState
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.listing_entity import Listing
from repricer.infra.adapter.entity.price_history_entity import HistorySource
from repricer.infra.adapter.listing_repository import ListingRepository
from repricer.infra.adapter.manual_competitor_repository import ManualCompetitorRepository

logger = logging.getLogger(__name__)

MONITOR_JOB_ID = "competitor_monitoring"
MAINTENANCE_JOB_ID = "price_history_maintenance"


@dataclass
class CycleSummary:
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    message: str = ""
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    busy: int = 0
    results: List[ExecutionResult] = field(default_factory=list)

    def add(self, result: ExecutionResult):
        self.results.append(result)
        self.total += 1
        if result.success and result.price_changes:
            self.updated += 1
        elif result.success:
            self.unchanged += 1
        elif result.busy:
            self.busy += 1
        else:
            self.failed += 1


class MonitoringScheduler:
    """
    Runs the orchestrator for every monitored listing on a fixed interval and
    on demand.

    Listings are processed in batches: the items of a batch start a small
    stagger apart and batches are separated by a pause, so the marketplace
    sees a bounded request rate. Only one recurring cycle runs at a time.
    """

    def __init__(
        self,
        orchestrator: RepricingOrchestrator,
        listing_repo: ListingRepository,
        competitor_repo: ManualCompetitorRepository,
        history: Optional[PriceHistoryService] = None,
        interval_minutes: int = 20,
        batch_size: int = 3,
        batch_delay: float = 2.0,
        item_delay: float = 0.5,
        maintenance_hour: int = 3,
        keep_recent: int = 1000,
        failed_retention_days: int = 30,
    ):
        self.orchestrator = orchestrator
        self.listing_repo = listing_repo
        self.competitor_repo = competitor_repo
        self.history = history
        self.interval_minutes = interval_minutes
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.item_delay = item_delay
        self.maintenance_hour = maintenance_hour
        self.keep_recent = keep_recent
        self.failed_retention_days = failed_retention_days

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._cycle_lock = asyncio.Lock()
        self.last_cycle: Optional[CycleSummary] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    def start(self):
        """Start the recurring monitoring job and the daily maintenance job"""
        if self.running:
            logger.info("Monitoring scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._scheduled_cycle,
            "interval",
            minutes=self.interval_minutes,
            id=MONITOR_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        if self.history is not None:
            self.scheduler.add_job(
                self._scheduled_maintenance,
                "cron",
                hour=self.maintenance_hour,
                minute=0,
                id=MAINTENANCE_JOB_ID,
                max_instances=1,
                coalesce=True,
            )
        self.scheduler.start()
        logger.info(f"Monitoring scheduler started, every {self.interval_minutes} minutes")

    def stop(self):
        """Stop the scheduler"""
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("Monitoring scheduler stopped")

    def status(self) -> Dict[str, Any]:
        next_run = None
        if self.running:
            job = self.scheduler.get_job(MONITOR_JOB_ID)
            next_run = job.next_run_time if job else None
        return {
            "running": self.running,
            "cycle_running": self.cycle_running,
            "interval_minutes": self.interval_minutes,
            "batch_size": self.batch_size,
            "next_run_time": next_run,
            "last_cycle": self.last_cycle,
        }

    async def _scheduled_cycle(self):
        try:
            await self.run_cycle(trigger="scheduled")
        except Exception as e:
            logger.error(f"Monitoring cycle aborted: {str(e)}", exc_info=True)

    async def _scheduled_maintenance(self):
        try:
            await self.run_maintenance()
        except Exception as e:
            logger.error(f"Price history maintenance failed: {str(e)}", exc_info=True)

    async def run_cycle(self, trigger: str = "manual") -> CycleSummary:
        """
        One pass over all monitored listings. A call made while a cycle is
        still running returns a skipped summary instead of overlapping it.
        Failures loading listings or stamping check times abort the cycle.
        """
        if self._cycle_lock.locked():
            logger.warning("Previous monitoring cycle still running, skipping this one")
            return CycleSummary(
                trigger=trigger,
                started_at=utc_now(),
                finished_at=utc_now(),
                skipped=True,
                message="Previous cycle still running",
            )

        async with self._cycle_lock:
            summary = CycleSummary(trigger=trigger, started_at=utc_now())
            listings = await self.listing_repo.find_monitored()
            logger.info(f"Monitoring cycle ({trigger}) over {len(listings)} listings")

            await self._process(listings, summary, HistorySource.SYSTEM)
            await self.listing_repo.touch_monitoring_check([l.id for l in listings], summary.started_at)

            summary.finished_at = utc_now()
            summary.message = f"Processed {summary.total} listings"
            self.last_cycle = summary
            logger.info(
                f"Monitoring cycle done: {summary.updated} updated, {summary.unchanged} unchanged, "
                f"{summary.failed} failed, {summary.busy} busy"
            )
            return summary

    async def run_for_item(self, item_id: str, sku: Optional[str] = None, user_id: Optional[str] = None) -> ExecutionResult:
        """On-demand run for one listing; waits for an in-flight run of the same item."""
        return await self.orchestrator.execute(
            item_id,
            user_id=user_id,
            sku=sku,
            source=HistorySource.MANUAL,
            wait=True,
        )

    async def run_for_all_with_competitors(self) -> CycleSummary:
        """Runs every listing that has at least one manual competitor; competitor lists are only read."""
        summary = CycleSummary(trigger="competitors", started_at=utc_now())
        item_ids = await self.competitor_repo.item_ids_with_competitors()
        listings = await self.listing_repo.find_by_item_ids(item_ids)
        await self._process(listings, summary, HistorySource.MANUAL)
        summary.finished_at = utc_now()
        summary.message = f"Processed {summary.total} listings with competitors"
        return summary

    async def run_maintenance(self) -> Dict[str, int]:
        archived = await self.history.archive(self.keep_recent)
        cleaned = await self.history.cleanup_failed(self.failed_retention_days)
        return {"archived": archived.archived_count, "deleted_failed": cleaned.deleted_count}

    async def _process(self, listings: List[Listing], summary: CycleSummary, source: HistorySource):
        for start in range(0, len(listings), self.batch_size):
            if start and self.batch_delay:
                await asyncio.sleep(self.batch_delay)
            batch = listings[start:start + self.batch_size]
            results = await asyncio.gather(
                *[self._run_one(listing, index, source) for index, listing in enumerate(batch)]
            )
            for result in results:
                summary.add(result)

    async def _run_one(self, listing: Listing, index: int, source: HistorySource) -> ExecutionResult:
        if index and self.item_delay:
            await asyncio.sleep(index * self.item_delay)
        try:
            return await self.orchestrator.execute(
                listing.item_id,
                user_id=listing.user_id,
                sku=listing.sku,
                source=source,
            )
        except Exception as e:
            logger.error(f"Item {listing.item_id} failed outside the orchestrator: {str(e)}", exc_info=True)
            return ExecutionResult(
                item_id=listing.item_id,
                sku=listing.sku,
                success=False,
                message=str(e),
                state=RepricingState.ERROR,
            )
