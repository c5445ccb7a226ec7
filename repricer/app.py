from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from repricer.api.routes import catalog, price_history, repricing, scheduler
from repricer.api.controllers.scheduler_controller import SchedulerController
from repricer.core.catalog.catalog_service import CatalogService
from repricer.core.errors import ConcurrencyConflict, NotFoundError, RepricerError, ValidationError
from repricer.core.gateway.ebay_gateway import EbayGateway
from repricer.core.gateway.token_provider import EbayTokenProvider
from repricer.core.history.price_history_service import PriceHistoryService
from repricer.core.repricing.orchestrator import RepricingOrchestrator
from repricer.core.scheduler.monitoring_scheduler import MonitoringScheduler
from repricer.core.scheduler.rate_limiter import RateLimiter
from repricer.infra.adapter.competitor_rule_repository import CompetitorRuleRepository
from repricer.infra.adapter.listing_repository import ListingRepository
from repricer.infra.adapter.manual_competitor_repository import ManualCompetitorRepository
from repricer.infra.adapter.price_history_repository import PriceHistoryRepository
from repricer.infra.adapter.strategy_repository import StrategyRepository
from repricer.infra.adapter.user_repository import UserRepository
from repricer.infra.config import settings
from repricer.infra.config.init_database import ensure_indexes, init_database
from fastapi.middleware.cors import CORSMiddleware
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PREFIX = "/api/v1"

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConcurrencyConflict: 409,
}


def wire_services(app: FastAPI, database, gateway=None):
    """Build repositories and services on ``app.state`` for the given motor database."""
    listing_repo = ListingRepository(database)
    strategy_repo = StrategyRepository(database)
    rule_repo = CompetitorRuleRepository(database)
    competitor_repo = ManualCompetitorRepository(database)
    history_repo = PriceHistoryRepository(database)

    if gateway is None:
        token_provider = EbayTokenProvider(
            UserRepository(database),
            client_id=settings.EBAY_CLIENT_ID,
            client_secret=settings.EBAY_CLIENT_SECRET,
            scopes=settings.EBAY_OAUTH_SCOPES,
            api_base_url=settings.EBAY_API_BASE_URL,
            timeout=settings.MARKETPLACE_TIMEOUT_SECONDS,
        )
        gateway = EbayGateway(
            token_provider,
            listing_repo,
            competitor_repo,
            api_base_url=settings.EBAY_API_BASE_URL,
            currency=settings.EBAY_CURRENCY,
            timeout=settings.MARKETPLACE_TIMEOUT_SECONDS,
            rate_limiter=RateLimiter(settings.MARKETPLACE_MAX_REQUESTS, settings.MARKETPLACE_RATE_PERIOD_SECONDS),
        )

    history_service = PriceHistoryService(history_repo)
    orchestrator = RepricingOrchestrator(
        gateway,
        history_service,
        listing_repo,
        strategy_repo,
        rule_repo,
        timeout=settings.MARKETPLACE_TIMEOUT_SECONDS,
        lock_wait=settings.ITEM_LOCK_WAIT_SECONDS,
    )
    monitoring = MonitoringScheduler(
        orchestrator,
        listing_repo,
        competitor_repo,
        history=history_service,
        interval_minutes=settings.MONITOR_INTERVAL_MINUTES,
        batch_size=settings.MONITOR_BATCH_SIZE,
        batch_delay=settings.MONITOR_BATCH_DELAY_SECONDS,
        item_delay=settings.MONITOR_ITEM_DELAY_SECONDS,
        maintenance_hour=settings.MAINTENANCE_HOUR_UTC,
        keep_recent=settings.PRICE_HISTORY_KEEP_RECENT,
        failed_retention_days=settings.PRICE_HISTORY_FAILED_RETENTION_DAYS,
    )

    app.state.history_service = history_service
    app.state.orchestrator = orchestrator
    app.state.scheduler = monitoring
    app.state.scheduler_controller = SchedulerController(monitoring)
    app.state.catalog = CatalogService(
        strategy_repo,
        rule_repo,
        listing_repo,
        competitor_repo,
        max_retries=settings.CONCURRENCY_MAX_RETRIES,
        backoff_seconds=settings.CONCURRENCY_BACKOFF_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = init_database()
    app.state.db = db
    try:
        await ensure_indexes(db.database)
    except Exception as e:
        logger.error(f"MongoDB is not reachable: {str(e)}")
        db.close()
        raise
    wire_services(app, db.database)
    logger.info(f"Connected to MongoDB database '{db.database.name}'")

    if settings.MONITOR_AUTOSTART:
        app.state.scheduler.start()

    yield

    # the scheduler must stop before the client it writes through goes away
    app.state.scheduler.stop()
    db.close()
    logger.info("Closed MongoDB connection")


async def repricer_error_handler(request: Request, exc: RepricerError):
    status_code = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    logger.warning(f"{request.method} {request.url.path} -> {status_code}: {str(exc)}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(lifespan_handler=lifespan):
    app = FastAPI(
        lifespan=lifespan_handler,
        title=settings.APP_NAME,
        description="Competitor-driven repricing for marketplace listings",
        version="1.0.0",
        openapi_url="/openapi.json",
        docs_url="/",
        redoc_url="/redoc"
    )

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
    app.add_exception_handler(RepricerError, repricer_error_handler)

    # Include routers with prefix
    app.include_router(scheduler.router, prefix=PREFIX, tags=['Monitoring'])
    app.include_router(repricing.router, prefix=PREFIX, tags=['Repricing'])
    app.include_router(price_history.router, prefix=PREFIX, tags=['Price History'])
    app.include_router(catalog.router, prefix=PREFIX, tags=['Catalog'])

    return app
