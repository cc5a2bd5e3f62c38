import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from alertledger.config import settings

logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from alertledger.routers.sync import gmail_configured
    from alertledger.services.email import EmailService
    from alertledger.services.geocoding import Geocoder
    from alertledger.services.ingestion import IngestionService
    from alertledger.services.notifications import NotificationService
    from alertledger.services.poller import GmailPoller
    from alertledger.services.store import SupabaseStore

    task = None
    if gmail_configured():
        store = SupabaseStore()
        ingestion = IngestionService(store, geocoder=Geocoder(), notifier=NotificationService(store))
        app.state.poller = GmailPoller(EmailService(), ingestion)
        task = asyncio.create_task(app.state.poller.run())
        logger.info("Gmail poller started", extra={"interval": settings.POLL_INTERVAL_SECONDS})

    yield

    if task is not None:
        task.cancel()


app = FastAPI(
    title="AlertLedger API",
    description="Bank alerts in, reviewed transactions out",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "message": "AlertLedger API",
        "version": "0.1.0",
        "status": "running"
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

# Import routers
from alertledger.routers import ingest, review, patterns, sync, locations

# Include routers
app.include_router(ingest.router)
app.include_router(review.router)
app.include_router(patterns.router)
app.include_router(sync.router)
app.include_router(locations.router)
