import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models  # noqa: F401 - registers tables on Base
from .config import TEST_MATTER_ID, TEST_MODE
from .database import Base, engine, get_db
from .domain.webhooks.router import router as clio_webhooks_router
from .domain.webhooks.schemas import HealthResponse

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    if TEST_MODE:
        logger.warning(f"🧪 TEST MODE enabled - only matter {TEST_MATTER_ID} will be processed")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Matterflow Automations", version="1.0.0", lifespan=lifespan)

app.include_router(clio_webhooks_router)


@app.get("/")
def root():
    return {"message": "Matterflow automation service is running"}


@app.get("/health", response_model=HealthResponse)
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error(f"❌ Health check database error: {e}")
        database = "unavailable"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        database=database,
        test_mode=TEST_MODE,
    )
