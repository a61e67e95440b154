import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# Import models so they're registered with SQLAlchemy Base
from . import config, models  # noqa: F401
from .database import Base, engine
from .domain.sales_orders.router import router as sales_orders_router
from .domain.status.router import router as status_router
from .exceptions import SalesOpsError
from .metrics import Metrics
from .notification_queue import create_notification_queue

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        error_msg = str(e)
        if "already exists" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    app.state.metrics = Metrics(name="salesops-api")
    app.state.notification_queue = None
    try:
        app.state.notification_queue = await create_notification_queue(app.state.metrics)
        logger.info("Notification queue connected")
    except Exception as e:
        logger.warning(f"Redis connection failed - status emails will not be queued: {e}")

    yield

    if app.state.notification_queue is not None:
        await app.state.notification_queue.close()
    logger.info("Application shutting down...")


app = FastAPI(title=config.APP_NAME, version="1.0.0", lifespan=lifespan)


@app.exception_handler(SalesOpsError)
async def salesops_exception_handler(request: Request, exc: SalesOpsError):
    """Translate domain errors into HTTP responses"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(status_router)
app.include_router(sales_orders_router)


@app.get("/")
def root():
    return {"message": f"{config.APP_NAME} is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
