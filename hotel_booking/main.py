import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from . import models
from .database import engine
from .exception_handlers import setup_exception_handlers
from .routers import admin_router, booking_router, payment_router, waitlist_router
from .outbox_poller import run_outbox_poller
from .booking_scheduler import run_booking_scheduler

import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from .config import settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("booking_service")

# Create database tables on startup
models.Base.metadata.create_all(bind=engine)


async def _stop(task: asyncio.Task, name: str):
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info(f"{name} task successfully cancelled.")
    except Exception as e:
        logger.error(f"Error during {name} shutdown: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    logger.info("Starting background tasks...")

    redis_client = None
    if settings.RATE_LIMIT_ENABLED:
        try:
            redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8")
            await FastAPILimiter.init(redis_client)
            logger.info("FastAPILimiter initialized with Redis.")
        except Exception as e:
            logger.error(f"Failed to initialize FastAPILimiter: {e}")

    poller_task = asyncio.create_task(run_outbox_poller())
    scheduler_task = asyncio.create_task(run_booking_scheduler())

    yield

    logger.info("Shutting down background tasks...")
    if redis_client is not None:
        await redis_client.close()

    await _stop(poller_task, "Outbox poller")
    await _stop(scheduler_task, "Booking scheduler")


app = FastAPI(
    title="Hotel Booking API",
    description="Room reservations with rule validation, inventory, refunds and a waitlist.",
    version="1.0.0",
    lifespan=lifespan,
)

setup_exception_handlers(app)

app.include_router(booking_router.router)
app.include_router(waitlist_router.router)
app.include_router(payment_router.router)
app.include_router(admin_router.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Hotel Booking Service"}
