"""
Canteen API — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from canteen.api import admin_orders, feedback, health, notifications, orders, stock
from canteen.core.config import get_settings
from canteen.core.exceptions import CanteenError
from canteen.core.redis_client import close_redis
from canteen.db.database import Base, engine
from canteen.middleware.auth import JWTAuthMiddleware
from canteen.middleware.idempotency import IdempotencyMiddleware
from canteen.services.maintenance import MaintenanceScheduler

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    scheduler = MaintenanceScheduler()
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    await scheduler.shutdown()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Campus Canteen API",
    description="Orders, payments, stock and real-time tracking for the campus canteen.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last runs first: Auth wraps Idempotency
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.exception_handler(CanteenError)
async def canteen_error_handler(request: Request, exc: CanteenError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(orders.router)
app.include_router(admin_orders.router)
app.include_router(stock.router)
app.include_router(feedback.router)
app.include_router(notifications.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("canteen.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
