from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.api.routers.bookings import router as bookings_router
from app.api.routers.sessions import router as sessions_router
from app.api.routers.stations import router as stations_router
from app.api.routers.vendor import router as vendor_router
from app.core.config import settings
from app.core.container import build_services
from app.core.errors import BookingError
from app.core.redis import create_redis
from app.db.session import AsyncSessionLocal, engine


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tesztben a services már be van állítva (fake redis, sqlite)
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = build_services(create_redis(), AsyncSessionLocal, settings)

    services = app.state.services
    if services.settings.no_show_worker_enabled:
        services.no_show.start()

    logger.info("backend started")
    try:
        yield
    finally:
        await services.no_show.stop()
        if owned:
            await services.redis.aclose()
            await engine.dispose()
        logger.info("backend stopped")


app = FastAPI(title="EV booking backend", lifespan=lifespan)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("request_failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


app.include_router(bookings_router)
app.include_router(stations_router)
app.include_router(vendor_router)
app.include_router(sessions_router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
async def ready(request: Request):
    services = request.app.state.services
    checks = {}
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["db"] = "ok"
    except Exception as e:
        logger.warning("readiness_db_failed err=%s", e)
        checks["db"] = "error"
    try:
        await services.redis.ping()
        checks["redis"] = "ok"
    except Exception as e:
        logger.warning("readiness_redis_failed err=%s", e)
        checks["redis"] = "error"

    ok = all(v == "ok" for v in checks.values())
    return JSONResponse(status_code=200 if ok else 503, content={"status": "ok" if ok else "degraded", **checks})
