import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import settings
from .core.errors import STATUS_BAD_REQUEST, EngineError, engine_error_handler
from .redis_client import redis_client
from .routers import availability, bookings, cleanup, payments, reservations, slots
from .services.expiry_reaper import expiry_reaper_loop

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    reaper_task = None
    if settings.reaper_enabled:
        reaper_task = asyncio.create_task(expiry_reaper_loop())

    yield

    if reaper_task:
        reaper_task.cancel()
        try:
            await reaper_task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Rental Availability API", lifespan=lifespan)

app.add_exception_handler(EngineError, engine_error_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=STATUS_BAD_REQUEST,
        content={"error": f"{field}: {message}" if field else message},
    )


app.include_router(availability.router)
app.include_router(reservations.router)
app.include_router(payments.router)
app.include_router(cleanup.router)
app.include_router(bookings.router)
app.include_router(slots.router)


@app.get("/health")
def health():
    try:
        redis_ok = bool(redis_client.ping())
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        redis_ok = False
    return {"status": "ok", "redis": redis_ok}
