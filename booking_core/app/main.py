import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import SessionLocal
from .dependencies import get_slot_service, get_transaction_runner
from .errors import EngineError
from .redis_client import redis_client
from .routers import bookings, slots
from .services.slots import slot_maintenance_loop

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runner = get_transaction_runner()
    logger.info(f"Booking workflows transactional: {runner.transactional}")

    task = asyncio.create_task(
        slot_maintenance_loop(SessionLocal, get_slot_service(), settings.maintenance_interval)
    )
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Booking Core API", lifespan=lifespan)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(slots.router)
app.include_router(bookings.router)


@app.get("/health")
def health():
    try:
        redis_ok = bool(redis_client.ping())
    except Exception:
        redis_ok = False
    return {"redis": redis_ok}
