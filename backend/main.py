"""FastAPI application entry point."""
import os

# Force UTC before any module caches timezone information
os.environ['TZ'] = 'UTC'

import asyncio
import time

if hasattr(time, "tzset"):
    time.tzset()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from contextlib import asynccontextmanager

from backend.config import get_settings
from backend.version import APP_VERSION
from backend.routers import matches, wallet, settlement, health

logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

log_file = logs_dir / "settlement.log"
sql_log_file = logs_dir / "settlement_sql.log"
api_log_file = logs_dir / "settlement_api.log"

_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# 1 MB per file, 5 backups
rotating_handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=5, encoding='utf-8')
rotating_handler.setFormatter(_formatter)

sql_rotating_handler = RotatingFileHandler(sql_log_file, maxBytes=1024 * 1024, backupCount=5, encoding='utf-8')
sql_rotating_handler.setFormatter(_formatter)

api_rotating_handler = RotatingFileHandler(api_log_file, maxBytes=2 * 1024 * 1024, backupCount=10, encoding='utf-8')
api_rotating_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

# force=True overrides any configuration uvicorn installed first
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(), rotating_handler],
    force=True,
)

logger = logging.getLogger(__name__)

api_logger = logging.getLogger("settlement.api")
api_logger.handlers.clear()
api_logger.addHandler(api_rotating_handler)
api_logger.setLevel(logging.INFO)
api_logger.propagate = False

uvicorn_access_logger = logging.getLogger("uvicorn.access")
uvicorn_access_logger.setLevel(logging.INFO)
if rotating_handler not in uvicorn_access_logger.handlers:
    uvicorn_access_logger.addHandler(rotating_handler)

sqlalchemy_logger = logging.getLogger("sqlalchemy.engine.Engine")
sqlalchemy_logger.handlers.clear()
sqlalchemy_logger.addHandler(sql_rotating_handler)
sqlalchemy_logger.setLevel(logging.INFO)
sqlalchemy_logger.propagate = False


class SQLTransactionFilter(logging.Filter):
    """Drop transaction chatter and flatten statements onto one line."""

    def filter(self, record):
        if record.levelno == logging.INFO and hasattr(record, 'getMessage'):
            message = record.getMessage()

            if any(keyword in message for keyword in ['ROLLBACK', 'BEGIN', 'COMMIT', 'generated in']):
                return False

            if any(kw in message for kw in ['SELECT', 'UPDATE', 'DELETE', 'INSERT']):
                record.msg = ' '.join(message.split())
                record.args = ()

        return True


sqlalchemy_logger.addFilter(SQLTransactionFilter())

settings = get_settings()


async def settlement_cycle():
    """
    Background settlement sweep.

    Starts after a delay so the app finishes booting, then runs one scheduler
    cycle per interval. Errors are logged and the loop keeps going.
    """
    from backend.database import AsyncSessionLocal
    from backend.services.settlement_scheduler import SettlementScheduler

    startup_delay = settings.settlement_startup_delay_seconds
    logger.info(f"Settlement cycle starting in {startup_delay}s")
    await asyncio.sleep(startup_delay)

    logger.info("Settlement cycle starting main loop")
    scheduler = SettlementScheduler(AsyncSessionLocal)

    while True:
        try:
            await scheduler.run_cycle()
        except Exception as e:
            logger.error(f"Settlement cycle error: {e}")

        await asyncio.sleep(settings.settlement_interval_seconds)


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Manage application startup and shutdown tasks."""
    logger.info("=" * 60)
    logger.info("Match Settlement API Starting")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Database: {settings.database_url.split('@')[-1] if '@' in settings.database_url else 'SQLite'}")
    logger.info(f"Payment processor: {settings.payment_processor_mode}")
    logger.info("=" * 60)

    settlement_task = None
    if settings.settlement_loop_enabled:
        try:
            settlement_task = asyncio.create_task(settlement_cycle())
            logger.info(f"Settlement cycle task started (runs every {settings.settlement_interval_seconds}s)")
        except Exception as e:
            logger.error(f"Failed to start settlement cycle: {e}")
    else:
        logger.info("In-process settlement loop disabled; use POST /settlement/run")

    try:
        yield
    finally:
        if settlement_task:
            settlement_task.cancel()
            try:
                await asyncio.wait_for(settlement_task, timeout=2.0)
            except asyncio.CancelledError:
                logger.info("Settlement task cancelled")
            except asyncio.TimeoutError:
                logger.warning("Settlement task did not cancel within timeout, forcing shutdown")
            except Exception as e:
                logger.error(f"Error cancelling settlement task: {e}")

        from backend.services.notification_service import close_notification_dispatcher
        from backend.services.payment_processor import close_payment_processor
        try:
            await close_notification_dispatcher()
            await close_payment_processor()
        except Exception as e:
            logger.error(f"Error closing external client sessions: {e}")

        logger.info("Match Settlement API shutting down")


app = FastAPI(
    title="Match Settlement API",
    description="Peer-wagering match lifecycle and settlement",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return request validation errors as a flat list of field messages."""
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field_path = " -> ".join(str(x) for x in loc[1:]) if len(loc) > 1 else "unknown field"
        errors.append({
            "field": field_path,
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "unknown"),
        })

    return JSONResponse(
        status_code=422,
        content={"detail": "Request validation failed", "errors": errors},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Write one start line and one finish line per request to the API log."""
    start_time = time.time()
    client_ip = request.client.host if request.client else "unknown"
    request_id = f"{request.method}:{request.url.path}:{int(start_time * 1000) % 100000}"
    api_logger.info(f">> {request_id} | START | IP: {client_ip}")

    try:
        response = await call_next(request)
    except Exception as e:
        api_logger.error(f"<< {request_id} | ERROR | {time.time() - start_time:.3f}s | {e}")
        raise

    api_logger.info(f"<< {request_id} | {response.status_code} | {time.time() - start_time:.3f}s")
    return response


app.include_router(matches.router)
app.include_router(wallet.router)
app.include_router(settlement.router)
app.include_router(health.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Match Settlement API",
        "version": APP_VERSION,
        "environment": settings.environment,
        "docs": "/docs",
    }
