import asyncio
import os

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from papertrail.config import settings
from papertrail.database import SessionLocal, init_db
from papertrail.logging_config import get_logger, setup_logging
from papertrail.routers import maintenance, telegram_webhook
from papertrail.services.engine import build_engine
from papertrail.services.outbound import TelegramOutbound
from papertrail.services.telegram_service import TelegramService

setup_logging(settings.log_level)

app = FastAPI(
    title="Papertrail API",
    description="Telegram wizard engine for invoices, reports and onboarding",
    version="0.1.0",
    debug=settings.debug,
)

app.include_router(telegram_webhook.router)
app.include_router(maintenance.router)

logger = get_logger("main")
purge_logger = get_logger("purge_worker")
_purge_worker_task: asyncio.Task | None = None


def _under_pytest() -> bool:
    return bool(os.environ.get("PYTEST_CURRENT_TEST"))


def _is_purge_worker_enabled() -> bool:
    if _under_pytest():
        return False
    return settings.purge_worker_enabled


async def _purge_worker_loop() -> None:
    interval_seconds = max(settings.purge_interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            engine = getattr(app.state, "engine", None)
            if engine is None:
                continue
            await run_in_threadpool(engine.purge_expired, settings.purge_batch_limit)
        except asyncio.CancelledError:
            break
        except Exception as exc:
            purge_logger.error(
                "Purge worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_engine() -> None:
    global _purge_worker_task
    if settings.create_tables and not _under_pytest():
        init_db()
    if not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set, replies will fail")
    telegram = TelegramService(settings.telegram_bot_token or "")
    app.state.engine = build_engine(settings, SessionLocal, TelegramOutbound(telegram))

    if not _is_purge_worker_enabled():
        return
    if _purge_worker_task is None or _purge_worker_task.done():
        _purge_worker_task = asyncio.create_task(_purge_worker_loop())
        purge_logger.info("Purge worker started")


@app.on_event("shutdown")
async def stop_purge_worker() -> None:
    global _purge_worker_task
    if _purge_worker_task is None:
        return
    _purge_worker_task.cancel()
    try:
        await _purge_worker_task
    except asyncio.CancelledError:
        pass
    _purge_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}
