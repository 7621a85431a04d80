import asyncio
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from invoice_bot import __version__
from invoice_bot.config import settings
from invoice_bot.database import SessionLocal, init_db
from invoice_bot.logging_config import get_logger, setup_logging
from invoice_bot.routers import invoices, lark_webhook
from invoice_bot.services.lark_service import get_lark_service
from invoice_bot.services.timeout_service import handle_expired_conversations

setup_logging()

app = FastAPI(
    title="Lark Invoice Bot",
    description="Drafts invoices from Lark chat messages",
    version=__version__,
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(lark_webhook.router)
app.include_router(invoices.router)

sweeper_logger = get_logger("timeout_sweeper")
_sweeper_task: asyncio.Task | None = None


def _is_sweeper_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.sweeper_enabled


async def _sweeper_loop() -> None:
    interval_seconds = max(settings.sweep_interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            db = SessionLocal()
            try:
                summary = await handle_expired_conversations(db, get_lark_service())
                if summary["chats"]:
                    sweeper_logger.info("Timeout sweep finished", extra={"context": summary})
            finally:
                db.close()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweeper_logger.error(
                "Timeout sweeper loop failed",
                extra={"context": {"error": str(exc)}},
                exc_info=True,
            )


@app.on_event("startup")
async def on_startup() -> None:
    global _sweeper_task
    init_db()
    if not _is_sweeper_enabled():
        return
    if _sweeper_task is None or _sweeper_task.done():
        _sweeper_task = asyncio.create_task(_sweeper_loop())
        sweeper_logger.info("Timeout sweeper started", extra={"context": {"interval": settings.sweep_interval_seconds}})


@app.on_event("shutdown")
async def stop_sweeper() -> None:
    global _sweeper_task
    if _sweeper_task is None:
        return
    _sweeper_task.cancel()
    try:
        await _sweeper_task
    except asyncio.CancelledError:
        pass
    _sweeper_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}
