import asyncio
from datetime import timedelta

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from zapbot.config import settings
from zapbot.container import build_services
from zapbot.database import SessionLocal, get_db
from zapbot.logging_config import get_logger, setup_logging
from zapbot.models import Contact, Message
from zapbot.routers import connection, events, webhook
from zapbot.services.session_supervisor import SessionStartError

setup_logging(settings.log_level)

app = FastAPI(
    title="zapbot API",
    description="WhatsApp session supervisor and menu-driven conversation router",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(connection.router)
app.include_router(webhook.router)
app.include_router(events.router)

logger = get_logger("main")
sweeper_logger = get_logger("context_sweeper")
_context_sweeper_task: asyncio.Task | None = None


def _is_context_sweeper_enabled() -> bool:
    return settings.context_idle_timeout_seconds > 0


async def _context_sweeper_loop() -> None:
    idle_timeout = timedelta(seconds=settings.context_idle_timeout_seconds)
    interval_seconds = max(settings.context_sweep_interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            evicted = app.state.services.contexts.evict_idle(idle_timeout)
            if evicted:
                sweeper_logger.info(
                    "Context sweeper evicted idle conversations",
                    extra={"context": {"evicted": len(evicted)}},
                )
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweeper_logger.error(
                "Context sweeper loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_services() -> None:
    global _context_sweeper_task
    services = build_services(settings, SessionLocal)
    app.state.services = services
    await services.supervisor.restore()

    if settings.auto_connect:
        try:
            await services.supervisor.start()
        except SessionStartError:
            logger.warning("Auto-connect failed, retry scheduled")

    if _is_context_sweeper_enabled() and (_context_sweeper_task is None or _context_sweeper_task.done()):
        _context_sweeper_task = asyncio.create_task(_context_sweeper_loop())
        sweeper_logger.info("Context sweeper started")


@app.on_event("shutdown")
async def stop_services() -> None:
    global _context_sweeper_task
    if _context_sweeper_task is not None:
        _context_sweeper_task.cancel()
        try:
            await _context_sweeper_task
        except asyncio.CancelledError:
            pass
        _context_sweeper_task = None

    services = getattr(app.state, "services", None)
    if services is not None:
        await services.supervisor.shutdown()
        await services.transport.aclose()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    contacts_count = db.query(Contact).count()
    messages_count = db.query(Message).count()
    return {
        "status": "ok",
        "contacts": contacts_count,
        "messages": messages_count,
    }
