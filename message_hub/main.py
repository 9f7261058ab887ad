import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from message_hub.config import settings
from message_hub.dependencies import get_hub
from message_hub.hub import MessageHub
from message_hub.logging_config import get_logger, setup_logging
from message_hub.routers import admin, message, telegram_webhook, webhook

setup_logging(settings.log_level, json_output=not settings.debug)

logger = get_logger("main")

app = FastAPI(
    title="Message Hub",
    description="Multi-channel customer message routing service",
    version="0.1.0",
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

app.include_router(message.router)
app.include_router(webhook.router)
app.include_router(telegram_webhook.router)
app.include_router(admin.router)


def _is_sweeper_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.session_sweeper_enabled


@app.on_event("startup")
async def start_hub() -> None:
    hub = get_hub()
    hub.sweeper_enabled = hub.sweeper_enabled and _is_sweeper_enabled()
    await hub.start()
    logger.info("Message hub started", extra={"context": {"categories": hub.config.categories}})


@app.on_event("shutdown")
async def stop_hub() -> None:
    await get_hub().stop()


@app.get("/health")
async def health(hub: MessageHub = Depends(get_hub)):
    return {"status": "ok", "active_sessions": hub.store.active_count}
