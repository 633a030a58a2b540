import asyncio
import os
from pathlib import Path

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from switchboard.config import settings
from switchboard.container import Container, build_container, get_container
from switchboard.logging_config import get_logger, setup_logging
from switchboard.routers import channels, firewall, realtime

setup_logging(settings.log_level, json_format=settings.log_json)
logger = get_logger("main")

app = FastAPI(
    title="Switchboard API",
    description="Multi-tenant messaging channels, intent routing and workflows",
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

app.include_router(channels.router)
app.include_router(firewall.router)
app.include_router(realtime.router)

public_root = Path(settings.qr_public_dir)
public_root.mkdir(parents=True, exist_ok=True)
app.mount(settings.qr_public_url_prefix, StaticFiles(directory=str(public_root)), name="qr-images")

_channels_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_autostart_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.channels_autostart and _is_env_enabled(os.environ.get("CHANNELS_AUTOSTART"), default=True)


@app.on_event("startup")
async def start_services() -> None:
    global _channels_task
    if getattr(app.state, "container", None) is None:
        app.state.container = build_container(settings)
    if not _is_autostart_enabled():
        return
    if _channels_task is None or _channels_task.done():
        _channels_task = asyncio.create_task(app.state.container.runtime.initialize_active_channels())
        logger.info("Channel initialization started")


@app.on_event("shutdown")
async def stop_services() -> None:
    global _channels_task
    if _channels_task is not None:
        _channels_task.cancel()
        try:
            await _channels_task
        except asyncio.CancelledError:
            pass
        _channels_task = None
    container = getattr(app.state, "container", None)
    if container is not None:
        await container.shutdown()


@app.get("/health")
async def health(container: Container = Depends(get_container)):
    return {
        "status": "ok",
        "active_channels": len(container.runtime.get_active_channel_ids()),
        "auth_sessions": container.auth_sessions.get_stats(),
        "flows": container.workflow.registry.list(),
    }
