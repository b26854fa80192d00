from __future__ import annotations
import asyncio
import contextlib
import logging
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

try:
    from .commands import CommandRouter
    from .errors import TransportError
    from .memory import build_memory_store
    from .providers.registry import ProviderRegistry
    from .settings import Settings, configure_logging, load_settings
    from .transport import TelegramTransport
except ImportError:
    from genrelay.commands import CommandRouter
    from genrelay.errors import TransportError
    from genrelay.memory import build_memory_store
    from genrelay.providers.registry import ProviderRegistry
    from genrelay.settings import Settings, configure_logging, load_settings
    from genrelay.transport import TelegramTransport

APP_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


class Health(BaseModel):
    status: str
    version: str
    capabilities: List[str]
    pending_updates: int


class WebhookAck(BaseModel):
    ok: bool


def build_router(settings: Settings) -> CommandRouter:
    registry = ProviderRegistry(settings)
    transport = TelegramTransport(settings.telegram_token or "")
    return CommandRouter(
        settings,
        registry.build_executor(),
        transport,
        build_memory_store(settings),
        registry.lookup,
    )


def create_app(settings: Optional[Settings] = None, router: Optional[CommandRouter] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    tasks: Set[asyncio.Task] = set()
    holder: Dict[str, CommandRouter] = {}
    if router is not None:
        holder["router"] = router

    def get_router() -> CommandRouter:
        if "router" not in holder:
            if not settings.telegram_token:
                raise HTTPException(status_code=503, detail="TELEGRAM_TOKEN not configured")
            holder["router"] = build_router(settings)
        return holder["router"]

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.base_url and settings.telegram_token:
            webhook_url = f"{settings.base_url.rstrip('/')}/webhook"
            try:
                await get_router().transport.set_webhook(webhook_url)
                logger.info("webhook registered at %s", webhook_url)
            except TransportError as e:
                logger.warning("setWebhook failed: %s", e)
        elif not settings.base_url:
            logger.info("BASE_URL not set; the webhook has to be registered manually")
        yield
        # in-flight jobs stop polling when the process shuts down
        for task in list(tasks):
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    app = FastAPI(title="genrelay", version=APP_VERSION, lifespan=lifespan)

    @app.get("/keepalive", response_class=PlainTextResponse)
    def keepalive():
        return f"{settings.reply_prefix} alive"

    @app.get("/healthz", response_model=Health)
    def healthz():
        caps: List[str] = []
        r = holder.get("router")
        if r is not None:
            caps = [c.value for c in r.executor.capabilities if any(x.configured for x in r.executor.candidates(c))]
        return Health(status="ok", version=APP_VERSION, capabilities=caps, pending_updates=len(tasks))

    @app.post("/webhook", response_model=WebhookAck)
    async def webhook(update: Dict[str, Any]):
        r = get_router()
        task = asyncio.create_task(r.handle_update(update))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        # let the update start before answering Telegram
        await asyncio.sleep(0)
        return WebhookAck(ok=True)

    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
