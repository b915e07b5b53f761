from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from app.api.rooms import router as rooms_router
from app.settings import Settings, get_settings
from gateway import Hub

CARD_GAME_PREFIX = "/api/cardgame"

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="Card duel")
    allowed_origins = settings.allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    logger.info("[CORS] allow_origins: %s", allowed_origins)

    hub = Hub(settings)
    app.state.hub = hub
    app.state.registry = hub.registry
    app.include_router(rooms_router, prefix=CARD_GAME_PREFIX)

    # ---------- WS endpoint ----------
    @app.websocket(f"{CARD_GAME_PREFIX}/ws")
    async def ws_cardgame(ws: WebSocket):
        await hub.connect(ws)
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await hub.handle(ws, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await hub.disconnect(ws)

    return app


app = create_app()
