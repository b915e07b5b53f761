from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from app.settings import Settings
from bots import BotScheduler
from game import Outbound, Room, RoomRegistry
from models import (
    CreateRoomPayload,
    Envelope,
    JoinRoomPayload,
    PlayCardsPayload,
    RematchPayload,
    RoundConfirmPayload,
    StartBotPayload,
)

logger = logging.getLogger(__name__)

Handler = Callable[[WebSocket, Dict[str, Any]], Room]


class Hub:
    def __init__(self, settings: Settings, registry: Optional[RoomRegistry] = None):
        self.settings = settings
        self.registry = registry or RoomRegistry(settings.game_config())
        self.bots = BotScheduler(self.flush, delay=settings.bot_response_delay_sec)
        self.ws_player: Dict[WebSocket, str] = {}
        self.ws_room: Dict[WebSocket, str] = {}
        self.seats: Dict[Tuple[str, str], WebSocket] = {}
        self.locks: Dict[str, asyncio.Lock] = {}
        self.handlers: Dict[str, Handler] = {
            "start_bot": self._start_bot,
            "create_room": self._create_room,
            "create_room_bot": self._create_room_bot,
            "join_room": self._join_room,
            "play_cards": self._play_cards,
            "round_confirm": self._round_confirm,
            "rematch": self._rematch,
        }

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------
    async def connect(self, ws: WebSocket):
        await ws.accept()
        await self.send(ws, "connected", {"message": "ws ready"})

    async def disconnect(self, ws: WebSocket):
        pid = self.ws_player.pop(ws, None)
        rid = self.ws_room.pop(ws, None)
        if not pid or not rid:
            return
        if self.seats.get((rid, pid)) is ws:
            del self.seats[(rid, pid)]
        room = self.registry.get(rid)
        if room is None:
            return
        room.remove_player(pid)
        logger.info("Room %s: player %s disconnected", rid, pid)
        if room.is_abandoned():
            self._teardown(room)
            return
        await self.flush(room)

    def _bind(self, ws: WebSocket, room: Room, player_id: str):
        self.ws_room[ws] = room.id
        self.ws_player[ws] = player_id
        self.seats[(room.id, player_id)] = ws

    def _teardown(self, room: Room):
        self.bots.cancel(room)
        self.registry.remove(room.id)
        self.locks.pop(room.id, None)
        for key in [key for key in self.seats if key[0] == room.id]:
            del self.seats[key]

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    async def send(self, ws: WebSocket, type_: str, payload: Dict[str, Any]):
        await self._send_json(ws, {"type": type_, "payload": payload})

    async def send_error(self, ws: WebSocket, message: str):
        await self.send(ws, "error", {"message": message})

    async def _send_json(self, ws: WebSocket, message: Dict[str, Any]):
        if ws.client_state != WebSocketState.CONNECTED or ws.application_state != WebSocketState.CONNECTED:
            return
        try:
            await ws.send_json(message)
        except (RuntimeError, WebSocketDisconnect):
            logger.debug("Dropped %s for a closing socket", message.get("type"))

    async def _deliver(self, room: Room, event: Outbound):
        if event.player_id is not None:
            player_ids = [event.player_id]
        else:
            player_ids = [p.player_id for p in room.humans()]
        message = event.message()
        for player_id in player_ids:
            ws = self.seats.get((room.id, player_id))
            if ws is not None:
                await self._send_json(ws, message)

    async def flush(self, room: Room):
        """Deliver everything the room queued, then re-arm or drop its bot timer."""
        lock = self.locks.setdefault(room.id, asyncio.Lock())
        async with lock:
            for event in room.drain():
                await self._deliver(room, event)
        if not room.closed:
            self.bots.sync(room)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    async def handle(self, ws: WebSocket, raw: str):
        try:
            data = json.loads(raw)
        except ValueError:
            await self.send_error(ws, "Invalid JSON payload.")
            return
        if not isinstance(data, dict) or not data.get("type"):
            await self.send_error(ws, "Missing message type.")
            return
        try:
            envelope = Envelope.model_validate(data)
        except ValidationError:
            await self.send_error(ws, "Missing message type.")
            return

        handler = self.handlers.get(envelope.type)
        if handler is None:
            await self.send_error(ws, f"Unknown message type: {envelope.type}")
            return

        try:
            room = handler(ws, envelope.payload or {})
        except ValidationError as exc:
            logger.warning("Rejected %s: %s validation errors", envelope.type, exc.error_count())
            await self.send_error(ws, f"Invalid payload for {envelope.type}.")
            return
        except ValueError as exc:
            logger.warning("Rejected %s: %s", envelope.type, exc)
            await self.send_error(ws, str(exc))
            return
        await self.flush(room)

    def _ensure_unbound(self, ws: WebSocket):
        room_id = self.ws_room.get(ws)
        if room_id and room_id in self.registry:
            raise ValueError("Room already exists for this connection.")

    def _require_room(self, room_id: Optional[str]) -> Room:
        room = self.registry.get(room_id)
        if room is None:
            raise ValueError("Room not found.")
        return room

    def _require_seat(self, ws: WebSocket, room_id: Optional[str], player_id: Optional[str]) -> Room:
        if not room_id or not player_id:
            raise ValueError("Room ID and player ID are required.")
        room = self._require_room(room_id)
        if self.ws_room.get(ws) != room_id or self.ws_player.get(ws) != player_id:
            raise ValueError("Player is not bound to this connection.")
        return room

    def _open_room(
        self,
        ws: WebSocket,
        player_name: str,
        player_id: Optional[str],
        *,
        with_bot: bool,
        room_id: Any = None,
    ) -> Room:
        host = self.registry.make_player(player_name, player_id=player_id)
        bot = self.registry.make_player(self.settings.bot_name, is_bot=True) if with_bot else None
        room = self.registry.create_room(host, bot=bot, room_id=room_id)
        self._bind(ws, room, host.player_id)
        room.open(host.player_id)
        return room

    def _start_bot(self, ws: WebSocket, payload: Dict[str, Any]) -> Room:
        data = StartBotPayload.model_validate(payload)
        self._ensure_unbound(ws)
        player_name = data.player_name or self.settings.default_player_name
        return self._open_room(ws, player_name, data.player_id, with_bot=True)

    def _create_room(self, ws: WebSocket, payload: Dict[str, Any]) -> Room:
        data = CreateRoomPayload.model_validate(payload)
        self._ensure_unbound(ws)
        if not data.player_name:
            raise ValueError("Player name is required.")
        return self._open_room(ws, data.player_name, data.player_id, with_bot=False, room_id=data.room_id)

    def _create_room_bot(self, ws: WebSocket, payload: Dict[str, Any]) -> Room:
        data = StartBotPayload.model_validate(payload)
        self._ensure_unbound(ws)
        if not data.player_name:
            raise ValueError("Player name is required.")
        return self._open_room(ws, data.player_name, data.player_id, with_bot=True)

    def _join_room(self, ws: WebSocket, payload: Dict[str, Any]) -> Room:
        data = JoinRoomPayload.model_validate(payload)
        self._ensure_unbound(ws)
        if not data.room_id:
            raise ValueError("Room ID is required.")
        if not data.player_name:
            raise ValueError("Player name is required.")
        room = self._require_room(data.room_id)
        player = self.registry.make_player(data.player_name, player_id=data.player_id)
        room.join(player)
        self._bind(ws, room, player.player_id)
        logger.info("Room %s: %s joined", room.id, player.player_id)
        return room

    def _play_cards(self, ws: WebSocket, payload: Dict[str, Any]) -> Room:
        data = PlayCardsPayload.model_validate(payload)
        room = self._require_seat(ws, data.room_id, data.player_id)
        room.submit(data.player_id, data.picks, data.round)
        return room

    def _round_confirm(self, ws: WebSocket, payload: Dict[str, Any]) -> Room:
        data = RoundConfirmPayload.model_validate(payload)
        room = self._require_seat(ws, data.room_id, data.player_id)
        room.confirm(data.player_id, data.round)
        return room

    def _rematch(self, ws: WebSocket, payload: Dict[str, Any]) -> Room:
        data = RematchPayload.model_validate(payload)
        room = self._require_seat(ws, data.room_id, data.player_id)
        room.request_rematch(data.player_id)
        return room
