from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from game import Room

logger = logging.getLogger(__name__)

BOT_RESPONSE_DELAY_SECONDS = 1.2


class BotScheduler:
    """Keeps at most one delayed bot move pending per room.

    The pending task lives on ``room.bot_task``. When it fires it re-checks
    the room, so a move that became unnecessary (round already resolved, room
    closed) is dropped instead of replayed.
    """

    def __init__(
        self,
        on_action: Callable[[Room], Awaitable[None]],
        delay: float = BOT_RESPONSE_DELAY_SECONDS,
    ):
        self.on_action = on_action
        self.delay = delay

    def sync(self, room: Room) -> None:
        if room.needs_bot_action():
            self.schedule(room)
        else:
            self.cancel(room)

    def schedule(self, room: Room) -> bool:
        if room.bot_task is not None:
            return False
        room.bot_task = asyncio.create_task(self._run(room))
        logger.debug("Room %s: bot move scheduled in %.2fs", room.id, self.delay)
        return True

    def cancel(self, room: Room) -> None:
        task, room.bot_task = room.bot_task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Room %s: pending bot move cancelled", room.id)

    async def _run(self, room: Room) -> None:
        await asyncio.sleep(self.delay)
        room.bot_task = None
        if room.closed:
            return
        if not room.play_bot():
            return
        await self.on_action(room)
