from __future__ import annotations

import logging
import os
from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field

from models import GameConfig

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    origin: str = Field(default="", alias="ORIGIN")
    log_level: str = "INFO"

    max_rounds: int = 10
    hand_size: int = 5
    pick_size: int = 3
    initial_hp: int = 10
    deck_attack: int = 5
    deck_defend: int = 5
    deck_recover: int = 5

    bot_response_delay_sec: float = 1.2
    bot_name: str = "Bot"
    default_player_name: str = "Player"

    class Config:
        env_file = ".env"
        env_prefix = "CARDGAME_"
        populate_by_name = True
        extra = "ignore"

    def allowed_origins(self) -> list[str]:
        """
        Splits ORIGIN by commas, trimming blanks.
        Example: "https://cards.example.com, https://www.cards.example.com"
        """
        return ["http://localhost:5173"] + [x.strip() for x in self.origin.split(",") if x.strip()]

    def game_config(self) -> GameConfig:
        return GameConfig(
            max_rounds=self.max_rounds,
            hand_size=self.hand_size,
            pick_size=self.pick_size,
            initial_hp=self.initial_hp,
            deck_attack=self.deck_attack,
            deck_defend=self.deck_defend,
            deck_recover=self.deck_recover,
        )

    def log_status(self) -> None:
        env_name = os.getenv("RENDER_SERVICE_NAME") or os.getenv("ENV", "unknown")
        logger.info(
            "Card game settings: rounds=%s hand=%s picks=%s hp=%s deck=%s/%s/%s bot_delay=%.2fs env=%s",
            self.max_rounds,
            self.hand_size,
            self.pick_size,
            self.initial_hp,
            self.deck_attack,
            self.deck_defend,
            self.deck_recover,
            self.bot_response_delay_sec,
            env_name,
        )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.log_status()
    return settings
