from __future__ import annotations

import asyncio
import logging
import random
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from models import (
    CardType,
    FinalHp,
    FinalScore,
    GameConfig,
    GameOver,
    PlayerSnapshot,
    RoomState,
    RoomStatus,
    RoomSummary,
    RoundHand,
    RoundResult,
    RoundReveal,
    RoundStep,
    SeatSummary,
)

logger = logging.getLogger(__name__)

CARD_TYPES: Tuple[CardType, ...] = ("A", "D", "R")

# (self, opponent) hit point deltas, row key is "self"
DELTA_MATRIX: Dict[str, Dict[str, Tuple[int, int]]] = {
    "A": {"A": (-2, -2), "D": (-1, 0), "R": (1, -2)},
    "D": {"A": (0, -1), "D": (-1, -1), "R": (0, 1)},
    "R": {"A": (-2, 1), "D": (1, 0), "R": (0, 0)},
}

ROOM_ID_RE = re.compile(r"[0-9]{4}")
ROOM_ID_MIN = 1000
ROOM_ID_MAX = 9999


# ----------------------------------------------------------------------
# Deck
# ----------------------------------------------------------------------
def build_deck(config: GameConfig, rng: Optional[random.Random] = None) -> List[CardType]:
    deck: List[CardType] = (
        ["A"] * config.deck_attack + ["D"] * config.deck_defend + ["R"] * config.deck_recover
    )
    (rng or random).shuffle(deck)
    return deck


def draw_cards(player: "PlayerRecord", count: int, rng: Optional[random.Random] = None) -> List[CardType]:
    """Draw up to ``count`` cards from the front of the player's deck.

    An exhausted deck is refilled by shuffling the discard pile. When both
    piles are empty the draw stops early and the hand comes back short.
    """
    drawn: List[CardType] = []
    while len(drawn) < count:
        if not player.deck:
            if not player.discard:
                break
            player.deck = list(player.discard)
            (rng or random).shuffle(player.deck)
            player.discard = []
        drawn.append(player.deck.pop(0))
    return drawn


# ----------------------------------------------------------------------
# Rules
# ----------------------------------------------------------------------
def resolve_delta(card: str, opponent_card: str) -> Tuple[int, int]:
    return DELTA_MATRIX[card][opponent_card]


def required_pick_count(hand: Sequence[CardType], pick_size: int) -> int:
    return min(pick_size, len(hand))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def resolve_picks(hand: Sequence[CardType], picks: Any, pick_size: int) -> List[CardType]:
    """Turn a submission into the ordered list of cards it selects.

    ``picks`` is either a list of hand indices or a list of card type values
    ("A", "D", "R", case-insensitive). Raises ValueError on anything else.
    """
    required = required_pick_count(hand, pick_size)
    if not isinstance(picks, list) or len(picks) != required:
        raise ValueError(f"Must submit {required} cards.")

    if all(_is_number(value) for value in picks):
        if len(set(picks)) != len(picks):
            raise ValueError("Duplicate card selections are not allowed.")
        if any((isinstance(value, float) and not value.is_integer()) or not 0 <= value < len(hand) for value in picks):
            raise ValueError("Card index out of range.")
        return [hand[int(value)] for value in picks]

    if all(isinstance(value, str) for value in picks):
        values = [value.strip().upper() for value in picks]
        if any(value not in CARD_TYPES for value in values):
            raise ValueError("Invalid card type.")
        available = Counter(hand)
        wanted = Counter(values)
        if any(wanted[card] > available[card] for card in CARD_TYPES):
            raise ValueError("Selected cards exceed hand count.")
        return values  # type: ignore[return-value]

    raise ValueError("Invalid picks format.")


def resolve_exchange(
    seq1: Sequence[CardType], seq2: Sequence[CardType], hp1: int, hp2: int
) -> Tuple[List[RoundStep], int, int]:
    """Play index-aligned pairs, clamping both running totals at 0 after each pair.

    Pairs past the end of the shorter sequence are skipped.
    """
    steps: List[RoundStep] = []
    for index, (card1, card2) in enumerate(zip(seq1, seq2), start=1):
        delta1, delta2 = resolve_delta(card1, card2)
        hp1 = max(0, hp1 + delta1)
        hp2 = max(0, hp2 + delta2)
        steps.append(
            RoundStep(
                index=index,
                p1_card=card1,
                p2_card=card2,
                p1_delta=delta1,
                p2_delta=delta2,
                p1_hp=hp1,
                p2_hp=hp2,
            )
        )
    return steps, hp1, hp2


# ----------------------------------------------------------------------
# Seats
# ----------------------------------------------------------------------
def new_player_id() -> str:
    return f"user_{uuid.uuid4().hex[:6]}"


@dataclass
class PlayerRecord:
    player_id: str
    name: str
    hp: int
    deck: List[CardType] = field(default_factory=list)
    discard: List[CardType] = field(default_factory=list)
    hand: List[CardType] = field(default_factory=list)
    is_bot: bool = False

    def reset(self, config: GameConfig, rng: Optional[random.Random] = None) -> None:
        self.hp = config.initial_hp
        self.deck = build_deck(config, rng)
        self.discard = []
        self.hand = []

    def discard_hand(self) -> None:
        self.discard.extend(self.hand)
        self.hand = []


@dataclass
class Outbound:
    type: str
    payload: Dict[str, Any]
    # None addresses every human seat in the room
    player_id: Optional[str] = None

    def message(self) -> Dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


# ----------------------------------------------------------------------
# Room
# ----------------------------------------------------------------------
class Room:
    def __init__(self, room_id: str, config: Optional[GameConfig] = None, rng: Optional[random.Random] = None):
        self.id = room_id
        self.config = config or GameConfig()
        self.rng = rng or random.Random()
        self.players: List[PlayerRecord] = []
        self.status: RoomStatus = "waiting"
        self.round: int = 1

        self.actions: Dict[str, List[CardType]] = {}
        self.awaiting_confirm: bool = False
        self.confirmed: Set[str] = set()
        self.rematch_ready: Set[str] = set()
        self.match_over: bool = False

        self.bot_task: Optional[asyncio.Task] = None
        self.closed: bool = False
        self.outbox: List[Outbound] = []

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def find_player(self, player_id: Optional[str]) -> Optional[PlayerRecord]:
        return next((p for p in self.players if p.player_id == player_id), None)

    def opponent_of(self, player_id: str) -> Optional[PlayerRecord]:
        return next((p for p in self.players if p.player_id != player_id), None)

    def bot_player(self) -> Optional[PlayerRecord]:
        return next((p for p in self.players if p.is_bot), None)

    def humans(self) -> List[PlayerRecord]:
        return [p for p in self.players if not p.is_bot]

    def has_bot(self) -> bool:
        return self.bot_player() is not None

    def is_abandoned(self) -> bool:
        return not self.humans()

    def needs_bot_action(self) -> bool:
        bot = self.bot_player()
        return (
            bot is not None
            and not self.closed
            and self.status == "playing"
            and len(self.players) == 2
            and not self.awaiting_confirm
            and bot.player_id not in self.actions
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def _emit(self, type_: str, payload: Dict[str, Any], player_id: Optional[str] = None) -> None:
        self.outbox.append(Outbound(type=type_, payload=payload, player_id=player_id))

    def _broadcast_state(self) -> None:
        self._emit("room_state", self.to_state().model_dump(by_alias=True))

    def drain(self) -> List[Outbound]:
        events, self.outbox = self.outbox, []
        return events

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------
    def add_player(self, player: PlayerRecord) -> None:
        if self.status == "finished":
            raise ValueError("Room already finished.")
        if len(self.players) >= 2:
            raise ValueError("Room is full.")
        if self.find_player(player.player_id) is not None:
            raise ValueError("Player already in room.")
        self.players.append(player)

    def open(self, host_id: str) -> None:
        self._emit("room_created", {"roomId": self.id, "playerId": host_id}, player_id=host_id)
        if len(self.players) == 2:
            self._start_match()
        else:
            self._broadcast_state()

    def join(self, player: PlayerRecord) -> None:
        self.add_player(player)
        self._emit("room_joined", {"roomId": self.id, "playerId": player.player_id}, player_id=player.player_id)
        if len(self.players) == 2:
            self._start_match()
        else:
            self._broadcast_state()

    def remove_player(self, player_id: str) -> Optional[PlayerRecord]:
        player = self.find_player(player_id)
        if player is None:
            return None
        self.players = [p for p in self.players if p.player_id != player_id]
        self.actions = {}
        self.awaiting_confirm = False
        self.confirmed = set()
        self.rematch_ready = set()
        self.match_over = False
        for remaining in self.players:
            remaining.discard_hand()
        self.status = "waiting"
        if not self.is_abandoned():
            self._broadcast_state()
        return player

    # ------------------------------------------------------------------
    # Match lifecycle
    # ------------------------------------------------------------------
    def _start_match(self) -> None:
        for player in self.players:
            player.reset(self.config, self.rng)
        self.round = 1
        self.status = "playing"
        self.actions = {}
        self.awaiting_confirm = False
        self.confirmed = set()
        self.rematch_ready = set()
        self.match_over = False
        logger.info("Room %s: match started (%s)", self.id, ", ".join(p.name for p in self.players))
        self._broadcast_state()
        self._deal_round()

    def _deal_round(self) -> None:
        for player in self.players:
            player.hand = draw_cards(player, self.config.hand_size, self.rng)
        for player in self.humans():
            opponent = self.opponent_of(player.player_id)
            hand = RoundHand(
                room_id=self.id,
                round=self.round,
                hand=list(player.hand),
                required_pick_count=required_pick_count(player.hand, self.config.pick_size),
                deck=list(player.deck),
                discard=list(player.discard),
                opponent_deck=list(opponent.deck) if opponent else [],
                opponent_discard=list(opponent.discard) if opponent else [],
            )
            self._emit("round_hand", hand.model_dump(by_alias=True), player_id=player.player_id)

    def _check_can_act(self, round_number: Optional[int]) -> None:
        if self.status == "finished":
            raise ValueError("Game is already finished.")
        if self.status != "playing":
            raise ValueError("Game is not in progress.")
        if self.awaiting_confirm:
            raise ValueError("Round is awaiting confirmation.")
        if round_number and round_number != self.round:
            raise ValueError("Round mismatch.")

    def submit(self, player_id: str, picks: Any, round_number: Optional[int] = None) -> None:
        self._check_can_act(round_number)
        player = self.find_player(player_id)
        if player is None:
            raise ValueError("Player not in room.")
        if player.is_bot:
            raise ValueError("Bot action is not allowed.")
        if player_id in self.actions:
            raise ValueError("Cards already submitted.")
        sequence = resolve_picks(player.hand, picks, self.config.pick_size)
        self._record_action(player, sequence)

    def play_bot(self) -> bool:
        """Submit a random legal pick for the bot seat if it still owes one."""
        bot = self.bot_player()
        if bot is None or not self.needs_bot_action():
            return False
        count = required_pick_count(bot.hand, self.config.pick_size)
        sequence = self.rng.sample(bot.hand, count)
        logger.info("Room %s: bot %s plays %s", self.id, bot.player_id, "".join(sequence))
        self._record_action(bot, sequence)
        return True

    def _record_action(self, player: PlayerRecord, sequence: List[CardType]) -> None:
        self.actions[player.player_id] = sequence
        self._broadcast_state()
        self._maybe_resolve_round()

    def _maybe_resolve_round(self) -> None:
        if len(self.players) < 2:
            return
        p1, p2 = self.players
        seq1 = self.actions.get(p1.player_id)
        seq2 = self.actions.get(p2.player_id)
        if seq1 is None or seq2 is None:
            return

        self._emit(
            "round_reveal",
            RoundReveal(
                room_id=self.id,
                round=self.round,
                p1_id=p1.player_id,
                p2_id=p2.player_id,
                p1=list(seq1),
                p2=list(seq2),
            ).model_dump(by_alias=True),
        )

        steps, p1.hp, p2.hp = resolve_exchange(seq1, seq2, p1.hp, p2.hp)
        self._emit(
            "round_result",
            RoundResult(
                room_id=self.id,
                round=self.round,
                p1_id=p1.player_id,
                p2_id=p2.player_id,
                steps=steps,
                p1_hp=p1.hp,
                p2_hp=p2.hp,
            ).model_dump(by_alias=True),
        )
        logger.info("Room %s: round %s resolved, hp %s/%s", self.id, self.round, p1.hp, p2.hp)

        p1.discard_hand()
        p2.discard_hand()
        self.actions = {}

        if p1.hp <= 0 or p2.hp <= 0 or self.round >= self.config.max_rounds:
            self._finish_match(p1, p2)
            return

        self.awaiting_confirm = True
        self.confirmed = set()
        self._broadcast_state()

    def _finish_match(self, p1: PlayerRecord, p2: PlayerRecord) -> None:
        self.status = "finished"
        self.match_over = True
        self.awaiting_confirm = False
        self._broadcast_state()

        result = "draw"
        if p1.hp != p2.hp:
            result = "p1_win" if p1.hp > p2.hp else "p2_win"
        logger.info("Room %s: game over after round %s (%s)", self.id, self.round, result)
        self._emit(
            "game_over",
            GameOver(
                room_id=self.id,
                round=self.round,
                result=result,
                final=FinalScore(p1=FinalHp(hp=p1.hp), p2=FinalHp(hp=p2.hp)),
            ).model_dump(by_alias=True),
        )

    def confirm(self, player_id: str, round_number: Optional[int] = None) -> None:
        if self.status == "finished":
            raise ValueError("Game is already finished.")
        if not self.awaiting_confirm:
            raise ValueError("Round is not awaiting confirmation.")
        if round_number and round_number != self.round:
            raise ValueError("Round mismatch.")
        player = self.find_player(player_id)
        if player is None or player.is_bot:
            raise ValueError("Invalid player.")

        self.confirmed.add(player_id)
        if not all(p.player_id in self.confirmed for p in self.humans()):
            return

        self.awaiting_confirm = False
        self.confirmed = set()
        self.round += 1
        self._broadcast_state()
        self._deal_round()

    def request_rematch(self, player_id: str) -> None:
        if not self.match_over:
            raise ValueError("Rematch is only available after game over.")
        player = self.find_player(player_id)
        if player is None or player.is_bot:
            raise ValueError("Invalid player.")

        if self.has_bot():
            self._start_match()
            return

        self.rematch_ready.add(player_id)
        if len(self.players) == 2 and all(p.player_id in self.rematch_ready for p in self.players):
            self._start_match()
            return
        self.status = "waiting"
        self._broadcast_state()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def to_state(self) -> RoomState:
        return RoomState(
            room_id=self.id,
            status=self.status,
            round=self.round,
            players=[
                PlayerSnapshot(
                    player_id=p.player_id,
                    name=p.name,
                    hp=p.hp,
                    submitted=p.player_id in self.actions,
                )
                for p in self.players
            ],
        )

    def summary(self) -> RoomSummary:
        return RoomSummary(
            room_id=self.id,
            status=self.status,
            round=self.round,
            players_count=len(self.players),
            has_bot=self.has_bot(),
            players=[SeatSummary(name=p.name, is_bot=p.is_bot) for p in self.players],
        )


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------
class RoomRegistry:
    def __init__(self, config: Optional[GameConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or GameConfig()
        self.rng = rng or random.Random()
        self.rooms: Dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self.rooms

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if room_id is None:
            return None
        return self.rooms.get(room_id)

    def generate_room_id(self) -> str:
        if len(self.rooms) >= ROOM_ID_MAX - ROOM_ID_MIN + 1:
            raise ValueError("No free room ids.")
        while True:
            room_id = str(self.rng.randint(ROOM_ID_MIN, ROOM_ID_MAX))
            if room_id not in self.rooms:
                return room_id

    def make_player(self, name: str, *, player_id: Optional[str] = None, is_bot: bool = False) -> PlayerRecord:
        return PlayerRecord(
            player_id=player_id or new_player_id(),
            name=name,
            hp=self.config.initial_hp,
            deck=build_deck(self.config, self.rng),
            is_bot=is_bot,
        )

    def create_room(
        self,
        host: PlayerRecord,
        *,
        bot: Optional[PlayerRecord] = None,
        room_id: Any = None,
    ) -> Room:
        if not (isinstance(room_id, str) and ROOM_ID_RE.fullmatch(room_id) and room_id not in self.rooms):
            room_id = self.generate_room_id()
        room = Room(room_id, self.config, self.rng)
        room.add_player(host)
        if bot is not None:
            room.add_player(bot)
        self.rooms[room_id] = room
        logger.info("Room %s created by %s (bot=%s)", room_id, host.player_id, bot is not None)
        return room

    def remove(self, room_id: str) -> Optional[Room]:
        room = self.rooms.pop(room_id, None)
        if room is not None:
            room.closed = True
            logger.info("Room %s removed", room_id)
        return room

    def summaries(self) -> List[Dict[str, Any]]:
        return [room.summary().model_dump(by_alias=True) for room in self.rooms.values()]
