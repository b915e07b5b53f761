from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict

CardType = Literal["A", "D", "R"]
RoomStatus = Literal["waiting", "playing", "finished"]
MatchResult = Literal["p1_win", "p2_win", "draw"]


class GameConfig(BaseModel):
    max_rounds: int = Field(10, ge=1)
    hand_size: int = Field(5, ge=1)
    pick_size: int = Field(3, ge=1)
    initial_hp: int = Field(10, ge=1)
    deck_attack: int = Field(5, ge=0)
    deck_defend: int = Field(5, ge=0)
    deck_recover: int = Field(5, ge=0)

    model_config = ConfigDict(extra="ignore")


# ---------- inbound ----------
class Envelope(BaseModel):
    type: str = Field(min_length=1)
    payload: Optional[Dict[str, Any]] = None


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")


class StartBotPayload(_Payload):
    player_name: Optional[str] = Field(default=None, alias="playerName")
    player_id: Optional[str] = Field(default=None, alias="playerId")


class CreateRoomPayload(_Payload):
    player_name: Optional[str] = Field(default=None, alias="playerName")
    player_id: Optional[str] = Field(default=None, alias="playerId")
    # any value is accepted here; a non-matching one falls back to a generated id
    room_id: Optional[Any] = Field(default=None, alias="roomId")


class JoinRoomPayload(_Payload):
    room_id: Optional[str] = Field(default=None, alias="roomId")
    player_name: Optional[str] = Field(default=None, alias="playerName")
    player_id: Optional[str] = Field(default=None, alias="playerId")


class PlayCardsPayload(_Payload):
    room_id: Optional[str] = Field(default=None, alias="roomId")
    player_id: Optional[str] = Field(default=None, alias="playerId")
    round: Optional[int] = None
    picks: Any = None


class RoundConfirmPayload(_Payload):
    room_id: Optional[str] = Field(default=None, alias="roomId")
    player_id: Optional[str] = Field(default=None, alias="playerId")
    round: Optional[int] = None


class RematchPayload(_Payload):
    room_id: Optional[str] = Field(default=None, alias="roomId")
    player_id: Optional[str] = Field(default=None, alias="playerId")


# ---------- outbound ----------
class _Snapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PlayerSnapshot(_Snapshot):
    player_id: str = Field(alias="playerId")
    name: str
    hp: int
    submitted: bool = False


class RoomState(_Snapshot):
    room_id: str = Field(alias="roomId")
    status: RoomStatus
    round: int
    players: List[PlayerSnapshot] = Field(default_factory=list)


class RoundHand(_Snapshot):
    room_id: str = Field(alias="roomId")
    round: int
    hand: List[CardType]
    required_pick_count: int = Field(alias="requiredPickCount")
    deck: List[CardType] = Field(default_factory=list)
    discard: List[CardType] = Field(default_factory=list)
    opponent_deck: List[CardType] = Field(default_factory=list, alias="opponentDeck")
    opponent_discard: List[CardType] = Field(default_factory=list, alias="opponentDiscard")


class RoundReveal(_Snapshot):
    room_id: str = Field(alias="roomId")
    round: int
    p1_id: str = Field(alias="p1Id")
    p2_id: str = Field(alias="p2Id")
    p1: List[CardType]
    p2: List[CardType]


class RoundStep(_Snapshot):
    index: int
    p1_card: CardType = Field(alias="p1Card")
    p2_card: CardType = Field(alias="p2Card")
    p1_delta: int = Field(alias="p1Delta")
    p2_delta: int = Field(alias="p2Delta")
    p1_hp: int = Field(alias="p1Hp")
    p2_hp: int = Field(alias="p2Hp")


class RoundResult(_Snapshot):
    room_id: str = Field(alias="roomId")
    round: int
    p1_id: str = Field(alias="p1Id")
    p2_id: str = Field(alias="p2Id")
    steps: List[RoundStep]
    p1_hp: int = Field(alias="p1Hp")
    p2_hp: int = Field(alias="p2Hp")


class FinalHp(BaseModel):
    hp: int


class FinalScore(BaseModel):
    p1: FinalHp
    p2: FinalHp


class GameOver(_Snapshot):
    room_id: str = Field(alias="roomId")
    round: int
    result: MatchResult
    final: FinalScore


class SeatSummary(_Snapshot):
    name: str
    is_bot: bool = Field(alias="isBot")


class RoomSummary(_Snapshot):
    room_id: str = Field(alias="roomId")
    status: RoomStatus
    round: int
    players_count: int = Field(alias="playersCount")
    has_bot: bool = Field(alias="hasBot")
    players: List[SeatSummary] = Field(default_factory=list)
