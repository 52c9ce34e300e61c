"""Pydantic models for the room state endpoint."""
from __future__ import annotations
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for server payloads: camelCase on the wire, unknown keys ignored."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _null_list_as_empty(cls, value, info: ValidationInfo):
        # The server encodes empty slices as null.
        if value is None and cls.model_fields[info.field_name].default_factory is list:
            return []
        return value


class Card(WireModel):
    rank: int = Field(validation_alias=AliasChoices("rank", "Rank"))
    suit: int = Field(validation_alias=AliasChoices("suit", "Suit"))  # 0♣ 1♦ 2♥ 3♠


class RoomPlayer(WireModel):
    user_id: str
    username: str = ""
    seat: int = 0
    stack: Optional[int] = None


class GamePlayerView(WireModel):
    user_id: str
    username: str = ""
    seat_index: int = 0
    stack: int = 0
    folded: bool = False
    last_action: str = ""
    won: int = 0
    contributed: int = 0
    best_hand_name: str = ""
    hole_cards: List[Card] = Field(default_factory=list)
    is_turn: bool = False
    can_check: bool = False
    can_call: bool = False
    can_bet: bool = False
    can_raise: bool = False
    can_fold: bool = False
    can_reveal: bool = False
    reveal_mask: int = 0
    call_amount: int = 0
    min_bet: int = 0
    min_raise: int = 0

    @property
    def can_all_in(self) -> bool:
        return self.is_turn and not self.folded and self.stack > 0


class HandResult(WireModel):
    winners: List[str] = Field(default_factory=list, validation_alias=AliasChoices("winners", "Winners"))
    reason: str = Field(default="", validation_alias=AliasChoices("reason", "Reason"))


class ActionLog(WireModel):
    username: str = ""
    action: str = ""
    amount: int = 0
    stage: str = ""


class GameView(WireModel):
    stage: str = ""
    pot: int = 0
    dealer_pos: int = -1
    small_blind_pos: int = -1
    big_blind_pos: int = -1
    turn_pos: int = -1
    community_cards: List[Card] = Field(default_factory=list)
    players: List[GamePlayerView] = Field(default_factory=list)
    result: Optional[HandResult] = None
    open_bet_min: int = 0
    bet_min: int = 0
    action_logs: List[ActionLog] = Field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.stage == "finished"

    def get_player(self, user_id: str) -> Optional[GamePlayerView]:
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None


class StateSnapshot(WireModel):
    """
    One reply from the state endpoint.

    When not_modified is set, nothing but the version is meaningful and the
    caller keeps whatever snapshot it already holds.
    """
    room_id: str = ""
    room_name: str = ""
    room_status: str = ""
    owner_user_id: str = ""
    state_version: Optional[int] = None
    version: Optional[int] = None   # not-modified replies report the version here
    not_modified: bool = False
    can_start_next_hand: bool = False
    room_players: List[RoomPlayer] = Field(default_factory=list)
    game: Optional[GameView] = None

    @property
    def reported_version(self) -> Optional[int]:
        if self.state_version is not None:
            return self.state_version
        return self.version

    def viewer_has_turn(self, user_id: str) -> bool:
        if self.game is None:
            return False
        me = self.game.get_player(user_id)
        return bool(me and me.is_turn)

    def room_player(self, user_id: str) -> Optional[RoomPlayer]:
        for p in self.room_players:
            if p.user_id == user_id:
                return p
        return None
