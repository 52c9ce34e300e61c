"""Pydantic request bodies sent to the room endpoints."""
from __future__ import annotations
import time
import uuid
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from pydantic import Field

from tablesync.models.state import WireModel


class ActionType(Enum):
    CHECK = "check"
    CALL = "call"
    BET = "bet"
    RAISE = "raise"
    ALL_IN = "allin"
    FOLD = "fold"
    REVEAL = "reveal"

    @property
    def needs_amount(self) -> bool:
        return self in (ActionType.BET, ActionType.RAISE)

    @property
    def wire_type(self) -> str:
        # The server has a single amount-bearing action: raise is a bet.
        if self is ActionType.RAISE:
            return ActionType.BET.value
        return self.value


class RevealMask(IntEnum):
    NONE = 0
    FIRST = 1
    SECOND = 2
    BOTH = 3


def new_action_id() -> str:
    """Client-generated idempotency key: epoch millis plus a random suffix."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


class ActionRequest(WireModel):
    action_id: str = Field(min_length=1)
    type: str
    expected_version: int = Field(ge=0)
    amount: Optional[int] = Field(default=None, gt=0)
    reveal_mask: Optional[RevealMask] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class QuickChatRequest(WireModel):
    action_id: str = Field(min_length=1)
    phrase_id: str = Field(min_length=1)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
