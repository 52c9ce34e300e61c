"""Pydantic models for the quick-chat broadcast feed."""
from __future__ import annotations
from typing import Dict, List, Optional

from pydantic import Field

from tablesync.models.state import WireModel


# phraseId → display text. The server owns the catalog; this table only
# supplies wording for the ids it is known to send.
PHRASE_TEXT: Dict[str, str] = {
    "wait_flowers": "I've been waiting so long the flowers wilted",
    "solve_universe": "Solving the universe over there?",
    "tea_refill": "Time for a tea refill",
    "countdown": "Tick tock...",
    "thinker_mode": "Thinker mode engaged",
    "dawn_table": "We'll still be here at dawn",
    "cappuccino": "Cappuccino, anyone?",
    "showtime": "Showtime!",
    "you_act_i_act": "You act, I act",
    "something_here": "Something's going on here",
    "mind_game": "Mind games, huh?",
    "script_seen": "I've seen this script before",
    "allin_warning": "Careful, I might shove",
    "just_this": "Is that all?",
    "easy_sigh": "Too easy",
    "fold_now": "Fold now, save yourself",
    "you_call_i_show": "You call, I show",
    "take_the_shot": "Take the shot",
    "pressure_on": "Feeling the pressure?",
    "tilt_alert": "Tilt alert!",
    "nh": "Nice hand",
    "gg": "Good game",
    "luck_is_skill": "Luck is a skill too",
    "next_real": "The next one's for real",
}


def phrase_text(phrase_id: str) -> str:
    return PHRASE_TEXT.get(phrase_id, phrase_id)


class BroadcastEvent(WireModel):
    """One quick-chat bubble. Negative ids are local optimistic echoes."""
    event_id: int
    user_id: str
    username: str = ""
    phrase_id: str
    created_at_ms: int = 0
    expire_at_ms: int

    @property
    def is_local(self) -> bool:
        return self.event_id < 0


class QuickChatFeed(WireModel):
    latest_event_id: Optional[int] = None
    events: List[BroadcastEvent] = Field(default_factory=list)
    phrases: List[str] = Field(default_factory=list)
    cooldown_ms: Optional[int] = None
    bubble_ttl_ms: Optional[int] = None
    server_now_ms: Optional[int] = None
