"""
Pure projection of sync state into something a UI can draw.

project_table(snapshot, bubbles, viewer_id) → TableView. No I/O, no
timers: calling it again after a state refresh re-materializes every
still-active bubble without touching the broadcast channel.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from tablesync.models.events import BroadcastEvent, phrase_text
from tablesync.models.state import Card, GamePlayerView, StateSnapshot

STAGE_TEXT = {
    "preflop": "Preflop",
    "flop": "Flop",
    "turn": "Turn",
    "river": "River",
    "showdown": "Showdown",
    "finished": "Finished",
}

RESULT_REASON_TEXT = {
    "showdown": "Showdown",
    "others folded": "Everyone else folded",
    "no active players": "No active players",
}

HAND_TEXT = {
    "straight_flush": "Straight flush",
    "four_of_a_kind": "Four of a kind",
    "full_house": "Full house",
    "flush": "Flush",
    "straight": "Straight",
    "three_of_a_kind": "Three of a kind",
    "two_pair": "Two pair",
    "one_pair": "One pair",
    "high_card": "High card",
}

REVEAL_TEXT = {
    0: "Show nothing",
    1: "Show first card",
    2: "Show second card",
    3: "Show both",
}

ACTION_TEXT = {
    "check": "check",
    "call": "call",
    "bet": "bet",
    "raise": "raise",
    "allin": "all-in",
    "fold": "fold",
    "reveal": "reveal",
    "leave": "left",
    "small_blind": "small blind",
    "big_blind": "big blind",
}

SUITS = ["c", "d", "h", "s"]
RANK_TEXT = {10: "T", 11: "J", 12: "Q", 13: "K", 14: "A"}


def _lookup(table: Mapping, key: Optional[str]) -> str:
    if not key:
        return "-"
    return table.get(key, key)


def stage_text(stage: Optional[str]) -> str:
    return _lookup(STAGE_TEXT, stage)


def action_text(action: Optional[str]) -> str:
    return _lookup(ACTION_TEXT, action)


def hand_text(name: Optional[str]) -> str:
    return _lookup(HAND_TEXT, name)


def reason_text(reason: Optional[str]) -> str:
    return _lookup(RESULT_REASON_TEXT, reason)


def card_text(card: Optional[Card]) -> str:
    """Card as rank + suit letter, e.g. 'Ah', 'Tc'. Unknown parts become '?'."""
    if card is None:
        return "??"
    rank = RANK_TEXT.get(card.rank, str(card.rank) if 2 <= card.rank <= 9 else "?")
    suit = SUITS[card.suit] if 0 <= card.suit < len(SUITS) else "?"
    return f"{rank}{suit}"


@dataclass
class PlayerRow:
    user_id: str
    username: str
    stack: Optional[int]
    seat: int = 0
    badges: List[str] = field(default_factory=list)
    cards: List[str] = field(default_factory=list)
    contributed: int = 0
    last_action: str = "-"
    best_hand: str = ""
    is_turn: bool = False
    folded: bool = False
    is_viewer: bool = False
    bubble: Optional[str] = None


@dataclass
class TableView:
    room_name: str = ""
    waiting: bool = True
    stage: str = "-"
    pot: int = 0
    community: List[str] = field(default_factory=list)
    result: str = ""
    players: List[PlayerRow] = field(default_factory=list)
    my_stack: Optional[int] = None
    action_hint: str = ""
    available: List[str] = field(default_factory=list)
    can_start_game: bool = False
    can_start_next_hand: bool = False
    can_reveal: bool = False
    reveal_mask: int = 0
    hand_log: List[str] = field(default_factory=list)
    # Bubbles for senders with no row in the current view.
    orphan_bubbles: Dict[str, str] = field(default_factory=dict)


def available_actions(me: GamePlayerView) -> List[str]:
    """Human-readable list of what the viewer may do right now."""
    actions = []
    if me.can_check:
        actions.append("check")
    if me.can_call:
        actions.append(f"call({me.call_amount})")
    if me.can_bet:
        actions.append(f"bet(>={me.min_bet})")
    if me.can_raise:
        actions.append(f"raise(>={me.min_raise})")
    if me.can_all_in:
        actions.append(f"all-in({me.stack})")
    if me.can_fold:
        actions.append("fold")
    return actions


def _action_hint(snapshot: StateSnapshot, viewer_id: str, view: TableView) -> None:
    if snapshot.game is None:
        view.action_hint = "The game has not started yet."
        return
    me = snapshot.game.get_player(viewer_id)
    if me is None:
        view.action_hint = "You are not dealt into this hand."
        return
    view.available = available_actions(me)
    view.can_reveal = me.can_reveal
    view.reveal_mask = me.reveal_mask
    if view.available:
        view.action_hint = "You can: " + ", ".join(view.available)
    else:
        view.action_hint = "Waiting for your turn."


def _my_stack(snapshot: StateSnapshot, viewer_id: str) -> Optional[int]:
    rp = snapshot.room_player(viewer_id)
    if rp is not None and rp.stack is not None:
        return rp.stack
    if snapshot.game is not None:
        gp = snapshot.game.get_player(viewer_id)
        if gp is not None:
            return gp.stack
    return None


def _hand_log(snapshot: StateSnapshot) -> List[str]:
    if snapshot.game is None:
        return []
    lines = []
    for log in snapshot.game.action_logs:
        line = f"[{stage_text(log.stage)}] {log.username} {action_text(log.action)}"
        if log.amount > 0:
            line += f" {log.amount}"
        lines.append(line)
    return lines


def _result_text(snapshot: StateSnapshot) -> str:
    game = snapshot.game
    if game is None or game.result is None:
        return ""
    names = []
    for user_id in game.result.winners:
        p = game.get_player(user_id)
        names.append(f"{p.username}({p.user_id})" if p else user_id)
    return f"{reason_text(game.result.reason)}: won by {', '.join(names) or 'nobody'}"


def _waiting_rows(snapshot: StateSnapshot, viewer_id: str) -> List[PlayerRow]:
    rows = []
    for p in snapshot.room_players:
        badges = ["owner"] if p.user_id == snapshot.owner_user_id else []
        rows.append(PlayerRow(
            user_id=p.user_id,
            username=p.username,
            stack=p.stack,
            seat=p.seat,
            badges=badges,
            is_viewer=p.user_id == viewer_id,
        ))
    return rows


def _game_rows(snapshot: StateSnapshot, viewer_id: str) -> List[PlayerRow]:
    game = snapshot.game
    rows = []
    for idx, p in enumerate(game.players):
        badges = []
        if idx == game.dealer_pos:
            badges.append("D")
        if idx == game.small_blind_pos:
            badges.append("SB")
        if idx == game.big_blind_pos:
            badges.append("BB")
        if p.is_turn:
            badges.append("to act")
        if p.folded:
            badges.append("folded")
        rows.append(PlayerRow(
            user_id=p.user_id,
            username=p.username,
            stack=p.stack,
            seat=p.seat_index,
            badges=badges,
            cards=[card_text(c) for c in p.hole_cards] or ["??", "??"],
            contributed=p.contributed,
            last_action=action_text(p.last_action),
            best_hand=hand_text(p.best_hand_name) if p.best_hand_name else "",
            is_turn=p.is_turn,
            folded=p.folded,
            is_viewer=p.user_id == viewer_id,
        ))
    return rows


def project_table(
    snapshot: Optional[StateSnapshot],
    bubbles: Mapping[str, BroadcastEvent],
    viewer_id: str,
) -> TableView:
    view = TableView()
    rows: List[PlayerRow] = []

    if snapshot is not None:
        view.room_name = snapshot.room_name
        view.my_stack = _my_stack(snapshot, viewer_id)
        view.can_start_game = (
            snapshot.owner_user_id == viewer_id
            and snapshot.room_status == "waiting"
            and snapshot.game is None
        )
        view.can_start_next_hand = snapshot.can_start_next_hand
        _action_hint(snapshot, viewer_id, view)

        if snapshot.game is None:
            rows = _waiting_rows(snapshot, viewer_id)
        else:
            game = snapshot.game
            view.waiting = False
            view.stage = stage_text(game.stage)
            view.pot = game.pot
            view.community = [card_text(c) for c in game.community_cards]
            view.result = _result_text(snapshot)
            view.hand_log = _hand_log(snapshot)
            rows = _game_rows(snapshot, viewer_id)

    seated = set()
    for row in rows:
        seated.add(row.user_id)
        event = bubbles.get(row.user_id)
        if event is not None:
            row.bubble = phrase_text(event.phrase_id)
    view.players = rows
    view.orphan_bubbles = {
        user_id: phrase_text(event.phrase_id)
        for user_id, event in bubbles.items()
        if user_id not in seated
    }
    return view
