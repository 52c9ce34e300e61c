#!/usr/bin/env python3
"""
Terminal client for a Hold'em room, driven by a SyncSession.

Usage:
    python cli.py --room r1 --user u1                   # join room r1 as u1
    python cli.py --room r1 --user u1 --base-url http://host:8080
    python cli.py --room r1 --user u1 --fast-ms 500 --slow-ms 1500
    python cli.py --room r1 --user u1 --log-level debug

Commands at the prompt:
    k        check          c        call
    b 100    bet 100        r 200    raise to 200
    a        all-in         f        fold
    v 3      reveal (0 none, 1 first, 2 second, 3 both)
    s gg     quick chat     p        list phrases
    start    start game     next     next hand
    q        leave room
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from tablesync.config import SyncSettings
from tablesync.core.transport import ApiError, Transport, UnauthenticatedError
from tablesync.models.events import phrase_text
from tablesync.render import REVEAL_TEXT, TableView
from tablesync.sync.session import Identity, SyncSession, restore_identity


# -- ANSI colors ---------------------------------------------------------------

RESET  = "\033[0m"
BOLD   = "\033[1m"
DIM    = "\033[2m"
RED    = "\033[91m"
GREEN  = "\033[92m"
YELLOW = "\033[93m"
BLUE   = "\033[94m"
CYAN   = "\033[96m"
WHITE  = "\033[97m"

SUIT_SYMBOLS = {"c": "♣", "d": "♦", "h": "♥", "s": "♠"}
SUIT_COLORS  = {"c": GREEN, "d": BLUE, "h": RED, "s": WHITE}


def fmt_card(card_str: str) -> str:
    """Pretty-print a card like 'Ah' → colored 'A♥'."""
    if not card_str or "?" in card_str:
        return f"{DIM}[??]{RESET}"
    rank = card_str[:-1]
    suit_ch = card_str[-1]
    sym = SUIT_SYMBOLS.get(suit_ch, suit_ch)
    clr = SUIT_COLORS.get(suit_ch, "")
    return f"{clr}{BOLD}{rank}{sym}{RESET}"


def fmt_cards(cards: List[str]) -> str:
    return " ".join(fmt_card(c) for c in cards)


def fmt_chips(n: Optional[int]) -> str:
    if n is None:
        return f"{DIM}-{RESET}"
    return f"{YELLOW}${n:,}{RESET}"


# -- Display helpers -----------------------------------------------------------

def print_divider(label: str = "") -> None:
    if label:
        print(f"\n{DIM}{'─' * 20} {BOLD}{WHITE}{label} {DIM}{'─' * 20}{RESET}")
    else:
        print(f"{DIM}{'─' * 60}{RESET}")


def print_table(view: TableView) -> None:
    """Print the full table view."""
    print_divider(view.room_name or "ROOM")
    if view.waiting:
        print(f"  {DIM}Waiting for the game to start{RESET}")
    else:
        board = fmt_cards(view.community) if view.community else f"{DIM}(no community cards yet){RESET}"
        print(f"\n  Stage: {CYAN}{view.stage}{RESET}")
        print(f"  Board: {board}")
        print(f"  Pot:   {fmt_chips(view.pot)}")
        if view.result:
            print(f"  {GREEN}{BOLD}{view.result}{RESET}")
    print()

    for row in view.players:
        markers = f" ({', '.join(row.badges)})" if row.badges else ""
        active = f"{CYAN}>{RESET} " if row.is_turn else "  "
        name = f"{BOLD}{row.username}{RESET}" if row.is_viewer else row.username
        cards = fmt_cards(row.cards) if row.cards else ""
        bet_str = f"  bet {fmt_chips(row.contributed)}" if row.contributed > 0 else ""
        hand = f"  {CYAN}{row.best_hand}{RESET}" if row.best_hand else ""
        bubble = f"  {YELLOW}“{row.bubble}”{RESET}" if row.bubble else ""
        print(f"  {active}{name:<12} {fmt_chips(row.stack):>18}  {cards}{bet_str}{hand}{markers}{bubble}")

    for user_id, text in view.orphan_bubbles.items():
        print(f"    {DIM}{user_id}:{RESET} {YELLOW}“{text}”{RESET}")

    print()
    print(f"  Your stack: {fmt_chips(view.my_stack)}")
    if view.action_hint:
        print(f"  {view.action_hint}")
    if view.can_reveal:
        print(f"  Reveal: {REVEAL_TEXT.get(view.reveal_mask, view.reveal_mask)} (v 0-3 to change)")
    if view.can_start_game:
        print(f"  {GREEN}You own this room: 'start' deals the first hand{RESET}")
    if view.can_start_next_hand:
        print(f"  {GREEN}'next' deals the next hand{RESET}")
    print()


def print_notice(message: str) -> None:
    print(f"  {DIM}{message}{RESET}")


# -- Input helpers -------------------------------------------------------------

async def read_line(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, input, prompt)


async def confirm_prompt(message: str) -> bool:
    print(f"\n  {RED}{BOLD}{message}{RESET}")
    try:
        answer = await read_line(f"  {BOLD}Confirm [y/N]: {RESET}")
    except (EOFError, KeyboardInterrupt):
        return False
    return answer.strip().lower() in ("y", "yes")


# -- Session driver ------------------------------------------------------------

class CLIClient:
    """Run one SyncSession and feed it commands from the terminal."""

    def __init__(self, settings: SyncSettings, room_id: str, user_id: str) -> None:
        self.settings = settings
        self.room_id = room_id
        self.user_id = user_id
        self.session: Optional[SyncSession] = None
        self._signed_out = asyncio.Event()

    async def run(self) -> int:
        transport = Transport(
            self.settings.base_url,
            self.user_id,
            timeout_s=self.settings.request_timeout_s,
            identity_header=self.settings.identity_header,
        )
        try:
            identity = await restore_identity(transport)
        except UnauthenticatedError as e:
            print(f"{RED}Not signed in ({e.message}). Sign in again and pass --user.{RESET}")
            await transport.aclose()
            return 1
        except ApiError as e:
            print(f"{RED}Cannot reach server: {e.message}{RESET}")
            await transport.aclose()
            return 1

        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Texas Hold'em, room {self.room_id}{RESET}")
        print(f"  Signed in as {identity.username or identity.user_id}")
        print(f"{BOLD}{'=' * 60}{RESET}")

        self.session = SyncSession(
            self.settings,
            self.room_id,
            identity,
            transport=transport,
            confirm=confirm_prompt,
            on_render=print_table,
            on_notice=print_notice,
            on_unauthenticated=self._unauthenticated,
        )
        try:
            await self.session.start()
            await self._command_loop()
        finally:
            await self.session.dispose()
            await transport.aclose()
        return 0

    def _unauthenticated(self, error: UnauthenticatedError) -> None:
        print(f"\n{RED}{BOLD}Session expired: {error.message}{RESET}")
        self._signed_out.set()

    async def _command_loop(self) -> None:
        while not self._signed_out.is_set():
            try:
                raw = (await read_line(f"  {BOLD}> {RESET}")).strip()
            except (EOFError, KeyboardInterrupt):
                print()
                await self.session.leave()
                return
            if not raw:
                continue
            if not await self.handle(raw):
                return

    async def handle(self, raw: str) -> bool:
        """Run one command line. Returns False when the client should exit."""
        try:
            return await self._dispatch(raw)
        except UnauthenticatedError as e:
            self._unauthenticated(e)
            return False

    async def _dispatch(self, raw: str) -> bool:
        session = self.session
        parts = raw.split()
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else None

        if cmd in ("q", "quit", "leave"):
            await session.leave()
            return False
        if cmd in ("k", "check"):
            await session.submit("check")
        elif cmd in ("c", "call"):
            await session.submit("call")
        elif cmd in ("b", "bet"):
            await session.submit("bet", amount=arg)
        elif cmd in ("r", "raise"):
            await session.submit("raise", amount=arg)
        elif cmd in ("a", "allin", "all-in", "all_in"):
            await session.submit("allin")
        elif cmd in ("f", "fold"):
            await session.submit("fold")
        elif cmd in ("v", "reveal"):
            try:
                mask = int(arg) if arg is not None else -1
            except ValueError:
                mask = -1
            await session.reveal(mask)
        elif cmd in ("s", "say"):
            await session.say(arg or "")
        elif cmd in ("p", "phrases"):
            for phrase_id in session.chat.phrases:
                print(f"    {phrase_id:<16} {DIM}{phrase_text(phrase_id)}{RESET}")
        elif cmd == "start":
            await session.start_game()
        elif cmd == "next":
            await session.next_hand()
        else:
            print_notice("Commands: k c b N r N a f v N s PHRASE p start next q")
        return True


# -- Entry point ---------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Texas Hold'em room client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  python cli.py --room r1 --user u1                 join room r1 as user u1
  python cli.py --room r1 --user u1 --log-level debug
  TABLESYNC_BASE_URL=http://host:8080 python cli.py --room r1 --user u1
""",
    )
    parser.add_argument("--room", required=True, help="room id to join")
    parser.add_argument("--user", required=True, help="stored session user id")
    parser.add_argument("--base-url", default=None, help="server base URL")
    parser.add_argument("--fast-ms", type=int, default=None, help="state poll on your turn (ms)")
    parser.add_argument("--slow-ms", type=int, default=None, help="state poll otherwise (ms)")
    parser.add_argument("--chat-ms", type=int, default=None, help="quick-chat poll (ms)")
    parser.add_argument("--timeout", type=float, default=None, help="per-request timeout (s)")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], default="warning")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = SyncSettings.from_env(
        base_url=args.base_url,
        fast_poll_ms=args.fast_ms,
        slow_poll_ms=args.slow_ms,
        broadcast_poll_ms=args.chat_ms,
        request_timeout_s=args.timeout,
    )
    client = CLIClient(settings, room_id=args.room, user_id=args.user)
    sys.exit(asyncio.run(client.run()))


if __name__ == "__main__":
    main()
