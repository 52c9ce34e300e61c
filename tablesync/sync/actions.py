"""
ActionSubmitter submits player actions once each, guarded by the state version.

Every submit builds one ActionRequest (fresh actionId, expectedVersion
from the live cursor) and reuses it for any transient retry, so the server
can tell a network retry apart from a new decision.
"""
from __future__ import annotations
import inspect
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from tablesync.core.transport import ApiError, Transport, UnauthenticatedError
from tablesync.models.requests import ActionRequest, ActionType, RevealMask, new_action_id
from tablesync.render import action_text
from tablesync.sync.state_sync import StateSyncEngine

logger = logging.getLogger(__name__)

ConfirmHook = Callable[[str], Union[bool, Awaitable[bool]]]
NoticeCallback = Callable[[str], None]

ALL_IN_PROMPT = (
    "Go all-in? Your whole remaining stack goes into the pot.\n"
    "You will not be able to bet again this hand, only wait for the showdown."
)


class SubmitStatus(Enum):
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"     # user declined the confirmation
    INVALID = "invalid"         # rejected locally, nothing sent
    REJECTED = "rejected"       # server refused or the request failed


@dataclass
class SubmitResult:
    status: SubmitStatus
    message: str = ""
    request: Optional[ActionRequest] = None
    ack: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ApiError] = None

    @property
    def ok(self) -> bool:
        return self.status == SubmitStatus.ACCEPTED


class ActionSubmitter:
    def __init__(
        self,
        transport: Transport,
        room_id: str,
        state: StateSyncEngine,
        confirm: Optional[ConfirmHook] = None,
        on_notice: Optional[NoticeCallback] = None,
        retries: int = 1,
        id_factory: Callable[[], str] = new_action_id,
    ) -> None:
        self._transport = transport
        self._room_path = f"/api/v1/rooms/{room_id}"
        self._state = state
        self._confirm = confirm
        self._on_notice = on_notice
        self._retries = retries
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Player actions
    # ------------------------------------------------------------------

    async def submit(
        self,
        action: Union[ActionType, str],
        amount: Optional[Union[int, float, str]] = None,
        reveal_mask: Optional[Union[RevealMask, int]] = None,
    ) -> SubmitResult:
        try:
            action = ActionType(action)
        except ValueError:
            return self._invalid(f"Unknown action: {action}")
        label = action_text(action.value)

        if action == ActionType.ALL_IN and not await self._confirmed(ALL_IN_PROMPT):
            self._notice("All-in cancelled")
            return SubmitResult(SubmitStatus.CANCELLED, "All-in cancelled")

        wire_amount: Optional[int] = None
        if action.needs_amount:
            wire_amount = parse_amount(amount)
            if wire_amount is None:
                return self._invalid("Enter a bet amount")

        mask: Optional[RevealMask] = None
        if action == ActionType.REVEAL:
            try:
                mask = RevealMask(int(reveal_mask if reveal_mask is not None else -1))
            except ValueError:
                return self._invalid(f"Invalid reveal choice: {reveal_mask}")

        request = ActionRequest(
            action_id=self._id_factory(),
            type=action.wire_type,
            expected_version=self._state.version,
            amount=wire_amount,
            reveal_mask=mask,
        )

        try:
            ack = await self._send(request)
        except UnauthenticatedError:
            raise
        except ApiError as e:
            message = f"Action failed ({label}): {e.message}"
            logger.warning(f"{message} [status {e.status}, expected v{request.expected_version}]")
            self._notice(message)
            return SubmitResult(SubmitStatus.REJECTED, message, request=request, error=e)

        message = f"Action accepted: {label}"
        logger.info(f"{message} ({request.action_id})")
        self._notice(message)
        await self._state.resync()
        return SubmitResult(SubmitStatus.ACCEPTED, message, request=request, ack=ack)

    async def reveal(self, mask: Union[RevealMask, int]) -> SubmitResult:
        return await self.submit(ActionType.REVEAL, reveal_mask=mask)

    # ------------------------------------------------------------------
    # Room commands
    # ------------------------------------------------------------------

    async def start_game(self) -> SubmitResult:
        return await self._room_command("start", "Game started", "Start game failed")

    async def next_hand(self) -> SubmitResult:
        return await self._room_command("next-hand", "Next hand started", "Next hand failed")

    async def _room_command(self, name: str, ok_text: str, fail_text: str) -> SubmitResult:
        try:
            ack = await self._transport.post(f"{self._room_path}/{name}", {})
        except UnauthenticatedError:
            raise
        except ApiError as e:
            message = f"{fail_text}: {e.message}"
            logger.warning(message)
            self._notice(message)
            return SubmitResult(SubmitStatus.REJECTED, message, error=e)
        self._notice(ok_text)
        await self._state.resync()
        return SubmitResult(SubmitStatus.ACCEPTED, ok_text, ack=ack)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _send(self, request: ActionRequest) -> Dict[str, Any]:
        body = request.to_wire()
        attempt = 0
        while True:
            try:
                return await self._transport.post(f"{self._room_path}/actions", body)
            except UnauthenticatedError:
                raise
            except ApiError as e:
                if not e.transient or attempt >= self._retries:
                    raise
                attempt += 1
                logger.info(f"Retrying {request.action_id} after {e.message} ({attempt}/{self._retries})")

    async def _confirmed(self, prompt: str) -> bool:
        if self._confirm is None:
            return False
        answer = self._confirm(prompt)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    def _invalid(self, message: str) -> SubmitResult:
        self._notice(message)
        return SubmitResult(SubmitStatus.INVALID, message)

    def _notice(self, message: str) -> None:
        if self._on_notice:
            self._on_notice(message)


def parse_amount(value: Optional[Union[int, float, str]]) -> Optional[int]:
    """A positive whole chip amount, or None if the input is not one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0 or not number.is_integer():
        return None
    return int(number)
