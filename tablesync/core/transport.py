"""
HTTP request executor shared by every sync component.

Attaches the caller identity header, serializes JSON bodies, and turns
every non-2xx reply (or network failure) into an ApiError carrying the
HTTP status and the decoded payload.
"""
from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A failed request: HTTP-like status plus the server's payload.

    status is 0 when the request never produced a response
    (connection failure, timeout).
    """

    def __init__(self, status: int, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.detail: Dict[str, Any] = detail or {}

    @property
    def transient(self) -> bool:
        return self.status == 0 or self.status >= 500

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, message={self.message!r})"


class UnauthenticatedError(ApiError):
    """No usable caller identity; session management must take over."""


IdentitySource = Union[str, Callable[[], str]]
M = TypeVar("M", bound=BaseModel)


class Transport:
    def __init__(
        self,
        base_url: str,
        identity: IdentitySource,
        timeout_s: float = 10.0,
        identity_header: str = "X-User-Id",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._identity = identity
        self._identity_header = identity_header
        self._timeout = httpx.Timeout(timeout_s)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=self._timeout)

    @property
    def user_id(self) -> str:
        value = self._identity() if callable(self._identity) else self._identity
        return (value or "").strip()

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        user_id = self.user_id
        if not user_id:
            raise UnauthenticatedError(401, "no session identity")

        headers = {
            "Content-Type": "application/json",
            self._identity_header: user_id,
        }
        try:
            resp = await self._client.request(
                method,
                path,
                params=params,
                json=body,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out: {e}")
            raise ApiError(0, "request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ApiError(0, f"network error: {e}") from e

        data = _decode(resp)
        if resp.is_success:
            return data

        message = str(data.get("error") or f"HTTP {resp.status_code}")
        if resp.status_code == 401:
            raise UnauthenticatedError(resp.status_code, message, data)
        raise ApiError(resp.status_code, message, data)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, body=body if body is not None else {})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _decode(resp: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON object body; anything else decodes to {}."""
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def decode_reply(model: Type[M], data: Dict[str, Any], what: str) -> M:
    """Validate a reply body; a shape the model rejects becomes ApiError(502)."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Malformed {what} reply ({e.error_count()} errors): {e}")
        raise ApiError(502, f"malformed {what} reply", data) from e
