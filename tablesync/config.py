"""Runtime settings for a sync session."""
from __future__ import annotations
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "TABLESYNC_"


class SyncSettings(BaseModel):
    base_url: str = "http://127.0.0.1:8080"
    # State poll cadence: fast while it is the viewer's turn.
    fast_poll_ms: int = Field(default=700, ge=50)
    slow_poll_ms: int = Field(default=1200, ge=50)
    broadcast_poll_ms: int = Field(default=1000, ge=50)
    # Advisory only; replaced by whatever the server reports.
    default_cooldown_ms: int = Field(default=6000, ge=0)
    local_echo_ttl_ms: int = Field(default=5000, ge=1)
    seen_event_cap: int = Field(default=1000, ge=1)
    request_timeout_s: float = Field(default=10.0, gt=0)
    action_retries: int = Field(default=1, ge=0, le=5)
    identity_header: str = Field(default="X-User-Id", min_length=1)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "SyncSettings":
        """Build settings from TABLESYNC_* variables, then apply overrides."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
