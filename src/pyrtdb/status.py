"""Transient status banner.

Write outcomes are reported as a single dismissible message that expires
on its own after a short TTL.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from pyrtdb._constants import DEFAULT_BANNER_TTL


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StatusKind(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


class StatusMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    text: str
    kind: StatusKind
    posted_at: datetime
    expires_at: datetime

    @property
    def is_error(self) -> bool:
        return self.kind is StatusKind.ERROR


class StatusBanner:
    """Holds at most one message; a new post replaces the previous one."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        ttl: timedelta = timedelta(seconds=DEFAULT_BANNER_TTL),
    ) -> None:
        self._clock = clock
        self._ttl = ttl
        self._message: StatusMessage | None = None

    def post(self, text: str, kind: StatusKind = StatusKind.SUCCESS) -> StatusMessage:
        now = self._clock()
        self._message = StatusMessage(text=text, kind=kind, posted_at=now, expires_at=now + self._ttl)
        return self._message

    def success(self, text: str) -> StatusMessage:
        return self.post(text, StatusKind.SUCCESS)

    def error(self, text: str) -> StatusMessage:
        return self.post(text, StatusKind.ERROR)

    @property
    def current(self) -> StatusMessage | None:
        """The visible message, or ``None`` once it has expired."""
        message = self._message
        if message is None:
            return None
        if self._clock() >= message.expires_at:
            self._message = None
            return None
        return message

    def dismiss(self) -> None:
        self._message = None
