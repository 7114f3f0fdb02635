"""Message source boundary contract and search date windows."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Protocol

from .models import Message

MAX_LOOKBACK_DAYS = 7


@dataclass(frozen=True)
class DateWindow:
    """Inclusive day range used to scope chat searches."""

    start: date
    end: date
    is_today: bool = False

    @classmethod
    def for_day(cls, value: str | None, *, today: date | None = None) -> DateWindow:
        current = today or datetime.now(timezone.utc).date()
        normalized = (value or "today").strip().lower()
        if normalized == "today":
            return cls(start=current, end=current, is_today=True)
        day = date.fromisoformat(normalized)
        return cls(start=day, end=day, is_today=day == current)

    @classmethod
    def autotest_lookback(cls, value: str | None, *, today: date | None = None) -> DateWindow:
        """Window that covers the last test runs before the given day.

        Runs are posted overnight, so the previous day is scanned. On Mondays the
        scan reaches back over the weekend to Friday.
        """
        target = cls.for_day(value, today=today).start
        days_back = 3 if target.weekday() == 0 else 1
        days_back = min(days_back, MAX_LOOKBACK_DAYS)
        return cls(start=target - timedelta(days=days_back), end=target)

    def search_modifier(self) -> str:
        if self.start == self.end:
            return "on:today" if self.is_today else f"on:{self.start.isoformat()}"
        after = self.start - timedelta(days=1)
        before = self.end + timedelta(days=1)
        return f"after:{after.isoformat()} before:{before.isoformat()}"

    def contains(self, message_id: str) -> bool:
        try:
            moment = datetime.fromtimestamp(float(message_id), tz=timezone.utc).date()
        except (TypeError, ValueError, OverflowError, OSError):
            return True
        return self.start <= moment <= self.end


class MessageSource(Protocol):
    """Chat history access consumed by the pipelines.

    ``search`` is best-effort and may fail per call. ``get_permalink`` returns
    None when the link cannot be resolved.
    """

    async def search(self, query: str, channel: str, window: DateWindow) -> list[Message]:
        ...

    async def get_thread_replies(self, channel: str, root_id: str) -> list[Message]:
        ...

    async def get_message(self, channel: str, message_id: str) -> Message:
        ...

    async def get_permalink(self, channel: str, message_id: str) -> str | None:
        ...
