"""UTC clock threaded into signing calls, with server skew correction."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _system_now() -> datetime:
    return datetime.now(timezone.utc)


class Clock:
    """Produces signing timestamps truncated to the second.

    ``resync`` records the offset between the local clock and a server
    reported time; every later reading is shifted by that offset.
    """

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or _system_now
        self._offset = timedelta(0)

    @property
    def offset(self) -> timedelta:
        return self._offset

    def _read(self) -> datetime:
        current = self._now()
        if current.tzinfo is None:
            return current.replace(tzinfo=timezone.utc)
        return current.astimezone(timezone.utc)

    def now(self) -> datetime:
        return (self._read() + self._offset).replace(microsecond=0)

    def resync(self, server_time: datetime) -> None:
        if server_time.tzinfo is None:
            server_time = server_time.replace(tzinfo=timezone.utc)
        self._offset = server_time - self._read()
        logger.warning("Clock resynchronized to server time, offset %s", self._offset)


class FixedClock(Clock):
    """Clock frozen at one instant; handy for deterministic signing."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        super().__init__(now=lambda: instant)
