"""Shared constants and test doubles."""

from datetime import datetime, timedelta, timezone

from parkspot.events.dispatcher import EventDispatcher

OWNER_ID = "01HOWNER000000000000000000"
MEMBER_ID = "01HMEMBER00000000000000000"
OTHER_MEMBER_ID = "01HOTHER000000000000000000"
STRANGER_ID = "01HSTRANGER000000000000000"

# Fixed "now" so windows and check-in rules are deterministic
NOW = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    """UTC timestamp on June ``day`` 2025."""
    return datetime(2025, 6, day, hour, minute, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher(EventDispatcher):
    """Dispatcher that keeps every dispatched event for assertions."""

    def __init__(self) -> None:
        self.events: list = []

    def dispatch(self, event) -> int:
        self.events.append(event)
        return super().dispatch(event)

    def of_type(self, event_type) -> list:
        return [event for event in self.events if isinstance(event, event_type)]
