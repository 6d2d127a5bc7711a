import pytest

from civicwatch.core.store import MemoryStore


class FakeClock:
    """Settable epoch-ms clock."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance_hours(self, hours: float) -> None:
        self.now += int(hours * 3_600_000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()
