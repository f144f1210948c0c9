from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock. ``tick`` advances the time on every call."""

    def __init__(self, start: datetime = T0, tick: timedelta = timedelta(0)):
        self.now = start
        self.tick = tick

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.tick
        return current

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ticking_clock():
    """Advances one second per call, so every write gets a distinct timestamp."""
    return FakeClock(tick=timedelta(seconds=1))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep FLASHMASTER_* variables from the developer's shell out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("FLASHMASTER_"):
            monkeypatch.delenv(key)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/data
    monkeypatch.setenv("HOME", str(home))
    return home
