from datetime import datetime, timedelta, timezone

import pytest

import horizon.persistence as persistence


class FakeClock:
    """Manually advanced UTC clock handed to the engine."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from any local config.yaml or database settings."""
    monkeypatch.setenv("HORIZON_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.delenv("HORIZON_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("HORIZON_POLL_INTERVAL", raising=False)
    monkeypatch.setattr(persistence, "_repository_instance", None)
