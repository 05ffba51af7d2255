"""Shared fixtures for contest scoreboard tests."""

import itertools

import pytest

from contest_scoreboard.config import ContestConfig
from contest_scoreboard.database import DatabaseManager
from contest_scoreboard.service import ContestService

ADMIN_TOKEN = "s3cret"

ENV_VARS = (
    "CONTEST_NAME",
    "CONTEST_STATUS",
    "ADMIN_TOKEN",
    "KEY_MIN_COLUMNS",
    "HEADER_TOKENS",
    "MAX_CONFLICT_RETRIES",
    "LIVE_UPDATES",
    "PUBLIC_KEY_DOWNLOAD",
    "MAX_SUBMISSION_BYTES",
    "MAX_LEADERBOARD_ENTRIES",
)

KEY_TEXT = (
    "category_id,content,overall_band_score\n"
    "1,alpha,5.0\n"
    '2,"beta, gamma",6.5\n'
    "3,delta,7.0\n"
    "4,epsilon,5.5\n"
)

# Two of four labels correct
HALF_RIGHT = (
    "category_id,content,overall_band_score\n"
    "1,alpha,5.0\n"
    '2,"beta, gamma",6.0\n'
    "3,delta,7.0\n"
    "4,epsilon,4.5\n"
)


class FakeClock:
    """Millisecond clock that advances one second per reading."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self._ticks = itertools.count(start, 1000)
        self.last = None

    def __call__(self) -> int:
        self.last = next(self._ticks)
        return self.last


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path, monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    cfg = ContestConfig(str(tmp_path / "contest_config.json"))
    cfg.config["contest"]["admin_token"] = ADMIN_TOKEN
    return cfg


@pytest.fixture
async def service(config, clock):
    svc = ContestService(config, clock=clock)
    await svc.load()
    return svc


@pytest.fixture
async def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / "scoreboard.db"))
    await manager.init_db()
    return manager


@pytest.fixture
async def db_service(config, db, clock):
    svc = ContestService(config, db, clock=clock)
    await svc.load()
    return svc
