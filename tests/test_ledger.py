"""Tests for the submission ledger."""

import asyncio
import random

import pytest

from contest_scoreboard.errors import (
    ConcurrencyConflict,
    ContestNotLive,
    KeyNotSet,
    TaskNotFound,
    TeamNotFound,
)
from contest_scoreboard.ledger import SubmissionLedger
from contest_scoreboard.models import ContestStatus


class Contest:
    """Stand-in for the status source and key store."""

    def __init__(self):
        self.status = ContestStatus.LIVE
        self.keys = {"T1", "T2"}


@pytest.fixture
def contest():
    return Contest()


@pytest.fixture
def ledger(contest, clock):
    ledger = SubmissionLedger(lambda: contest.status, contest.keys.__contains__, clock)
    ledger.add_task("T1")
    ledger.add_task("T2")
    ledger.add_team(1)
    ledger.add_team(2)
    return ledger


class TestRecordAttempt:

    @pytest.mark.asyncio
    async def test_first_attempt(self, ledger, clock):
        entry = await ledger.record_attempt(1, "T1", 75.0)
        assert entry.attempts == 1
        assert entry.score == 75.0
        assert entry.history[0].timestamp == clock.last
        assert ledger.last_solve_timestamp(1) == clock.last

    @pytest.mark.asyncio
    async def test_score_is_running_maximum(self, ledger):
        for score in (40.0, 90.0, 60.0):
            entry = await ledger.record_attempt(1, "T1", score)
        assert entry.score == 90.0
        assert entry.attempts == 3
        assert [a.score for a in entry.history] == [40.0, 90.0, 60.0]

    @pytest.mark.asyncio
    async def test_other_entries_untouched(self, ledger):
        await ledger.record_attempt(1, "T1", 50.0)
        assert ledger.entry(1, "T2").attempts == 0
        assert ledger.entry(2, "T1").attempts == 0
        assert ledger.last_solve_timestamp(2) is None

    @pytest.mark.asyncio
    async def test_returned_entry_is_a_copy(self, ledger):
        entry = await ledger.record_attempt(1, "T1", 50.0)
        entry.history.clear()
        assert ledger.entry(1, "T1").attempts == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n", [2, 10, 50])
    async def test_concurrent_attempts_are_all_recorded(self, ledger, n):
        scores = [float(s) for s in random.sample(range(101), n)]
        await asyncio.gather(*(ledger.record_attempt(1, "T1", s) for s in scores))
        entry = ledger.entry(1, "T1")
        assert entry.attempts == n
        assert entry.score == max(scores)
        assert sorted(a.score for a in entry.history) == sorted(scores)

    @pytest.mark.asyncio
    async def test_concurrent_attempts_across_entries(self, ledger):
        calls = [
            ledger.record_attempt(team, task, float(i))
            for i in range(20)
            for team in (1, 2)
            for task in ("T1", "T2")
        ]
        await asyncio.gather(*calls)
        for team in (1, 2):
            for task in ("T1", "T2"):
                assert ledger.entry(team, task).attempts == 20
        assert ledger.total_attempts() == 80


class TestPreconditions:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ContestStatus.NOT_STARTED, ContestStatus.FINISHED])
    async def test_not_live(self, ledger, contest, status):
        contest.status = status
        with pytest.raises(ContestNotLive) as excinfo:
            await ledger.record_attempt(1, "T1", 50.0)
        assert excinfo.value.status == status.value
        assert ledger.entry(1, "T1").attempts == 0

    @pytest.mark.asyncio
    async def test_key_not_set(self, ledger, contest):
        contest.keys.discard("T2")
        with pytest.raises(KeyNotSet):
            await ledger.record_attempt(1, "T2", 50.0)
        assert ledger.entry(1, "T2").attempts == 0

    @pytest.mark.asyncio
    async def test_unknown_team(self, ledger):
        with pytest.raises(TeamNotFound):
            await ledger.record_attempt(99, "T1", 50.0)

    @pytest.mark.asyncio
    async def test_unknown_task(self, ledger):
        with pytest.raises(TaskNotFound):
            await ledger.record_attempt(1, "T9", 50.0)

    @pytest.mark.asyncio
    async def test_second_writer_waits_for_held_lock(self, ledger):
        lock = ledger._locks.setdefault((1, "T1"), asyncio.Lock())
        await lock.acquire()
        blocked = asyncio.ensure_future(ledger.record_attempt(1, "T1", 50.0))
        for _ in range(5):
            await asyncio.sleep(0)

        assert not blocked.done()
        assert ledger.entry(1, "T1").attempts == 0
        # Other entries are not serialized behind this one
        await ledger.record_attempt(1, "T2", 10.0)
        await ledger.record_attempt(2, "T1", 20.0)

        lock.release()
        entry = await blocked
        assert entry.attempts == 1
        assert ledger.entry(1, "T1").score == 50.0

    @pytest.mark.asyncio
    async def test_entry_replaced_while_waiting(self, ledger):
        lock = ledger._locks.setdefault((1, "T1"), asyncio.Lock())
        await lock.acquire()
        pending = asyncio.ensure_future(ledger.record_attempt(1, "T1", 50.0))
        await asyncio.sleep(0)

        ledger.remove_task("T1")
        ledger.add_task("T1")
        lock.release()

        with pytest.raises(ConcurrencyConflict):
            await pending
        assert ledger.entry(1, "T1").attempts == 0


class TestStructure:

    def test_new_team_gets_entry_per_task(self, ledger):
        ledger.add_team(3)
        entries = ledger.entries_for_team(3)
        assert list(entries) == ["T1", "T2"]
        assert all(e.attempts == 0 and e.score is None for e in entries.values())

    def test_new_task_added_to_every_team(self, ledger):
        ledger.add_task("T3")
        assert "T3" in ledger.entries_for_team(1)
        assert "T3" in ledger.entries_for_team(2)

    @pytest.mark.asyncio
    async def test_remove_task_drops_all_submissions(self, ledger):
        await ledger.record_attempt(1, "T1", 10.0)
        await ledger.record_attempt(2, "T1", 20.0)
        await ledger.record_attempt(2, "T2", 30.0)
        assert ledger.remove_task("T1") == 2
        assert list(ledger.entries_for_team(1)) == ["T2"]
        assert ledger.entry(2, "T2").score == 30.0

    def test_remove_team(self, ledger):
        ledger.remove_team(2)
        assert not ledger.has_team(2)
        with pytest.raises(TeamNotFound):
            ledger.entries_for_team(2)

    def test_restore(self, ledger):
        from contest_scoreboard.models import SubmissionAttempt

        ledger.restore(1, "T1", [SubmissionAttempt(30.0, 1), SubmissionAttempt(70.0, 2)])
        entry = ledger.entry(1, "T1")
        assert entry.attempts == 2
        assert entry.score == 70.0
