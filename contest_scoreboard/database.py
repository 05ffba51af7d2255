"""
Database operations for the contest scoreboard.
"""

import json
import logging
from typing import List, Dict, Any, Optional

import aiosqlite

from .answer_keys import AnswerKey
from .models import ContestStatus, KeyVisibility, SubmissionAttempt, Task, TeamTaskSubmission

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Persists tasks, answer keys, teams and submission histories in SQLite."""

    def __init__(
        self,
        db_path: str,
    ) -> None:
        self.db_path = db_path

    async def init_db(self) -> None:
        """
        Initialize the SQLite database schema and indexes.

        Creates tables and indexes, then performs schema migrations if needed.
        """
        async with aiosqlite.connect(self.db_path) as db:
            # WAL lets the scoreboard be read while a submission is written
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS contest (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    status TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    key_visibility TEXT NOT NULL DEFAULT 'private',
                    position INTEGER NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS answer_keys (
                    task_id TEXT PRIMARY KEY,
                    columns INTEGER NOT NULL,
                    rows_json TEXT NOT NULL,
                    raw_text TEXT NOT NULL,
                    uploaded_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS teams (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    last_solve_ts INTEGER
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS submissions (
                    team_id INTEGER NOT NULL,
                    task_id TEXT NOT NULL,
                    best_score REAL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    history TEXT NOT NULL DEFAULT '[]',
                    PRIMARY KEY (team_id, task_id)
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS sequences (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_submissions_task
                ON submissions(task_id)
            """)

            await db.commit()

            await self._migrate_schema(db)

    async def _migrate_schema(
        self,
        db: Any,
    ) -> None:
        """
        Handle database schema migrations.

        Databases created before teams carried last_solve_ts gain the column.

        @param db: Active database connection
        """
        cursor = await db.execute("PRAGMA table_info(teams)")
        columns = await cursor.fetchall()
        column_names = [column[1] for column in columns]

        if "last_solve_ts" not in column_names:
            logger.info("Migrating database schema to add last_solve_ts column...")

            await db.execute("ALTER TABLE teams ADD COLUMN last_solve_ts INTEGER")
            await db.commit()

            logger.info("Schema migration completed.")

    # Contest status

    async def save_status(self, status: ContestStatus) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO contest (id, status) VALUES (1, ?) "
                "ON CONFLICT (id) DO UPDATE SET status = excluded.status",
                (status.value,),
            )
            await db.commit()

    async def save_sequence(
        self,
        name: str,
        value: int,
    ) -> None:
        """
        Record the highest id allocated for a kind of entity.

        Sequences only move forward and survive reset(), so ids of deleted
        teams and tasks are never handed out again.

        @param name: Sequence name ("team" or "task")
        @param value: Highest id allocated so far
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO sequences (name, value) VALUES (?, ?) "
                "ON CONFLICT (name) DO UPDATE SET value = excluded.value "
                "WHERE excluded.value > sequences.value",
                (name, value),
            )
            await db.commit()

    # Tasks and answer keys

    async def save_task(
        self,
        task: Task,
        position: int,
    ) -> None:
        """
        Insert or update a task.

        @param task: Task to store
        @param position: Display order of the task
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO tasks (id, name, key_visibility, position) VALUES (?, ?, ?, ?) "
                "ON CONFLICT (id) DO UPDATE SET name = excluded.name, "
                "key_visibility = excluded.key_visibility",
                (task.id, task.name, task.key_visibility.value, position),
            )
            await db.commit()

    async def delete_task(self, task_id: str) -> None:
        """
        Delete a task together with its answer key and every submission to it.

        @param task_id: Task to delete
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM submissions WHERE task_id = ?", (task_id,))
            await db.execute("DELETE FROM answer_keys WHERE task_id = ?", (task_id,))
            await db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            await db.commit()

    async def save_key(self, key: AnswerKey) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO answer_keys (task_id, columns, rows_json, raw_text) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT (task_id) DO UPDATE SET columns = excluded.columns, "
                "rows_json = excluded.rows_json, raw_text = excluded.raw_text, "
                "uploaded_at = CURRENT_TIMESTAMP",
                (key.task_id, key.columns, json.dumps(key.rows), key.raw_text),
            )
            await db.commit()

    # Teams and submissions

    async def save_team(
        self,
        team_id: int,
        name: str,
    ) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO teams (id, name) VALUES (?, ?) "
                "ON CONFLICT (id) DO UPDATE SET name = excluded.name",
                (team_id, name),
            )
            await db.commit()

    async def delete_team(self, team_id: int) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM submissions WHERE team_id = ?", (team_id,))
            await db.execute("DELETE FROM teams WHERE id = ?", (team_id,))
            await db.commit()

    async def save_submission(
        self,
        team_id: int,
        submission: TeamTaskSubmission,
        last_solve_ts: Optional[int],
    ) -> bool:
        """
        Store a snapshot of a (team, task) entry.

        The write is versioned by attempt count: a stored row is only
        overwritten by a snapshot with strictly more attempts, so snapshots
        persisted out of order never shrink the history. Nothing is written
        once the team or task has been deleted.

        @param team_id: Owning team
        @param submission: Entry snapshot taken under the ledger lock
        @param last_solve_ts: Team's last solve timestamp after this attempt
        @return: True if the snapshot was written, False if it was stale or its team or task is gone
        """
        history = json.dumps([attempt.to_dict() for attempt in submission.history])

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "INSERT INTO submissions (team_id, task_id, best_score, attempts, history) "
                "SELECT ?, ?, ?, ?, ? "
                "WHERE EXISTS (SELECT 1 FROM teams WHERE id = ?) "
                "AND EXISTS (SELECT 1 FROM tasks WHERE id = ?) "
                "ON CONFLICT (team_id, task_id) DO UPDATE SET "
                "best_score = excluded.best_score, attempts = excluded.attempts, "
                "history = excluded.history "
                "WHERE excluded.attempts > submissions.attempts",
                (
                    team_id,
                    submission.task_id,
                    submission.score,
                    submission.attempts,
                    history,
                    team_id,
                    submission.task_id,
                ),
            )
            written = cursor.rowcount > 0

            if last_solve_ts is not None:
                await db.execute(
                    "UPDATE teams SET last_solve_ts = ? "
                    "WHERE id = ? AND (last_solve_ts IS NULL OR last_solve_ts < ?)",
                    (last_solve_ts, team_id, last_solve_ts),
                )
            await db.commit()

        if not written:
            logger.debug(
                "Skipped snapshot for team %s on %s (%d attempts)",
                team_id,
                submission.task_id,
                submission.attempts,
            )
        return written

    async def reset(self) -> None:
        """Remove every team, submission and answer key. Tasks and id sequences are kept."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM submissions")
            await db.execute("DELETE FROM answer_keys")
            await db.execute("DELETE FROM teams")
            await db.commit()

    async def load_state(self) -> Dict[str, Any]:
        """
        Read the whole persisted contest.

        @return: Dictionary with "status", "tasks", "keys", "teams", "submissions" and "sequences"
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT status FROM contest WHERE id = 1")
            status_row = await cursor.fetchone()

            cursor = await db.execute(
                "SELECT id, name, key_visibility FROM tasks ORDER BY position, id"
            )
            task_rows = await cursor.fetchall()

            cursor = await db.execute(
                "SELECT task_id, columns, rows_json, raw_text FROM answer_keys"
            )
            key_rows = await cursor.fetchall()

            cursor = await db.execute(
                "SELECT id, name, last_solve_ts FROM teams ORDER BY id"
            )
            team_rows = await cursor.fetchall()

            cursor = await db.execute(
                "SELECT team_id, task_id, history FROM submissions ORDER BY team_id, task_id"
            )
            submission_rows = await cursor.fetchall()

            cursor = await db.execute("SELECT name, value FROM sequences")
            sequence_rows = await cursor.fetchall()

        keys = [
            AnswerKey(task_id, json.loads(rows_json), columns, raw_text)
            for task_id, columns, rows_json, raw_text in key_rows
        ]
        key_ids = {key.task_id for key in keys}
        tasks = [
            Task(task_id, name, task_id in key_ids, KeyVisibility(visibility))
            for task_id, name, visibility in task_rows
        ]
        submissions: List[Dict[str, Any]] = [
            {
                "team_id": team_id,
                "task_id": task_id,
                "history": [
                    SubmissionAttempt(float(item["score"]), int(item["timestamp"]))
                    for item in json.loads(history)
                ],
            }
            for team_id, task_id, history in submission_rows
        ]

        return {
            "status": ContestStatus.parse(status_row[0]) if status_row else None,
            "tasks": tasks,
            "keys": keys,
            "teams": [
                {"id": team_id, "name": name, "last_solve_ts": last_solve_ts}
                for team_id, name, last_solve_ts in team_rows
            ],
            "submissions": submissions,
            "sequences": {name: value for name, value in sequence_rows},
        }
