"""
Per-task answer key storage.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from . import csv_table
from .csv_table import Row
from .errors import MalformedInput, MalformedKey

logger = logging.getLogger(__name__)

SUPPORTED_KEY_COLUMNS = (2, 3)


@dataclass(frozen=True)
class AnswerKey:
    """
    Reference rows for one task.

    Rows are matched to submission rows by position. The label compared
    during scoring is the last required column (`columns - 1`).
    """

    task_id: str
    rows: List[Row]
    columns: int
    raw_text: str = ""

    @property
    def label_index(self) -> int:
        return self.columns - 1

    def __len__(self) -> int:
        return len(self.rows)

    def to_csv(self) -> str:
        return csv_table.format_rows(self.rows)


def parse_key(
    raw_text: str,
    columns: int = 3,
    header_tokens: Iterable[str] = csv_table.DEFAULT_HEADER_TOKENS,
) -> List[Row]:
    """
    Parse an uploaded key file into data rows.

    @param raw_text: Key file content
    @param columns: Minimum number of columns every row must have
    @param header_tokens: First-column names marking a header row
    @return: Data rows with any header removed
    @raises MalformedKey: If the file is empty, unparseable or a row is too short
    """
    try:
        rows = csv_table.parse(raw_text)
    except MalformedInput as e:
        raise MalformedKey(f"Answer key could not be parsed: {e}") from e

    if not rows:
        raise MalformedKey("Task key file is empty or invalid.")

    data_rows = csv_table.strip_header(rows, header_tokens)
    if not data_rows:
        raise MalformedKey("Task key file has a header but no data rows.")

    for line_number, row in enumerate(data_rows, 1):
        if len(row) < columns:
            raise MalformedKey(
                f"Row {line_number} of the task key file has {len(row)} columns, "
                f"expected at least {columns}."
            )
    return data_rows


def parse_master_key(
    raw_text: str,
    header_tokens: Iterable[str] = csv_table.DEFAULT_HEADER_TOKENS,
) -> Dict[str, List[Row]]:
    """
    Split a combined `task_id,id,prediction` file into per-task two-column keys.

    Rows with fewer than three fields are skipped.

    @param raw_text: Master key file content
    @return: Mapping of task id to [id, prediction] rows, in file order
    """
    try:
        rows = csv_table.parse(raw_text)
    except MalformedInput as e:
        raise MalformedKey(f"Master answer key could not be parsed: {e}") from e

    if not rows:
        raise MalformedKey("Master answer key file is empty or invalid.")

    keys: Dict[str, List[Row]] = {}
    for row in csv_table.strip_header(rows, header_tokens):
        if len(row) < 3:
            continue
        task_id, record_id, prediction = row[0], row[1], row[2]
        keys.setdefault(task_id, []).append([record_id, prediction])

    if not keys:
        raise MalformedKey("Master answer key contains no usable rows.")
    return keys


class AnswerKeyStore:
    """Holds the current answer key of every task. Replacement is a full overwrite."""

    def __init__(
        self,
        columns: int = 3,
        header_tokens: Iterable[str] = csv_table.DEFAULT_HEADER_TOKENS,
    ) -> None:
        if columns not in SUPPORTED_KEY_COLUMNS:
            raise ValueError(f"Unsupported key column count: {columns}")
        self.columns = columns
        self.header_tokens = tuple(header_tokens)
        self._keys: Dict[str, AnswerKey] = {}

    def set_key(
        self,
        task_id: str,
        raw_text: str,
    ) -> AnswerKey:
        """
        Parse and store the key for a task, replacing any previous key.

        @param task_id: Task the key belongs to
        @param raw_text: Uploaded key file content
        @return: The stored AnswerKey
        @raises MalformedKey: If the content does not match the key schema
        """
        rows = parse_key(raw_text, self.columns, self.header_tokens)
        key = AnswerKey(task_id, rows, self.columns, raw_text)
        replaced = task_id in self._keys
        self._keys[task_id] = key
        logger.info(
            "%s answer key for %s (%d rows)",
            "Replaced" if replaced else "Stored",
            task_id,
            len(rows),
        )
        return key

    def put(self, key: AnswerKey) -> None:
        """Store an already-parsed key (used when restoring from the database)."""
        self._keys[key.task_id] = key

    def get_key(self, task_id: str) -> Optional[AnswerKey]:
        """
        Look up the key of a task.

        @return: The AnswerKey, or None when no key has been uploaded. None means
            scoring is unavailable, not an empty key.
        """
        return self._keys.get(task_id)

    def has_key(self, task_id: str) -> bool:
        return task_id in self._keys

    def delete_key(self, task_id: str) -> bool:
        return self._keys.pop(task_id, None) is not None

    def clear(self) -> None:
        self._keys.clear()

    def task_ids(self) -> List[str]:
        return list(self._keys)
