"""
Accuracy scoring of a submission against a task's answer key.

Rows are matched strictly by position: submission row i is compared with key
row i, and the record-id column is never consulted.
"""

from typing import Iterable, List, Optional

from . import csv_table
from .answer_keys import AnswerKey
from .csv_table import Row
from .errors import EmptyFile, RowCountMismatch


def count_matches(
    submission_rows: List[Row],
    key_rows: List[Row],
    label_index: int,
) -> int:
    """
    Count positional label matches.

    A row pair where either side lacks the label column counts as a miss.

    @param submission_rows: Submission data rows
    @param key_rows: Answer key rows
    @param label_index: Column holding the label/prediction
    @return: Number of exact string matches
    """
    matches = 0
    for submission_row, key_row in zip(submission_rows, key_rows):
        if len(submission_row) <= label_index or len(key_row) <= label_index:
            continue
        if submission_row[label_index] == key_row[label_index]:
            matches += 1
    return matches


def score_rows(
    submission_rows: List[Row],
    key_rows: List[Row],
    label_index: int = 2,
) -> float:
    """
    Score already-parsed data rows.

    @return: Accuracy percentage in [0, 100]
    @raises RowCountMismatch: If the row counts differ
    """
    if len(submission_rows) != len(key_rows):
        raise RowCountMismatch(len(submission_rows), len(key_rows))
    if not key_rows:
        return 0.0
    matches = count_matches(submission_rows, key_rows, label_index)
    return 100.0 * matches / len(key_rows)


def score(
    submission_text: str,
    answer_key: AnswerKey,
    header_tokens: Optional[Iterable[str]] = None,
) -> float:
    """
    Score a raw submission file against an answer key.

    @param submission_text: Raw CSV uploaded by the contestant
    @param answer_key: Key of the task being submitted to
    @param header_tokens: First-column names marking a header row
    @return: Accuracy percentage in [0, 100]
    @raises EmptyFile: If the submission has no rows at all
    @raises MalformedInput: If the CSV has an unterminated quoted field
    @raises RowCountMismatch: If data row count differs from the key's
    """
    if header_tokens is None:
        header_tokens = csv_table.DEFAULT_HEADER_TOKENS

    rows = csv_table.parse(submission_text)
    if not rows:
        raise EmptyFile("Submission file is empty or invalid.")

    data_rows = csv_table.strip_header(rows, header_tokens)
    return score_rows(data_rows, answer_key.rows, answer_key.label_index)
