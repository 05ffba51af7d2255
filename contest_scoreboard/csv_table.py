"""
Lenient CSV parsing for answer keys and submissions.
"""

import csv
import io
from typing import Iterable, List

from .errors import MalformedInput

Row = List[str]

DEFAULT_HEADER_TOKENS = ("id", "category_id", "taskid")


def parse(text: str) -> List[Row]:
    """
    Parse CSV text into rows of string fields.

    Handles quoted fields containing commas and newlines, and "" escapes
    inside quoted fields. A quote appearing in the middle of an unquoted
    field is kept as a literal character. Line endings are normalized and
    surrounding whitespace of the whole document is ignored.

    @param text: Raw CSV content
    @return: List of rows, empty for empty input
    @raises MalformedInput: If a quoted field is never closed
    """
    if not text:
        return []

    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    rows: List[Row] = []
    row: Row = []
    field: List[str] = []
    in_quotes = False
    quote_line = 0
    line = 1

    i = 0
    length = len(normalized)
    while i < length:
        char = normalized[i]

        if in_quotes:
            if char == '"':
                if i + 1 < length and normalized[i + 1] == '"':
                    field.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                if char == "\n":
                    line += 1
                field.append(char)
        elif char == ",":
            row.append("".join(field))
            field = []
        elif char == "\n":
            row.append("".join(field))
            rows.append(row)
            row = []
            field = []
            line += 1
        elif char == '"' and not field:
            in_quotes = True
            quote_line = line
        else:
            field.append(char)
        i += 1

    if in_quotes:
        raise MalformedInput(f"Unterminated quoted field starting on line {quote_line}")

    # Last row has no terminating newline
    if row or field:
        row.append("".join(field))
        rows.append(row)

    return rows


def format_rows(rows: List[Row]) -> str:
    """Serialize rows back to CSV text, quoting only where needed."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def has_header(
    rows: List[Row],
    header_tokens: Iterable[str] = DEFAULT_HEADER_TOKENS,
) -> bool:
    """
    Check whether the first cell of the first row names a known header column.

    @param rows: Parsed rows
    @param header_tokens: Lower-case first-column names that mark a header row
    @return: True if rows[0] looks like a header
    """
    if not rows or not rows[0]:
        return False
    tokens = {token.lower() for token in header_tokens}
    return rows[0][0].strip().lower() in tokens


def strip_header(
    rows: List[Row],
    header_tokens: Iterable[str] = DEFAULT_HEADER_TOKENS,
) -> List[Row]:
    """Return the data rows, dropping row 0 if it is a recognized header."""
    if has_header(rows, header_tokens):
        return rows[1:]
    return rows
