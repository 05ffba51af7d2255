"""Tests for CSV parsing."""

import pytest

from contest_scoreboard import csv_table
from contest_scoreboard.errors import MalformedInput


class TestParse:

    def test_quoted_comma(self):
        assert csv_table.parse('"a,b",c\n1,2') == [["a,b", "c"], ["1", "2"]]

    def test_quoted_newline(self):
        rows = csv_table.parse('id,text\n1,"line one\nline two"\n2,plain')
        assert rows == [["id", "text"], ["1", "line one\nline two"], ["2", "plain"]]

    def test_escaped_quotes(self):
        assert csv_table.parse('1,"say ""hi"""') == [["1", 'say "hi"']]

    def test_trailing_newline_adds_no_row(self):
        assert csv_table.parse("a,b\nc,d\n") == [["a", "b"], ["c", "d"]]

    def test_last_row_without_newline(self):
        assert csv_table.parse("a,b\nc,d") == [["a", "b"], ["c", "d"]]

    def test_crlf_line_endings(self):
        assert csv_table.parse("a,b\r\nc,d\r\n") == [["a", "b"], ["c", "d"]]

    def test_empty_input(self):
        assert csv_table.parse("") == []
        assert csv_table.parse("\n\n") == []

    def test_empty_fields_preserved(self):
        assert csv_table.parse("a,,c\n,,") == [["a", "", "c"], ["", "", ""]]

    def test_bare_quote_mid_field_is_literal(self):
        assert csv_table.parse('ab"c,d') == [['ab"c', "d"]]

    def test_unterminated_quote_raises(self):
        with pytest.raises(MalformedInput, match="line 2"):
            csv_table.parse('a,b\n1,"never closed\n2,3')

    def test_row_count_matches_data_lines(self):
        text = "id,label\n" + "\n".join(f'{i},"x, {i}"' for i in range(25))
        rows = csv_table.parse(text)
        assert len(csv_table.strip_header(rows)) == 25
        assert rows[5] == ["4", "x, 4"]


class TestHeader:

    @pytest.mark.parametrize("first_cell", ["id", "ID", "category_id", " Category_Id "])
    def test_known_header_tokens(self, first_cell):
        rows = [[first_cell, "label"], ["1", "x"]]
        assert csv_table.strip_header(rows) == [["1", "x"]]

    def test_data_row_is_kept(self):
        rows = [["1", "x"], ["2", "y"]]
        assert csv_table.strip_header(rows) == rows

    def test_custom_tokens(self):
        rows = [["question", "answer"], ["1", "b"]]
        assert csv_table.has_header(rows, ["question"])
        assert not csv_table.has_header(rows)

    def test_empty_rows(self):
        assert csv_table.strip_header([]) == []


def test_format_rows_quotes_when_needed():
    text = csv_table.format_rows([["1", "a,b", 'say "x"']])
    assert text == '1,"a,b","say ""x"""\n'
    assert csv_table.parse(text) == [["1", "a,b", 'say "x"']]
