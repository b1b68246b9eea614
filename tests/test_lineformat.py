"""Tests for bbreview.diff.lineformat."""

import re

from bbreview.diff.lineformat import (
    NEW_HUNK_MARKER,
    OLD_HUNK_MARKER,
    format_diff,
    format_hunk,
    format_parsed,
)
from bbreview.diff.parser import parse_diff, valid_line_map

_NUMBERED_LINE = re.compile(r'^(\d+) ')


def numbers_by_file(formatted: str) -> dict[str, set[int]]:
    """Collect the line numbers printed in each file's __new hunk__ blocks."""
    result: dict[str, set[int]] = {}
    current = None
    in_new = False
    for line in formatted.splitlines():
        if line.startswith("## File: '"):
            current = line[len("## File: '"):-1]
            result[current] = set()
            in_new = False
        elif line == NEW_HUNK_MARKER:
            in_new = True
        elif line == OLD_HUNK_MARKER or line.startswith("@@"):
            in_new = False
        elif in_new and current is not None:
            match = _NUMBERED_LINE.match(line)
            if match:
                result[current].add(int(match.group(1)))
    return result


class TestFormatDiff:
    """Tests for format_diff()."""

    def test_exact_rendering(self, app_diff):
        formatted = format_diff(app_diff)
        expected = "\n".join([
            "## File: 'src/app.py'",
            "",
            "@@ -1,4 +1,5 @@",
            NEW_HUNK_MARKER,
            "1  import os",
            "2 +import json",
            "3 +import logging",
            "4  ",
            "5  def main():",
            OLD_HUNK_MARKER,
            "-import sys",
            "",
            "@@ -20,3 +21,3 @@ def main():",
            NEW_HUNK_MARKER,
            "21      a = 1",
            "22 +    b = 3",
            "23      return a + b",
            OLD_HUNK_MARKER,
            "-    b = 2",
            "",
            "## File: 'docs/notes.md'",
            "",
            "@@ -0,0 +1,2 @@",
            NEW_HUNK_MARKER,
            "1 +# Notes",
            "2 +First line",
        ]) + "\n"
        assert formatted == expected

    def test_added_line_numbered(self, single_hunk_diff):
        formatted = format_diff(single_hunk_diff)
        assert "12 +added12" in formatted.splitlines()
        assert "11  line11" in formatted.splitlines()

    def test_numbering_agrees_with_valid_lines(self, app_diff):
        parsed = parse_diff(app_diff)
        assert numbers_by_file(format_parsed(parsed)) == valid_line_map(parsed)

    def test_old_block_omitted_without_deletions(self, single_hunk_diff):
        assert OLD_HUNK_MARKER not in format_diff(single_hunk_diff)

    def test_empty_diff(self):
        assert format_diff("") == ""


class TestFormatHunk:
    """Tests for format_hunk()."""

    def test_pure_context_hunk_is_omitted(self):
        diff = "\n".join([
            "diff --git a/x b/x",
            "@@ -1,2 +1,2 @@",
            " same",
            " same again",
            "@@ -10,1 +10,1 @@",
            "-old",
            "+new",
        ])
        parsed_file = parse_diff(diff).files[0]
        assert format_hunk(parsed_file.hunks[0]) == ""

        formatted = format_parsed(parse_diff(diff))
        assert "@@ -1,2 +1,2 @@" not in formatted
        assert "10 +new" in formatted

    def test_deletion_only_hunk(self):
        diff = "diff --git a/x b/x\n@@ -5,2 +5,1 @@\n keep\n-drop\n"
        rendered = format_hunk(parse_diff(diff).files[0].hunks[0])
        assert rendered.splitlines() == [
            "@@ -5,2 +5,1 @@",
            NEW_HUNK_MARKER,
            "5  keep",
            OLD_HUNK_MARKER,
            "-drop",
        ]
