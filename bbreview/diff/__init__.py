"""Unified diff handling for bbreview.

parser: raw diff text -> ParsedDiff, destination line numbers.
lineformat: ParsedDiff -> line-numbered text for the generation engine.
"""

from bbreview.diff.parser import (
    DiffHunk,
    ParsedFile,
    ParsedDiff,
    LineContext,
    parse_diff,
    iter_new_lines,
    valid_lines_for,
    valid_line_map,
    modified_line_numbers,
    extract_line_context,
)
from bbreview.diff.lineformat import (
    format_diff,
    format_parsed,
    NEW_HUNK_MARKER,
    OLD_HUNK_MARKER,
)

__all__ = [
    # parser
    "DiffHunk",
    "ParsedFile",
    "ParsedDiff",
    "LineContext",
    "parse_diff",
    "iter_new_lines",
    "valid_lines_for",
    "valid_line_map",
    "modified_line_numbers",
    "extract_line_context",
    # lineformat
    "format_diff",
    "format_parsed",
    "NEW_HUNK_MARKER",
    "OLD_HUNK_MARKER",
]
