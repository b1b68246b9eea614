"""
Render a diff with explicit destination line numbers.

The generation engine targets comments by destination line number. Counting
lines inside a hunk is error-prone for it, so every new-side line is
prefixed with its number and deleted lines are moved to a separate block:

    ## File: 'src/app.py'

    @@ -10,5 +10,6 @@ def handler():
    __new hunk__
    10  context line
    11 +added line
    __old hunk__
    -removed line
"""

from bbreview.diff.parser import ParsedDiff, ParsedFile, DiffHunk, iter_new_lines, parse_diff

NEW_HUNK_MARKER = "__new hunk__"
OLD_HUNK_MARKER = "__old hunk__"


def format_hunk(hunk: DiffHunk) -> str:
    """Render one hunk. Returns "" for pure-context hunks."""
    if not hunk.additions and not hunk.deletions:
        return ""

    new_lines = []
    old_lines = []
    for line_no, line in iter_new_lines(hunk):
        if line_no is None:
            if line.startswith("-"):
                old_lines.append(line)
            continue
        if line.startswith("+"):
            new_lines.append(f"{line_no} {line}")
        else:
            # Context lines carry a leading space in the diff; drop it so the
            # column after the number is reserved for "+"
            new_lines.append(f"{line_no}  {line[1:]}")

    parts = [hunk.header_line, NEW_HUNK_MARKER, *new_lines]
    if old_lines:
        parts.append(OLD_HUNK_MARKER)
        parts.extend(old_lines)
    return "\n".join(parts)


def format_file(parsed_file: ParsedFile) -> str:
    hunks = [h for h in (format_hunk(h) for h in parsed_file.hunks) if h]
    if not hunks:
        return ""
    return f"## File: '{parsed_file.path}'\n\n" + "\n\n".join(hunks)


def format_parsed(parsed: ParsedDiff) -> str:
    sections = [s for s in (format_file(f) for f in parsed.files) if s]
    return "\n\n".join(sections) + ("\n" if sections else "")


def format_diff(diff_text: str) -> str:
    """Parse and render diff text with destination line numbers."""
    return format_parsed(parse_diff(diff_text))
