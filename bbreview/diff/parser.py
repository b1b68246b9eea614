"""
Unified diff parser.

Turns raw unified diff text (as served by Bitbucket's pullrequest diff
endpoint) into files, hunks and destination line numbers.

The parser is total: malformed headers are skipped, never raised. A file
without any hunks (pure rename, mode change, binary) is not emitted.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, Optional

FILE_HEADER_PREFIX = "diff --git"
HUNK_HEADER_PREFIX = "@@"
NEW_PATH_PREFIX = "+++ b/"

_FILE_HEADER_PATTERN = re.compile(r'^diff --git a/(.+?) b/(.+)$')
_HUNK_HEADER_PATTERN = re.compile(r'^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$')

# "\ No newline at end of file" marker
NO_NEWLINE_MARKER = "\\"


@dataclass
class DiffHunk:
    """One @@ -old +new @@ block."""
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    header: str  # Trailing text after the closing @@ (usually a function name)
    lines: list[str] = field(default_factory=list)  # Raw lines, prefix kept
    header_line: str = ""  # The @@ line exactly as it appeared

    @property
    def additions(self) -> int:
        return sum(1 for line in self.lines if is_addition(line))

    @property
    def deletions(self) -> int:
        return sum(1 for line in self.lines if is_deletion(line))


@dataclass
class ParsedFile:
    """All hunks for one destination path."""
    path: str
    hunks: list[DiffHunk] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0


@dataclass
class ParsedDiff:
    files: list[ParsedFile] = field(default_factory=list)
    total_additions: int = 0
    total_deletions: int = 0

    def get_file(self, path: str) -> Optional[ParsedFile]:
        """Return the file with the given destination path, or None."""
        for f in self.files:
            if f.path == path:
                return f
        return None

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


@dataclass
class LineContext:
    """Lines surrounding a destination line within one hunk."""
    before: list[str]
    target: str
    after: list[str]


def is_addition(line: str) -> bool:
    return line.startswith("+") and not line.startswith("+++")


def is_deletion(line: str) -> bool:
    return line.startswith("-") and not line.startswith("---")


def _is_new_side_line(line: str) -> bool:
    """True for lines that exist in the post-change file (added or context)."""
    if line.startswith(NO_NEWLINE_MARKER):
        return False
    return not line.startswith("-")


def parse_diff(diff_text: str) -> ParsedDiff:
    """Parse unified diff text into a ParsedDiff.

    Never raises on malformed input. Unrecognized lines outside a hunk are
    ignored; a hunk header that doesn't match the @@ pattern closes the
    current hunk and its content is skipped until the next valid header.
    """
    result = ParsedDiff()
    current_file: Optional[ParsedFile] = None
    current_hunk: Optional[DiffHunk] = None

    def flush_hunk():
        nonlocal current_hunk
        if current_file is not None and current_hunk is not None:
            current_file.hunks.append(current_hunk)
        current_hunk = None

    def flush_file():
        nonlocal current_file
        flush_hunk()
        if current_file is not None and current_file.hunks:
            result.files.append(current_file)
        current_file = None

    # A trailing newline terminates the last line, it doesn't start a new one
    if diff_text.endswith("\n"):
        diff_text = diff_text[:-1]

    for raw_line in diff_text.split("\n"):
        line = raw_line.rstrip("\r")

        if line.startswith(FILE_HEADER_PREFIX):
            flush_file()
            match = _FILE_HEADER_PATTERN.match(line)
            current_file = ParsedFile(path=match.group(2) if match else "")
            continue

        # "+++ b/<path>" names the destination unambiguously, even when the
        # path contains " b/"; a deleted file has "+++ /dev/null" instead.
        # git appends a tab to names containing spaces.
        if (current_file is not None and current_hunk is None and not current_file.hunks
                and line.startswith(NEW_PATH_PREFIX)):
            current_file.path = line[len(NEW_PATH_PREFIX):].rstrip("\t")
            continue

        if line.startswith(HUNK_HEADER_PREFIX):
            flush_hunk()
            match = _HUNK_HEADER_PATTERN.match(line)
            if match and current_file is not None:
                current_hunk = DiffHunk(
                    old_start=int(match.group(1)),
                    old_lines=int(match.group(2) or "1"),
                    new_start=int(match.group(3)),
                    new_lines=int(match.group(4) or "1"),
                    header=match.group(5).strip(),
                    header_line=line,
                )
            continue

        if current_file is None or current_hunk is None:
            continue

        if is_addition(line):
            current_file.additions += 1
            result.total_additions += 1
        elif is_deletion(line):
            current_file.deletions += 1
            result.total_deletions += 1
        current_hunk.lines.append(line)

    flush_file()
    return result


def iter_new_lines(hunk: DiffHunk) -> Iterator[tuple[Optional[int], str]]:
    """Walk a hunk, yielding (destination_line_number, raw_line).

    Added and context lines get a number; deleted lines and the no-newline
    marker yield None and do not consume a number. Both the formatter and the
    valid-line computation use this walk, so their numbering always agrees.
    """
    line_no = hunk.new_start
    for line in hunk.lines:
        if _is_new_side_line(line):
            yield line_no, line
            line_no += 1
        else:
            yield None, line


def valid_lines_for(parsed_file: ParsedFile) -> set[int]:
    """Destination line numbers a comment may legally attach to."""
    valid = set()
    for hunk in parsed_file.hunks:
        for line_no, _ in iter_new_lines(hunk):
            if line_no is not None:
                valid.add(line_no)
    return valid


def valid_line_map(parsed: ParsedDiff) -> dict[str, set[int]]:
    """Valid-line-set for every file in the diff, keyed by path."""
    return {f.path: valid_lines_for(f) for f in parsed.files}


def modified_line_numbers(parsed_file: ParsedFile) -> list[int]:
    """Destination line numbers of added lines only, in diff order."""
    numbers = []
    for hunk in parsed_file.hunks:
        for line_no, line in iter_new_lines(hunk):
            if line_no is not None and is_addition(line):
                numbers.append(line_no)
    return numbers


def extract_line_context(
    parsed_file: ParsedFile,
    target_line: int,
    context_lines: int = 3,
) -> Optional[LineContext]:
    """Return the content around a destination line, or None if not in any hunk.

    Context never crosses hunk boundaries.
    """
    for hunk in parsed_file.hunks:
        numbered = [(n, line[1:]) for n, line in iter_new_lines(hunk) if n is not None]
        for idx, (line_no, content) in enumerate(numbered):
            if line_no != target_line:
                continue
            start = max(0, idx - context_lines)
            end = min(len(numbered), idx + context_lines + 1)
            return LineContext(
                before=[c for _, c in numbered[start:idx]],
                target=content,
                after=[c for _, c in numbered[idx + 1:end]],
            )
    return None
