"""Tests for bbreview.diff.parser."""

from bbreview.diff.parser import (
    extract_line_context,
    iter_new_lines,
    modified_line_numbers,
    parse_diff,
    valid_line_map,
    valid_lines_for,
)


class TestParseDiff:
    """Tests for parse_diff()."""

    def test_files_in_order(self, app_diff):
        parsed = parse_diff(app_diff)
        assert parsed.paths == ["src/app.py", "docs/notes.md"]

    def test_file_without_hunks_is_dropped(self, app_diff):
        parsed = parse_diff(app_diff)
        assert parsed.get_file("new.txt") is None
        assert parsed.get_file("old.txt") is None

    def test_hunk_headers(self, app_diff):
        app = parse_diff(app_diff).get_file("src/app.py")
        assert len(app.hunks) == 2

        first, second = app.hunks
        assert (first.old_start, first.old_lines, first.new_start, first.new_lines) == (1, 4, 1, 5)
        assert first.header == ""
        assert (second.old_start, second.old_lines, second.new_start, second.new_lines) == (20, 3, 21, 3)
        assert second.header == "def main():"
        assert second.header_line == "@@ -20,3 +21,3 @@ def main():"

    def test_counts(self, app_diff):
        parsed = parse_diff(app_diff)
        app = parsed.get_file("src/app.py")
        notes = parsed.get_file("docs/notes.md")

        assert (app.additions, app.deletions) == (3, 2)
        assert (notes.additions, notes.deletions) == (2, 0)
        assert parsed.total_additions == 5
        assert parsed.total_deletions == 2

    def test_file_header_lines_not_counted(self, app_diff):
        # "--- a/..." and "+++ b/..." precede the first hunk and are never content
        notes = parse_diff(app_diff).get_file("docs/notes.md")
        assert notes.hunks[0].lines == ["+# Notes", "+First line"]

    def test_hunk_counts_default_to_one(self):
        diff = "diff --git a/x b/x\n@@ -3 +3 @@\n-old\n+new\n"
        hunk = parse_diff(diff).files[0].hunks[0]
        assert (hunk.old_lines, hunk.new_lines) == (1, 1)

    def test_path_taken_from_destination_side(self):
        diff = "diff --git a/old/name.py b/new/name.py\n@@ -1,1 +1,1 @@\n-a\n+b\n"
        assert parse_diff(diff).paths == ["new/name.py"]

    def test_path_containing_b_slash_taken_from_plus_line(self):
        diff = "\n".join([
            "diff --git a/x b/y.py b/x b/y.py",
            "--- a/x b/y.py\t",
            "+++ b/x b/y.py\t",
            "@@ -1 +1 @@",
            "-a",
            "+b",
        ])
        assert parse_diff(diff).paths == ["x b/y.py"]

    def test_deleted_file_keeps_header_path(self):
        diff = "diff --git a/gone.py b/gone.py\n--- a/gone.py\n+++ /dev/null\n@@ -1 +0,0 @@\n-x\n"
        assert parse_diff(diff).paths == ["gone.py"]

    def test_added_line_resembling_plus_header_keeps_path(self):
        diff = "diff --git a/x b/x\n@@ -1 +1,2 @@\n a\n+++ b/other\n"
        assert parse_diff(diff).paths == ["x"]

    def test_malformed_hunk_header_is_skipped(self):
        diff = "\n".join([
            "diff --git a/x.py b/x.py",
            "@@ garbage @@",
            "+ignored",
            "@@ -1,1 +1,2 @@",
            " kept",
            "+added",
        ])
        parsed = parse_diff(diff)
        hunks = parsed.files[0].hunks
        assert len(hunks) == 1
        assert hunks[0].lines == [" kept", "+added"]
        assert parsed.total_additions == 1

    def test_lines_before_any_file_are_ignored(self):
        diff = "From 123abc\nSubject: x\n+not a change\ndiff --git a/x b/x\n@@ -1 +1 @@\n+y\n"
        parsed = parse_diff(diff)
        assert parsed.total_additions == 1
        assert parsed.paths == ["x"]

    def test_crlf_line_endings(self, single_hunk_diff):
        parsed = parse_diff(single_hunk_diff.replace("\n", "\r\n"))
        assert valid_lines_for(parsed.files[0]) == set(range(10, 16))
        assert all(not line.endswith("\r") for line in parsed.files[0].hunks[0].lines)

    def test_empty_and_garbage_input(self):
        assert parse_diff("").files == []
        assert parse_diff("not a diff at all\n").files == []

    def test_no_newline_marker_is_not_a_line(self):
        diff = "\n".join([
            "diff --git a/x b/x",
            "@@ -1,1 +1,1 @@",
            "-old",
            "\\ No newline at end of file",
            "+new",
            "\\ No newline at end of file",
        ])
        parsed_file = parse_diff(diff).files[0]
        assert valid_lines_for(parsed_file) == {1}


class TestValidLines:
    """Tests for destination line numbering."""

    def test_single_hunk_with_added_line(self, single_hunk_diff):
        parsed_file = parse_diff(single_hunk_diff).get_file("f")
        assert valid_lines_for(parsed_file) == {10, 11, 12, 13, 14, 15}
        assert modified_line_numbers(parsed_file) == [12]

    def test_deleted_lines_do_not_consume_numbers(self, app_diff):
        app = parse_diff(app_diff).get_file("src/app.py")
        assert valid_lines_for(app) == {1, 2, 3, 4, 5, 21, 22, 23}
        assert modified_line_numbers(app) == [2, 3, 22]

    def test_iter_new_lines(self, app_diff):
        hunk = parse_diff(app_diff).get_file("src/app.py").hunks[1]
        assert list(iter_new_lines(hunk)) == [
            (21, "     a = 1"),
            (None, "-    b = 2"),
            (22, "+    b = 3"),
            (23, "     return a + b"),
        ]

    def test_valid_line_map(self, app_diff):
        line_map = valid_line_map(parse_diff(app_diff))
        assert set(line_map) == {"src/app.py", "docs/notes.md"}
        assert line_map["docs/notes.md"] == {1, 2}

    def test_valid_set_matches_hunk_new_counts(self, app_diff):
        for parsed_file in parse_diff(app_diff).files:
            expected = sum(h.new_lines for h in parsed_file.hunks)
            assert len(valid_lines_for(parsed_file)) == expected


class TestExtractLineContext:
    """Tests for extract_line_context()."""

    def test_context_around_added_line(self, single_hunk_diff):
        parsed_file = parse_diff(single_hunk_diff).files[0]
        context = extract_line_context(parsed_file, 12, context_lines=1)
        assert context.before == ["line11"]
        assert context.target == "added12"
        assert context.after == ["line13"]

    def test_context_clipped_at_hunk_edges(self, single_hunk_diff):
        parsed_file = parse_diff(single_hunk_diff).files[0]
        context = extract_line_context(parsed_file, 10, context_lines=3)
        assert context.before == []
        assert context.after == ["line11", "added12", "line13"]

    def test_context_skips_deleted_lines(self, app_diff):
        app = parse_diff(app_diff).get_file("src/app.py")
        context = extract_line_context(app, 22, context_lines=1)
        assert context.before == ["    a = 1"]
        assert context.target == "    b = 3"
        assert context.after == ["    return a + b"]

    def test_line_outside_hunks(self, app_diff):
        app = parse_diff(app_diff).get_file("src/app.py")
        assert extract_line_context(app, 10) is None
