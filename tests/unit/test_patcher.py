"""Unit tests for the line patcher."""

from inc_rename.core.cache import build_line_index, filter_duplicates
from inc_rename.core.patcher import is_blank_name, patch_line, render_index
from inc_rename.models.responses import HighlightSpan, LineOccurrence

LINE = "foo = foo + foo"
FOO = [LineOccurrence(0, 3), LineOccurrence(6, 9), LineOccurrence(12, 15)]


def _highlighted(line, spans):
    return [line[span.start : span.end] for span in spans]


class TestPatchLine:
    """Tests for patch_line."""

    def test_shorter_name(self):
        new_line, spans = patch_line(LINE, FOO, "x")

        assert new_line == "x = x + x"
        assert spans == [HighlightSpan(0, 1), HighlightSpan(4, 5), HighlightSpan(8, 9)]

    def test_longer_name(self):
        new_line, spans = patch_line(LINE, FOO, "longName")

        assert new_line == "longName = longName + longName"
        assert spans == [
            HighlightSpan(0, 8),
            HighlightSpan(11, 19),
            HighlightSpan(22, 30),
        ]

    def test_same_length_name(self):
        new_line, spans = patch_line(LINE, FOO, "bar")

        assert new_line == "bar = bar + bar"
        assert spans == [HighlightSpan(0, 3), HighlightSpan(6, 9), HighlightSpan(12, 15)]

    def test_highlights_cover_replacement_for_any_length(self):
        """Every span must select exactly the replacement in the new line."""
        for replacement in ["", "a", "ab", "abc", "abcd", "a_much_longer_name"]:
            new_line, spans = patch_line(LINE, FOO, replacement)

            assert new_line == " = ".join([replacement, f"{replacement} + {replacement}"])
            assert _highlighted(new_line, spans) == [replacement] * 3

    def test_unequal_original_spans(self):
        """Occurrences of different original lengths on one line."""
        line = "self.value = value(value_)"
        occurrences = [
            LineOccurrence(0, 10),  # self.value
            LineOccurrence(13, 18),  # value
            LineOccurrence(19, 25),  # value_
        ]

        new_line, spans = patch_line(line, occurrences, "v")

        assert new_line == "v = v(v)"
        assert _highlighted(new_line, spans) == ["v", "v", "v"]

    def test_single_occurrence_in_middle(self):
        new_line, spans = patch_line("return foo;", [LineOccurrence(7, 10)], "result")

        assert new_line == "return result;"
        assert spans == [HighlightSpan(7, 13)]

    def test_no_occurrences(self):
        new_line, spans = patch_line(LINE, [], "x")

        assert new_line == LINE
        assert spans == []

    def test_non_ascii_text(self):
        line = "été = été"
        new_line, spans = patch_line(line, [LineOccurrence(0, 3), LineOccurrence(6, 9)], "hiver")

        assert new_line == "hiver = hiver"
        assert _highlighted(new_line, spans) == ["hiver", "hiver"]


class TestIsBlankName:
    """Tests for the blank name check."""

    def test_blank(self):
        assert is_blank_name("")
        assert is_blank_name("   ")
        assert is_blank_name("\t ")

    def test_not_blank(self):
        assert not is_blank_name("x")
        assert not is_blank_name("  x ")


class TestRenderIndex:
    """Tests for render_index."""

    def test_renders_every_cached_line(self, location):
        documents = {
            "/b.py": ["import foo", "foo()"],
            "/a.py": ["foo = foo + foo"],
        }
        index = filter_duplicates(
            build_line_index(
                [
                    location("/b.py", 1, 0, 3),
                    location("/a.py", 0, 0, 3),
                    location("/a.py", 0, 6, 9),
                    location("/a.py", 0, 12, 15),
                    location("/b.py", 0, 7, 10),
                ],
                lambda doc, line: documents[doc][line],
            )
        )

        result = render_index(index, "bar")

        assert result.new_name == "bar"
        assert [(line.document_id, line.line_number) for line in result.lines] == [
            ("/a.py", 0),
            ("/b.py", 0),
            ("/b.py", 1),
        ]
        assert [line.new_text for line in result.lines] == [
            "bar = bar + bar",
            "import bar",
            "bar()",
        ]
        assert result.lines[0].original_text == "foo = foo + foo"
        assert result.affected_files == 2
        assert result.total_occurrences == 5

    def test_index_is_not_modified(self, location):
        index = build_line_index(
            [location("/a.py", 0, 0, 3)], lambda doc, line: "foo = 1"
        )

        render_index(index, "something_else")

        assert index["/a.py"][0].text == "foo = 1"
        assert index["/a.py"][0].occurrences == [LineOccurrence(0, 3)]

    def test_overlapping_references_render_cleanly(self, location):
        index = filter_duplicates(
            build_line_index(
                [location("/a.py", 0, 0, 5), location("/a.py", 0, 2, 7)],
                lambda doc, line: "abcdefghij",
            )
        )

        result = render_index(index, "X")

        assert result.lines[0].new_text == "Xfghij"
        assert result.lines[0].highlights == [HighlightSpan(0, 1)]

    def test_empty_index(self):
        result = render_index({}, "x")

        assert result.is_empty
        assert result.affected_files == 0
