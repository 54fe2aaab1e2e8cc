"""Tests for narrative truncation detection."""

from augment_engine.core.truncation import (
    SUBSTANTIAL_LENGTH,
    detect_truncation,
    find_last_heading,
)


class TestBoundaries:
    def test_99_chars_never_truncated(self):
        assert detect_truncation("a" * 99).is_truncated is False

    def test_50_chars_ending_in_period(self):
        text = "x" * 49 + "."
        assert len(text) == 50
        assert detect_truncation(text).is_truncated is False

    def test_80001_chars_mid_sentence_with_open_fence(self):
        prefix = "# Guide\n\n```python\n"
        text = prefix + "a" * (80_001 - len(prefix))
        assert len(text) == 80_001

        check = detect_truncation(text)
        assert check.is_truncated is True
        assert check.resume_marker == "Guide"


class TestSubstantialTier:
    def _body(self) -> str:
        return "# Guide\n\n" + "This sentence is complete. " * (SUBSTANTIAL_LENGTH // 20)

    def test_complete_text(self):
        assert detect_truncation(self._body()).is_truncated is False

    def test_mid_sentence_ending(self):
        text = self._body() + "\nand the final paragraph stops right in the"
        assert detect_truncation(text).is_truncated is True

    def test_pipe_on_last_line_is_treated_as_complete(self):
        """Heuristic: a last line with '|' reads as a table row, not a cut-off.

        This is a tunable guess, not a guarantee. A table genuinely cut off
        mid-row in a very long buffer is reported as complete.
        """
        text = self._body() + "\n| Drug | Dose"
        assert detect_truncation(text).is_truncated is False

    def test_bracket_on_last_line_is_treated_as_complete(self):
        text = self._body() + "\nsee [Heart Failure](node:heart-failure) for more"
        assert detect_truncation(text).is_truncated is False


class TestMiddleTier:
    def test_complete_narrative(self):
        text = "# Title\n\n## Overview\n\n" + "Plain sentence. " * 10
        assert detect_truncation(text).is_truncated is False

    def test_missing_terminal_punctuation(self):
        text = "# Title\n\n## Section Two\n\n" + "words " * 30
        check = detect_truncation(text)

        assert check.is_truncated is True
        assert check.resume_marker == "Section Two"

    def test_open_table_row(self):
        text = "## Drugs\n\n" + "Intro sentence. " * 8 + "\n| Drug | Dose |\n| --- | --- |\n| Furosemide | 40 mg."
        assert detect_truncation(text).is_truncated is True

    def test_unbalanced_fence(self):
        text = "## Data\n\n" + "Intro sentence. " * 8 + '\n```json\n[{"a": 1}].'
        assert detect_truncation(text).is_truncated is True

    def test_no_heading_gives_no_marker(self):
        check = detect_truncation("words " * 30)
        assert check.is_truncated is True
        assert check.resume_marker is None


class TestFindLastHeading:
    def test_returns_last_heading_text(self):
        assert find_last_heading("# A\ntext\n### B c\nmore") == "B c"

    def test_none_without_headings(self):
        assert find_last_heading("just text") is None
