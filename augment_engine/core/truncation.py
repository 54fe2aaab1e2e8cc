"""Heuristic detection of narrative output that was cut off.

The producer gives no explicit "finished" signal, so completeness is judged
from the text itself. Checks are tiered by length: short buffers carry too
little signal, and very long buffers are only flagged when clearly broken to
avoid paying for continuations on documents that are already complete.
"""

import re
from dataclasses import dataclass

from augment_engine.core.logging import get_logger

logger = get_logger(__name__)

MIN_SIGNAL_LENGTH = 100
SUBSTANTIAL_LENGTH = 80_000

# Final lines shorter than this are not judged mid-sentence in the substantial tier
_MID_SENTENCE_MIN_LINE = 10

_TERMINAL_PUNCTUATION = (".", "!", "?", ":")
_ENDS_WITH_PUNCTUATION_RE = re.compile(r"[.!?:]\s*$")
_OPEN_TABLE_ROW_RE = re.compile(r"\|[^\n]*$")
_LIST_ITEM_RE = re.compile(r"^\s*[-*]\s+")
_HEADING_RE = re.compile(r"^#{1,6}\s+.+$", re.MULTILINE)
_HEADING_PREFIX_RE = re.compile(r"^#{1,6}\s+")


@dataclass(frozen=True)
class TruncationCheck:
    is_truncated: bool
    resume_marker: str | None = None


def find_last_heading(markdown: str) -> str | None:
    """Text of the last markdown heading, without its hashes."""
    headings = _HEADING_RE.findall(markdown)
    if not headings:
        return None
    return _HEADING_PREFIX_RE.sub("", headings[-1]).strip()


def _has_unbalanced_fence(text: str) -> bool:
    return text.count("```") % 2 != 0


def _looks_mid_sentence(last_line: str) -> bool:
    return (
        len(last_line) > _MID_SENTENCE_MIN_LINE
        and not last_line.endswith(_TERMINAL_PUNCTUATION)
        and not last_line.startswith("#")
    )


def detect_truncation(markdown: str) -> TruncationCheck:
    """
    Classify a narrative buffer as complete or cut off.

    Tiers:
    - under 100 chars: never truncated
    - over 80,000 chars (after trimming): truncated only on an unbalanced
      code fence, or a long final line that ends mid-sentence and carries no
      ``[`` or ``|`` (treated as a link or table row). That last exemption is
      a tunable heuristic, not a guarantee.
    - otherwise: truncated when the text lacks terminal punctuation, ends in
      an open table row, has an unbalanced code fence, or ends in an
      unpunctuated list item

    Args:
        markdown: Accumulated narrative text

    Returns:
        TruncationCheck with the last heading as resume marker when truncated
    """
    if not markdown or len(markdown) < MIN_SIGNAL_LENGTH:
        return TruncationCheck(is_truncated=False)

    trimmed = markdown.strip()
    lines = trimmed.split("\n")

    if len(trimmed) > SUBSTANTIAL_LENGTH:
        last_line = lines[-1].strip()

        if _has_unbalanced_fence(trimmed):
            logger.warning("Truncation detected: incomplete code block")
            return TruncationCheck(is_truncated=True, resume_marker=find_last_heading(trimmed))

        if _looks_mid_sentence(last_line) and "[" not in last_line and "|" not in last_line:
            logger.warning("Truncation detected: mid-sentence ending")
            return TruncationCheck(is_truncated=True, resume_marker=find_last_heading(trimmed))

        return TruncationCheck(is_truncated=False)

    last_line = lines[-1]
    ends_with_punctuation = bool(_ENDS_WITH_PUNCTUATION_RE.search(trimmed))
    open_table_row = bool(_OPEN_TABLE_ROW_RE.search(trimmed)) and not trimmed.endswith("|")
    ends_with_list_item = bool(_LIST_ITEM_RE.match(last_line))

    is_truncated = (
        not ends_with_punctuation
        or open_table_row
        or _has_unbalanced_fence(trimmed)
        or (ends_with_list_item and not ends_with_punctuation)
    )
    if not is_truncated:
        return TruncationCheck(is_truncated=False)

    resume_marker = find_last_heading(trimmed)
    logger.warning(f'Truncation detected. Last section: "{resume_marker or "unknown"}"')
    return TruncationCheck(is_truncated=True, resume_marker=resume_marker)
