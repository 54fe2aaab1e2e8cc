"""Post-processing trim pass for assembled narrative text.

Continuation rounds occasionally re-emit content the previous round already
produced. This pass is the only operation allowed to shrink the buffer.
"""

import re

from augment_engine.core.logging import get_logger

logger = get_logger(__name__)

_H1_RE = re.compile(r"^#\s+[^#]")
_SECTION_SPLIT_RE = re.compile(r"(?=^#{1,2}\s+\S)", re.MULTILINE)
_SECTION_HEADING_RE = re.compile(r"^(#{1,2}\s+[^\n]+)")

# A repeated title closer than this is treated as a legitimate reference, not a replay
_MIN_REPLAY_DISTANCE = 10


def _normalize_heading(heading: str) -> str:
    return re.sub(r"\s+", " ", heading.lower()).strip()


def _drop_replayed_document(markdown: str) -> str:
    lines = markdown.split("\n")
    first_h1 = next((i for i, line in enumerate(lines) if _H1_RE.match(line)), None)
    if first_h1 is None:
        return markdown

    for index in range(first_h1 + _MIN_REPLAY_DISTANCE + 1, len(lines)):
        if lines[index] == lines[first_h1]:
            logger.warning("Detected duplicated content, removing second occurrence")
            return "\n".join(lines[:index])
    return markdown


def _section_body(section: str, heading_end: int) -> str:
    return section[heading_end:].strip()


def remove_redundant_sections(markdown: str) -> str:
    """
    Remove replayed content from a narrative buffer.

    1. If the first H1 line appears again more than 10 lines later, the
       document was emitted twice; everything from the repeat is dropped.
    2. Sections split at H1/H2 headings are deduplicated by normalized
       heading text. The first occurrence keeps its position. A later copy
       whose body extends the first one (the section a round was cut off in,
       re-emitted in full by the next round) replaces it; any other repeat
       is dropped. Text before the first heading is always kept.

    Args:
        markdown: Narrative text

    Returns:
        Cleaned text, stripped of surrounding whitespace
    """
    if not markdown:
        return ""

    cleaned = _drop_replayed_document(markdown)

    kept: list[str] = []
    position_by_heading: dict[str, int] = {}
    for section in _SECTION_SPLIT_RE.split(cleaned):
        if not section:
            continue
        match = _SECTION_HEADING_RE.match(section)
        if not match:
            kept.append(section)
            continue

        heading = _normalize_heading(match.group(1))
        if heading not in position_by_heading:
            position_by_heading[heading] = len(kept)
            kept.append(section)
            continue

        position = position_by_heading[heading]
        previous = kept[position]
        previous_body = _section_body(previous, _SECTION_HEADING_RE.match(previous).end())
        body = _section_body(section, match.end())
        if len(body) > len(previous_body) and body.startswith(previous_body):
            logger.warning(f"Replaced cut-off section with its completed copy: {heading}")
            # Keep the separator that followed the earlier copy
            trailing = previous[len(previous.rstrip()) :]
            kept[position] = section.rstrip() + (trailing or "\n\n")
        else:
            logger.warning(f"Removed duplicate section: {heading}")

    return "".join(kept).strip()
