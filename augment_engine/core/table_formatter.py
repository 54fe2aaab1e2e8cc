"""Convert JSON code blocks in narrative markdown into markdown tables."""

import json
import re
from typing import Any

from augment_engine.core.logging import get_logger

logger = get_logger(__name__)

_JSON_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_CAMEL_BOUNDARY_RE = re.compile(r"([A-Z])")


def _sanitize_cell(value: Any) -> str:
    """Render a cell so it cannot break table syntax."""
    if value is None:
        return "-"
    if isinstance(value, list):
        text = ", ".join(str(item) for item in value)
    elif isinstance(value, dict):
        text = " ".join(str(item) for item in value.values())
    else:
        text = str(value)
    return text.replace("|", "&#124;").replace("\r\n", "<br/>").replace("\n", "<br/>").strip()


def format_header(key: str) -> str:
    """normalRange -> Normal Range, adverse_effects -> Adverse effects"""
    spaced = _CAMEL_BOUNDARY_RE.sub(r" \1", key)
    spaced = re.sub(r"[_-]", " ", spaced).strip()
    words = spaced.split()
    if not words:
        return key
    words[0] = words[0][:1].upper() + words[0][1:]
    return " ".join(words)


def generate_table(rows: list[Any]) -> str:
    """Build a markdown table from a list of objects, union of keys as columns."""
    keys: list[str] = []
    for item in rows:
        if isinstance(item, dict):
            for key in item:
                if key not in keys:
                    keys.append(key)
    if not keys:
        return ""

    headers = [format_header(key) for key in keys]
    lines = [
        f"| {' | '.join(headers)} |",
        f"| {' | '.join('---' for _ in headers)} |",
    ]
    for item in rows:
        record = item if isinstance(item, dict) else {}
        lines.append(f"| {' | '.join(_sanitize_cell(record.get(key)) for key in keys)} |")

    return "\n" + "\n".join(lines) + "\n"


def _first_array(value: dict[str, Any]) -> list[Any] | None:
    for item in value.values():
        if isinstance(item, list):
            return item
    return None


def _parse_block(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    # The producer sometimes wraps the array in prose inside the fence
    start, end = content.find("["), content.rfind("]")
    if start > -1 and end > start:
        return json.loads(content[start : end + 1])

    start, end = content.find("{"), content.rfind("}")
    if start > -1 and end > start:
        return _first_array(json.loads(content[start : end + 1]))
    return None


def _replace_block(match: re.Match) -> str:
    try:
        parsed = _parse_block(match.group(1))
    except json.JSONDecodeError as e:
        logger.debug(f"Table generation skipped for block: {e}")
        return match.group(0)

    if isinstance(parsed, dict):
        parsed = _first_array(parsed)
    if isinstance(parsed, list) and parsed:
        table = generate_table(parsed)
        if table:
            return table
    return match.group(0)


def embed_tables_in_markdown(markdown: str) -> str:
    """
    Replace ```json fenced blocks holding arrays of objects with markdown tables.

    Blocks that do not parse, or hold no array, are left as they were.
    """
    if not markdown:
        return ""
    return _JSON_BLOCK_RE.sub(_replace_block, markdown)
