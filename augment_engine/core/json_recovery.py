"""Recovery of structured data from streamed model output.

The producer is asked for a single JSON object but the stream may carry
narration around it, get cut off mid-token, or contain syntax the strict
decoder rejects. Two stages recover what they can:

1. ``extract_json_object`` finds the first balanced object, string-aware, and
   reports either a complete slice or a partial one with enough scanner state
   to synthesize a closing suffix.
2. ``sanitize_and_parse`` applies a fixed, ordered list of textual repairs,
   re-trying the decode after each and stopping at the first success.

Neither stage raises. Absence of a usable object yields ``{}``.
"""

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from augment_engine.core.logging import get_logger

logger = get_logger(__name__)

_CLOSERS = {"{": "}", "[": "]"}

# Upper bound on cut points tried when trimming an open tail
_MAX_TAIL_CUTS = 64


class ExtractionStatus(str, Enum):
    NOT_FOUND = "not_found"
    COMPLETE = "complete"
    PARTIAL = "partial"


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of scanning text for the first structured object."""

    status: ExtractionStatus
    slice: str = ""
    unclosed_string: bool = False
    open_braces: int = 0
    # Closers for every still-open container, innermost first
    pending_closers: str = ""

    def recovery_candidate(self) -> str:
        """Text to hand to the sanitization pipeline."""
        if self.status is not ExtractionStatus.PARTIAL:
            return self.slice
        suffix = '"' if self.unclosed_string else ""
        return self.slice + suffix + self.pending_closers


# =============================================================================
# Stage 1: extraction
# =============================================================================


def extract_json_object(text: str) -> ExtractionResult:
    """
    Locate the first balanced ``{...}`` object in arbitrary text.

    Braces and brackets only count outside double-quoted strings, and
    backslash escapes inside strings are honored. The object is complete
    when the opening brace is closed again.

    Args:
        text: Raw accumulated producer output

    Returns:
        ExtractionResult (NOT_FOUND, COMPLETE or PARTIAL)
    """
    start = text.find("{")
    if start == -1:
        return ExtractionResult(status=ExtractionStatus.NOT_FOUND)

    in_string = False
    escape = False
    stack: list[str] = []

    for index in range(start, len(text)):
        ch = text[index]

        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch == "}":
            # A brace closes through any bracket the producer forgot to close
            while stack:
                if stack.pop() == "{":
                    break
            if not stack:
                return ExtractionResult(
                    status=ExtractionStatus.COMPLETE,
                    slice=text[start : index + 1],
                )
        elif ch == "]" and stack and stack[-1] == "[":
            stack.pop()

    partial = text[start:]
    if in_string and escape:
        # A dangling backslash would escape the synthesized closing quote
        partial = partial[:-1]

    return ExtractionResult(
        status=ExtractionStatus.PARTIAL,
        slice=partial,
        unclosed_string=in_string,
        open_braces=stack.count("{"),
        pending_closers="".join(_CLOSERS[opener] for opener in reversed(stack)),
    )


# =============================================================================
# Stage 2: sanitization
# =============================================================================

_STRAY_BACKSLASH_RE = re.compile(r'\\(["\\/bfnrtu])?')
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def _try_decode(candidate: str) -> dict[str, Any] | None:
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _escape_stray_backslashes(candidate: str) -> str:
    return _STRAY_BACKSLASH_RE.sub(
        lambda m: m.group(0) if m.group(1) else "\\\\",
        candidate,
    )


def _remove_trailing_commas(candidate: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", candidate)


def _escape_raw_newlines(candidate: str) -> str:
    """Escape CR/LF that sit inside string literals. Outside strings they are whitespace."""
    out: list[str] = []
    in_string = False
    escape = False
    index = 0
    while index < len(candidate):
        ch = candidate[index]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            elif ch in "\r\n":
                if ch == "\r" and candidate[index + 1 : index + 2] == "\n":
                    index += 1
                out.append("\\n")
                index += 1
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
        index += 1
    return "".join(out)


def _strip_null_bytes(candidate: str) -> str:
    return candidate.replace("\x00", "")


def _cut_points(candidate: str) -> list[tuple[int, str]]:
    """Positions where the text can be cut and re-closed, with the closers needed there."""
    points: list[tuple[int, str]] = []
    stack: list[str] = []
    in_string = False
    escape = False

    def closers() -> str:
        return "".join(_CLOSERS[opener] for opener in reversed(stack))

    for index, ch in enumerate(candidate):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                points.append((index + 1, closers()))
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
            points.append((index + 1, closers()))
        elif ch in "}]":
            if not stack or _CLOSERS[stack[-1]] != ch:
                break
            stack.pop()
            if not stack:
                break
            points.append((index + 1, closers()))
        elif ch == ",":
            points.append((index, closers()))

    return points


def _trim_open_tail(candidate: str) -> str:
    """
    Trim back to the last complete value and close what remains open.

    Handles tails a simple closing suffix cannot fix, such as a dangling key
    (``{"a": 1, "b"``) or a key waiting for its value (``{"a": 1, "b": }``).
    """
    for cut, closers in reversed(_cut_points(candidate)[-_MAX_TAIL_CUTS:]):
        head = candidate[:cut].rstrip()
        if head.endswith(","):
            head = head[:-1].rstrip()
        trimmed = head + closers
        if _try_decode(trimmed) is not None:
            return trimmed
    return candidate


_REPAIRS: list[tuple[str, Callable[[str], str]]] = [
    ("stray_backslashes", _escape_stray_backslashes),
    ("trailing_commas", _remove_trailing_commas),
    ("raw_newlines", _escape_raw_newlines),
    ("null_bytes", _strip_null_bytes),
    ("open_tail", _trim_open_tail),
]


def sanitize_and_parse(candidate: str) -> dict[str, Any]:
    """
    Decode a candidate slice, applying repairs in a fixed order until one works.

    Repairs are cumulative: each operates on the output of the previous one.
    Order: as-is, stray backslashes, trailing commas, raw newlines in
    strings, NUL bytes, open tail.

    Args:
        candidate: Complete or recovery-synthesized JSON text

    Returns:
        Decoded object, or {} if every repair fails
    """
    if not candidate:
        return {}

    parsed = _try_decode(candidate)
    if parsed is not None:
        return parsed

    sanitized = candidate
    for name, repair in _REPAIRS:
        sanitized = repair(sanitized)
        parsed = _try_decode(sanitized)
        if parsed is not None:
            logger.debug(f"JSON decoded after repair: {name}")
            return parsed

    logger.warning(f"JSON parse failed after all repairs (length: {len(candidate)})")
    return {}


def recover_json_object(text: str) -> dict[str, Any]:
    """
    Extract and decode the first structured object in ``text``.

    Args:
        text: Raw producer output, possibly truncated or malformed

    Returns:
        Decoded object, or {} when nothing usable is found
    """
    result = extract_json_object(text)
    if result.status is ExtractionStatus.NOT_FOUND:
        return {}

    if result.status is ExtractionStatus.PARTIAL:
        logger.warning(
            f"Incomplete JSON detected, attempting recovery "
            f"(open_braces={result.open_braces}, unclosed_string={result.unclosed_string})"
        )

    payload = sanitize_and_parse(result.recovery_candidate())

    if result.status is ExtractionStatus.PARTIAL and payload:
        logger.info("JSON recovery successful")
    return payload
