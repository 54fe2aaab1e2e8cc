"""Error taxonomy for note assembly.

Only producer-contract violations are raised. Recovery and sanitization
failures degrade to an empty document or partial output instead.
"""

from typing import Literal

ConfigurationCode = Literal["missing", "invalid_prefix", "too_short", "rejected"]


class NoteAssemblyError(Exception):
    """Base class for errors surfaced to the pipeline caller."""

    code: str = "note_assembly_error"
    retryable: bool = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class ConfigurationError(NoteAssemblyError):
    """Missing, malformed or rejected credential. Fatal, never retried."""

    code: ConfigurationCode = "missing"

    def __init__(self, message: str, code: ConfigurationCode = "missing"):
        super().__init__(message, code)


class TransientProducerError(NoteAssemblyError):
    """Rate limit, server error or dropped connection from the producer."""

    code = "transient_producer_error"
    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyOutputError(NoteAssemblyError):
    """Stream yielded zero events, or the narrative came back too short."""

    code: Literal["empty_stream", "empty_content"] = "empty_stream"

    def __init__(
        self,
        message: str,
        code: Literal["empty_stream", "empty_content"] = "empty_stream",
        char_count: int = 0,
    ):
        super().__init__(message, code)
        self.char_count = char_count


class StructuredDataAbsent(NoteAssemblyError):
    """No usable structured object survived full recovery."""

    code = "structured_data_absent"
