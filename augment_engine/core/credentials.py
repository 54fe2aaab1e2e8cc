"""Credential lookup and format validation.

Storage itself is somebody else's concern; the pipeline only needs
``get_credential()``. Validation runs before any producer call.
"""

from typing import Protocol

from augment_engine.core.config import Settings, get_settings
from augment_engine.core.errors import ConfigurationError


class CredentialStore(Protocol):
    def get_credential(self) -> str | None: ...


class SettingsCredentialStore:
    """Reads the producer key from application settings."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def get_credential(self) -> str | None:
        return self.settings.ANTHROPIC_API_KEY


class StaticCredentialStore:
    """Holds a key handed over by the caller (e.g. a bring-your-own-key client)."""

    def __init__(self, credential: str | None):
        self._credential = credential

    def get_credential(self) -> str | None:
        return self._credential


def validate_credential(credential: str | None, prefix: str, min_length: int) -> str:
    """
    Check a credential's presence and shape.

    Args:
        credential: Value from the credential store
        prefix: Required literal prefix
        min_length: Minimum accepted length

    Returns:
        The credential, stripped

    Raises:
        ConfigurationError: code ``missing``, ``invalid_prefix`` or ``too_short``
    """
    if not credential or not credential.strip():
        raise ConfigurationError(
            "No API key found. Add your API key in settings.",
            code="missing",
        )

    credential = credential.strip()
    if not credential.startswith(prefix):
        raise ConfigurationError(
            f"Invalid API key format. Keys start with '{prefix}'.",
            code="invalid_prefix",
        )

    if len(credential) < min_length:
        raise ConfigurationError(
            "API key appears to be incomplete. Check and re-enter your key.",
            code="too_short",
        )

    return credential
