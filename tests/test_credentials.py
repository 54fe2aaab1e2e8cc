"""Tests for credential lookup and validation."""

import pytest

from augment_engine.core.config import Settings
from augment_engine.core.credentials import (
    SettingsCredentialStore,
    StaticCredentialStore,
    validate_credential,
)
from augment_engine.core.errors import ConfigurationError
from tests.fakes.fake_producer import VALID_KEY


class TestValidateCredential:
    @pytest.mark.parametrize("credential", [None, "", "   "])
    def test_missing(self, credential):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_credential(credential, "sk-ant-", 40)
        assert exc_info.value.code == "missing"
        assert exc_info.value.retryable is False

    def test_wrong_prefix(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_credential("xyz123", "sk-ant-", 40)
        assert exc_info.value.code == "invalid_prefix"

    def test_too_short(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_credential("sk-ant-short", "sk-ant-", 40)
        assert exc_info.value.code == "too_short"

    def test_valid_key_is_stripped(self):
        assert validate_credential(f"  {VALID_KEY}\n", "sk-ant-", 40) == VALID_KEY


class TestCredentialStores:
    def test_settings_store(self):
        store = SettingsCredentialStore(Settings(ANTHROPIC_API_KEY="sk-ant-from-settings"))
        assert store.get_credential() == "sk-ant-from-settings"

    def test_static_store(self):
        assert StaticCredentialStore(None).get_credential() is None
        assert StaticCredentialStore("k").get_credential() == "k"
