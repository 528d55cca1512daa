"""
Unit tests for configuration, logging setup and the error taxonomy.
"""

import logging
import os
import sys

import pytest
import structlog
from pydantic import ValidationError as SettingsValidationError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from errors import (
    IndexSyncError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    SearchError,
    ValidationError,
)
from logging_config import configure_logging, get_logger
from settings import Settings, get_settings, reload_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for key in list(os.environ):
            if key.startswith("JUSTREADIT_"):
                monkeypatch.delenv(key)
        settings = Settings(_env_file=None)

        assert settings.index_namespace == "justReadIt"
        assert settings.embed_provider == "sentence-transformers"
        assert settings.search_top_k == 3
        assert settings.legacy_delete_ceiling == 1000
        assert settings.book_link_prefix == "/justreadit/book/"
        assert settings.note_link_prefix == "/justreadit/note/"
        assert settings.database_url.startswith("sqlite:///")

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.delenv("JUSTREADIT_OPENAI_API_KEY", raising=False)
        monkeypatch.setenv("JUSTREADIT_SEARCH_TOP_K", "5")
        monkeypatch.setenv("JUSTREADIT_LOG_LEVEL", "debug")
        monkeypatch.setenv("JUSTREADIT_EMBED_PROVIDER", "OpenAI")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

        settings = Settings(_env_file=None)

        assert settings.search_top_k == 5
        assert settings.log_level == "DEBUG"
        assert settings.embed_provider == "openai"
        assert settings.openai_api_key == "sk-env"

    def test_invalid_values_rejected(self):
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, embed_provider="pinecone")
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, log_format="xml")
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, embed_concurrency=0)

    def test_reload_settings_clears_cache(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("JUSTREADIT_PORT", "9001")
        reloaded = reload_settings()

        assert reloaded is not first
        assert reloaded.port == 9001
        monkeypatch.delenv("JUSTREADIT_PORT")
        reload_settings()


class TestErrors:
    def test_status_codes(self):
        assert ValidationError("bad").http_status_code == 400
        assert NotFoundError("Note", 1).http_status_code == 404
        assert PersistenceError("save").http_status_code == 500
        assert ProviderError("openai", "quota").http_status_code == 502
        assert SearchError("down").http_status_code == 500

    def test_to_dict(self):
        error = ValidationError("Required fields are missing", fields=["noteId"])

        assert error.to_dict() == {
            "status": "error",
            "code": "VALIDATION_ERROR",
            "message": "Required fields are missing",
            "details": {"fields": ["noteId"]},
        }

    def test_index_sync_error_is_not_a_persistence_error(self):
        error = IndexSyncError(3, "upsert")

        assert not isinstance(error, PersistenceError)
        assert error.stage == "upsert"
        assert "Note 3 was saved" in error.message

    def test_str_includes_code(self):
        assert str(NotFoundError("Book", "b1")) == "[NOT_FOUND] Book not found: b1"


class TestLoggingConfig:
    def teardown_method(self):
        configure_logging(Settings(_env_file=None, log_level="WARNING"))

    def test_json_renderer_and_level(self):
        configure_logging(Settings(_env_file=None, log_level="debug", log_format="json"))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert logging.getLogger("sqlalchemy").level == logging.WARNING

    def test_console_renderer(self):
        configure_logging(Settings(_env_file=None, log_format="console"))

        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert get_logger("test") is not None
