"""Tests for store configuration, logging setup and the error log."""

import logging

import pytest

from kbase.api import KnowledgeBase
from kbase.config import (
    CONFIG_FILENAME,
    StoreConfig,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)
from kbase.errors import log_exception
from kbase.logging_config import OPS_LOG_FILENAME, configure_ops_log, remove_ops_log


class TestConfig:

    def test_created_on_first_use(self, store_path):
        config = load_or_create_config(store_path)
        assert (store_path / CONFIG_FILENAME).exists()
        assert config.index_path == store_path / "index.db"

    def test_round_trip(self, store_path):
        save_config(StoreConfig(path=store_path, index_filename="kb.sqlite", log_level="DEBUG"))
        loaded = load_config(store_path)
        assert loaded.index_filename == "kb.sqlite"
        assert loaded.log_level == "DEBUG"

    def test_missing(self, store_path):
        with pytest.raises(FileNotFoundError):
            load_config(store_path)

    def test_newer_version_rejected(self, store_path):
        store_path.mkdir()
        (store_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(store_path)

    def test_default_store_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KBASE_STORE_PATH", str(tmp_path / "elsewhere"))
        assert get_default_store_path() == (tmp_path / "elsewhere").resolve()

    def test_default_store_in_cwd(self, tmp_path, monkeypatch):
        monkeypatch.delenv("KBASE_STORE_PATH", raising=False)
        monkeypatch.chdir(tmp_path)
        assert get_default_store_path() == (tmp_path / ".kbase").resolve()

    def test_configured_index_filename_is_used(self, store_path):
        save_config(StoreConfig(path=store_path, index_filename="kb.sqlite"))
        with KnowledgeBase(store_path) as kb:
            kb.create_item("docs", "d", content="x")
        assert (store_path / "kb.sqlite").exists()


class TestLogging:

    def test_ops_log_records_writes(self, kb, store_path):
        kb.create_item("issues", "Logged", content="x")
        text = (store_path / OPS_LOG_FILENAME).read_text()
        assert "Created issues-1: Logged" in text

    def test_close_detaches_handler(self, store_path):
        kb = KnowledgeBase(store_path)
        handler = kb._ops_log_handler
        assert handler in logging.getLogger("kbase").handlers
        kb.close()
        assert handler not in logging.getLogger("kbase").handlers

    def test_remove_ops_log(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        remove_ops_log(handler)
        remove_ops_log(None)
        assert handler not in logging.getLogger("kbase").handlers


def test_log_exception_writes_traceback(tmp_path, monkeypatch):
    monkeypatch.setenv("KBASE_STORE_PATH", str(tmp_path))
    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        path = log_exception(e, "testing")
    assert path == tmp_path / "kbase-errors.log"
    text = path.read_text()
    assert "testing" in text
    assert "RuntimeError: boom" in text
