"""Tests for loguru-based merge logging."""

from loguru import logger

from audiobook_merge.config import MergeConfig


class TestSetupLogging:
    def setup_method(self):
        logger.remove()

    def teardown_method(self):
        logger.remove()

    def test_setup_creates_log_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_DIR", raising=False)
        log_dir = tmp_path / "logs"
        config = MergeConfig(_env_file=None, log_dir=log_dir)
        config.setup_logging()
        assert log_dir.exists()

    def test_setup_adds_file_sink(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_DIR", raising=False)
        log_dir = tmp_path / "logs"
        config = MergeConfig(_env_file=None, log_dir=log_dir)
        config.setup_logging()
        logger.bind(stage="test").info("hello from test")
        log_file = log_dir / "merge.log"
        assert log_file.exists()
        assert "hello from test" in log_file.read_text()

    def test_stage_context_in_output(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_DIR", raising=False)
        log_dir = tmp_path / "logs"
        config = MergeConfig(_env_file=None, log_dir=log_dir)
        config.setup_logging()
        logger.bind(stage="concat").info("merging")
        assert "concat" in (log_dir / "merge.log").read_text()

    def test_default_stage_empty(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_DIR", raising=False)
        log_dir = tmp_path / "logs"
        config = MergeConfig(_env_file=None, log_dir=log_dir)
        config.setup_logging()
        logger.info("no stage bound")
        assert "no stage bound" in (log_dir / "merge.log").read_text()

    def test_debug_always_in_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_DIR", raising=False)
        log_dir = tmp_path / "logs"
        config = MergeConfig(_env_file=None, log_dir=log_dir, log_level="WARNING")
        config.setup_logging()
        logger.bind(stage="test").debug("quiet detail")
        assert "quiet detail" in (log_dir / "merge.log").read_text()
