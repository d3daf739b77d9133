"""Tests for URL validation, structured logging and shutdown handling."""

import json
import logging
import tempfile
from pathlib import Path

import pytest

from feedsync.logging_config import get_logger, log_sync_event, setup_logging
from feedsync.shutdown import ShutdownHandler
from feedsync.url_validation import (
    URLValidationError,
    is_gzip_url,
    media_filename_from_url,
    validate_url,
)


class TestValidateUrl:
    """Test URL validation."""

    def test_accepts_http_and_https(self):
        assert validate_url(" https://example.com/feed.csv ") == "https://example.com/feed.csv"
        assert validate_url("http://example.com/feed.csv") == "http://example.com/feed.csv"

    @pytest.mark.parametrize("url", [
        "",
        "javascript:alert(1)",
        "file:///etc/passwd",
        "ftp://example.com/feed.csv",
        "https://",
        "https://example.com/../secret",
        "example.com/feed.csv",
    ])
    def test_rejects(self, url):
        with pytest.raises(URLValidationError):
            validate_url(url)

    def test_gzip_detection(self):
        assert is_gzip_url("https://example.com/feed.csv.GZ")
        assert not is_gzip_url("https://example.com/feed.csv?format=gz")


class TestMediaFilename:
    """Media dedup keys derived from image URLs."""

    @pytest.mark.parametrize("url,expected", [
        ("https://cdn.example.com/img/widget.jpg", "widget"),
        ("https://cdn.example.com/img/Widget%20Pro.JPG?w=300", "Widget_Pro"),
        ("https://cdn.example.com/img/a+b (1).png", "a_b_1"),
        ("https://cdn.example.com/img/v1.2-final.webp", "v1.2-final"),
    ])
    def test_filenames(self, url, expected):
        assert media_filename_from_url(url) == expected

    def test_same_image_same_key(self):
        assert media_filename_from_url("https://a.example.com/x/shoe.jpg") == \
            media_filename_from_url("https://b.example.com/y/shoe.jpg?v=2")

    def test_nothing_usable(self):
        assert media_filename_from_url("https://cdn.example.com/") is None
        assert media_filename_from_url("https://cdn.example.com/%%%.jpg") is None


class TestStructuredLogging:
    """JSONL event log."""

    @pytest.fixture(autouse=True)
    def reset_logger(self):
        yield
        logger = logging.getLogger("feedsync")
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)

    def test_events_written_as_jsonl(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            setup_logging(log_to_console=False, log_dir=Path(tmpdir))

            log_sync_event("row_skipped", {
                "message": "Row #3 skipped",
                "feed_id": "F1",
                "reason": "no business key",
            }, level=logging.WARNING)

            files = list(Path(tmpdir).glob("sync_*.jsonl"))
            assert len(files) == 1
            entry = json.loads(files[0].read_text(encoding="utf-8").strip())
            assert entry["event_type"] == "row_skipped"
            assert entry["message"] == "Row #3 skipped"
            assert entry["feed_id"] == "F1"
            assert entry["level"] == "WARNING"

    def test_plain_log_lines_are_captured(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            setup_logging(log_to_console=False, log_dir=Path(tmpdir))

            get_logger("sync").info("Feed 'F1' done. Created=1")

            entry = json.loads(next(Path(tmpdir).glob("*.jsonl")).read_text(encoding="utf-8"))
            assert entry["logger"] == "feedsync.sync"
            assert "event_type" not in entry

    def test_disabled_level_is_dropped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            setup_logging(level=logging.WARNING, log_to_file=False, log_to_console=False)

            log_sync_event("llm_call", {"prompt": "..."}, level=logging.DEBUG)

            assert list(Path(tmpdir).glob("*.jsonl")) == []


class TestShutdownHandler:
    """Graceful stop flag."""

    def test_request_and_reset(self):
        handler = ShutdownHandler()
        assert not handler.shutdown_requested

        handler.request_shutdown()
        assert handler.shutdown_requested

        handler.reset()
        assert not handler.shutdown_requested

    def test_wait_returns_early_after_shutdown(self):
        handler = ShutdownHandler()
        handler.request_shutdown()
        assert handler.wait(60) is False

    def test_zero_wait(self):
        assert ShutdownHandler().wait(0) is True

    def test_install_and_uninstall_restore_handlers(self):
        import signal

        original = signal.getsignal(signal.SIGTERM)
        handler = ShutdownHandler().install()
        try:
            assert signal.getsignal(signal.SIGTERM) == handler._handle_signal
        finally:
            handler.uninstall()
        assert signal.getsignal(signal.SIGTERM) == original
