"""Tests for the command-line entry point."""

from unittest.mock import MagicMock, patch

import pytest

from feedsync.cli import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_OK, main, parse_args, run_sync, select_feeds
from feedsync.errors import AuthenticationError, ConfigurationError
from feedsync.models import FeedDefinition
from feedsync.sync import SyncReport

FEEDS = [
    FeedDefinition(url="https://feeds.example.com/a.csv", identifier="A", index=1),
    FeedDefinition(url="https://feeds.example.com/b.csv.gz", identifier="B", index=2, mapping_rules=(("x", "y"),)),
]

CREDENTIALS = {
    "SHOPWARE_API_URL": "https://shop.example.com",
    "SHOPWARE_CLIENT_ID": "id",
    "SHOPWARE_CLIENT_SECRET": "secret",
}


@pytest.fixture
def cli_env(monkeypatch):
    """Patch out dotenv, logging setup and signal handlers for main()."""
    for key, value in CREDENTIALS.items():
        monkeypatch.setenv(key, value)
    with patch("feedsync.cli.load_dotenv") as load_dotenv, \
            patch("feedsync.cli.setup_logging"), \
            patch("feedsync.cli.get_shutdown_handler") as get_handler, \
            patch("feedsync.cli.get_feed_definitions", return_value=list(FEEDS)):
        yield {"load_dotenv": load_dotenv, "handler": get_handler.return_value.install.return_value}


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])
        assert args.feeds is None
        assert args.log_level == "INFO"
        assert not args.list_feeds
        assert not args.no_log_file

    def test_feed_selection(self):
        assert parse_args(["--feeds", "A", "B"]).feeds == ["A", "B"]


class TestSelectFeeds:

    def test_all_feeds_by_default(self):
        assert select_feeds(FEEDS, None) == FEEDS

    def test_keeps_configuration_order(self):
        assert [f.identifier for f in select_feeds(FEEDS, ["B", "A"])] == ["A", "B"]

    def test_unknown_id(self):
        with pytest.raises(ConfigurationError, match="C"):
            select_feeds(FEEDS, ["C"])

    def test_no_feeds_configured(self):
        with pytest.raises(ConfigurationError):
            select_feeds([], None)


class TestRunSync:
    """Exit codes derived from the run result."""

    def _run(self, settings, report=None, error=None):
        with patch("feedsync.cli.SyncOrchestrator") as orchestrator_cls:
            orchestrator = orchestrator_cls.return_value
            if error:
                orchestrator.run.side_effect = error
            else:
                orchestrator.run.return_value = report
            return run_sync(settings, FEEDS)

    def test_success(self, settings):
        assert self._run(settings, report=SyncReport()) == EXIT_OK

    def test_interrupted(self, settings):
        assert self._run(settings, report=SyncReport(interrupted=True)) == EXIT_INTERRUPTED

    def test_authentication_failure(self, settings):
        assert self._run(settings, error=AuthenticationError("401")) == EXIT_FAILURE


class TestMain:

    def test_list_feeds(self, cli_env, capsys):
        with patch("feedsync.cli.run_sync") as run:
            assert main(["--list-feeds"]) == EXIT_OK
        run.assert_not_called()
        out = capsys.readouterr().out
        assert "[1] A: https://feeds.example.com/a.csv" in out
        assert "x->y" in out

    def test_runs_selected_feeds(self, cli_env):
        with patch("feedsync.cli.run_sync", return_value=EXIT_OK) as run:
            assert main(["--feeds", "B"]) == EXIT_OK

        settings, feeds = run.call_args.args
        assert [f.identifier for f in feeds] == ["B"]
        assert settings.shopware_api_url == "https://shop.example.com"
        cli_env["handler"].uninstall.assert_called_once()

    def test_propagates_run_exit_code(self, cli_env):
        with patch("feedsync.cli.run_sync", return_value=EXIT_INTERRUPTED):
            assert main([]) == EXIT_INTERRUPTED

    def test_missing_credentials(self, cli_env, monkeypatch):
        monkeypatch.delenv("SHOPWARE_CLIENT_SECRET")
        with patch("feedsync.cli.run_sync") as run:
            assert main([]) == EXIT_FAILURE
        run.assert_not_called()

    def test_unknown_feed_id(self, cli_env):
        with patch("feedsync.cli.run_sync") as run:
            assert main(["--feeds", "NOPE"]) == EXIT_FAILURE
        run.assert_not_called()

    def test_missing_env_file(self, cli_env, tmp_path):
        assert main(["--env-file", str(tmp_path / "missing.env")]) == EXIT_FAILURE
        cli_env["load_dotenv"].assert_not_called()

    def test_env_file_is_loaded(self, cli_env, tmp_path):
        env_file = tmp_path / "sync.env"
        env_file.write_text("FEED_URL_1=https://feeds.example.com/a.csv\n")
        with patch("feedsync.cli.run_sync", return_value=EXIT_OK):
            main(["--env-file", str(env_file)])
        cli_env["load_dotenv"].assert_called_once_with(dotenv_path=str(env_file))
