"""Tests for the command line interface."""

import json

import pytest

from tracksync import __version__
from tracksync.cli import build_parser, main


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("WEENECT_USERNAME", raising=False)
    monkeypatch.delenv("WEENECT_PASSWORD", raising=False)
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"database_url": f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"})
    )
    return path


class TestParser:
    def test_backfill_arguments(self):
        args = build_parser().parse_args(
            ["backfill", "--start-date", "2024-01-01", "--tracker-id", "42"]
        )

        assert args.start_date.isoformat() == "2024-01-01"
        assert args.end_date is None
        assert args.tracker_id == 42

    def test_backfill_requires_valid_date(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["backfill", "--start-date", "01/01/2024"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    def test_version(self, capsys):
        assert main(["version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_status_on_empty_database(self, config_file, capsys):
        assert main(["--config", str(config_file), "status"]) == 0

        out = capsys.readouterr().out
        assert "Trackers: 0" in out
        assert "Never synced" in out

    def test_stats_on_empty_database(self, config_file, capsys):
        assert main(["--config", str(config_file), "stats"]) == 0
        assert "Statistics for All Trackers" in capsys.readouterr().out

    def test_sync_without_credentials_fails(self, config_file):
        assert main(["--config", str(config_file), "sync-now"]) == 1

    def test_missing_config_file_fails(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.json"), "status"]) == 1
