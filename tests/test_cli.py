"""Tests for the pycsync command line interface."""

import json
import os
import signal
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from pycsync.cli import main
from pycsync.config import Config
from pycsync.daemon import ReloadConfig, write_pid_file


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def source(temp_dir):
    """Create a small source tree."""
    src = temp_dir / "src"
    src.mkdir()
    (src / "a.txt").write_text("alpha")
    (src / "b").mkdir()
    (src / "b" / "c.txt").write_text("charlie")
    (src / "x.tmp").write_text("scratch")
    return src


@pytest.fixture
def config_file(temp_dir, source):
    """Write a config syncing the source tree to a local destination."""
    config = Config.from_dict(
        {
            "general": {"source_path": str(source), "hash_cache": False},
            "local": {"destination": str(temp_dir / "dest")},
            "daemon": {"pid_file": str(temp_dir / "pycsync.pid")},
        }
    )
    return config.save(temp_dir / "config.json")


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "scan", "sync", "daemon", "status", "stop"):
            assert command in result.output


class TestInitCommand:
    """Tests for the init command."""

    def test_init_writes_config(self, runner, temp_dir):
        path = temp_dir / "conf" / "config.json"
        result = runner.invoke(main, ["--config", str(path), "init"])

        assert result.exit_code == 0
        assert path.exists()
        assert Config.load(path, environ={}).general.max_concurrency == 5

    def test_init_refuses_overwrite(self, runner, config_file):
        result = runner.invoke(main, ["--config", str(config_file), "init"])
        assert result.exit_code == 1

        result = runner.invoke(main, ["--config", str(config_file), "init", "--force"])
        assert result.exit_code == 0


class TestScanCommand:
    """Tests for the scan command."""

    def test_scan_json(self, runner, config_file, source):
        result = runner.invoke(
            main, ["--config", str(config_file), "--json", "scan", str(source)]
        )

        assert result.exit_code == 0
        entries = json.loads(result.output)
        assert [e["path"] for e in entries] == ["a.txt", "b", "b/c.txt"]

    def test_scan_extra_ignore(self, runner, config_file, source):
        result = runner.invoke(
            main,
            ["--config", str(config_file), "--json", "scan", str(source), "-i", "b/"],
        )
        assert [e["path"] for e in json.loads(result.output)] == ["a.txt"]

    def test_scan_table(self, runner, config_file, source):
        result = runner.invoke(main, ["--config", str(config_file), "scan", str(source)])
        assert result.exit_code == 0
        assert "a.txt" in result.output


class TestSyncCommand:
    """Tests for the sync command."""

    def test_sync_to_local(self, runner, config_file, temp_dir):
        result = runner.invoke(
            main, ["--config", str(config_file), "sync", "--no-progress"]
        )

        assert result.exit_code == 0, result.output
        dest = temp_dir / "dest"
        assert (dest / "a.txt").read_text() == "alpha"
        assert (dest / "b" / "c.txt").read_text() == "charlie"
        assert not (dest / "x.tmp").exists()

    def test_sync_json_summary(self, runner, config_file):
        result = runner.invoke(main, ["--config", str(config_file), "--json", "sync"])

        assert result.exit_code == 0
        summary = json.loads(result.output)
        assert summary["local"]["created"] == 3
        assert summary["local"]["failed"] == 0

    def test_dry_run(self, runner, config_file, temp_dir):
        result = runner.invoke(
            main, ["--config", str(config_file), "sync", "--dry-run"]
        )

        assert result.exit_code == 0
        assert list((temp_dir / "dest").iterdir()) == []

    def test_strict_exit_code(self, runner, config_file, temp_dir):
        """Entry failures only change the exit code with --strict."""
        (temp_dir / "dest" / "a.txt").mkdir(parents=True)

        result = runner.invoke(main, ["--config", str(config_file), "-q", "sync"])
        assert result.exit_code == 0
        assert (temp_dir / "dest" / "b" / "c.txt").exists()

        result = runner.invoke(
            main, ["--config", str(config_file), "-q", "sync", "--strict"]
        )
        assert result.exit_code == 1

    def test_no_providers(self, runner, temp_dir, source):
        path = Config.from_dict({"general": {"hash_cache": False}}).save(
            temp_dir / "empty.json"
        )
        result = runner.invoke(main, ["--config", str(path), "sync", str(source)])
        assert result.exit_code == 1

    def test_missing_source(self, runner, config_file, temp_dir):
        result = runner.invoke(
            main, ["--config", str(config_file), "sync", str(temp_dir / "nope")]
        )
        assert result.exit_code == 1

    def test_invalid_config(self, runner, temp_dir):
        path = temp_dir / "bad.json"
        path.write_text(json.dumps({"general": {"max_concurrency": 0}}))
        result = runner.invoke(main, ["--config", str(path), "sync"])
        assert result.exit_code == 1


class TestDaemonCommands:
    """Tests for daemon, status and stop."""

    def test_daemon_runs_scheduler(self, runner, config_file, temp_dir):
        """The daemon writes its PID file while running and removes it after."""
        seen = {}

        def fake_run(self):
            seen["pid_file"] = (temp_dir / "pycsync.pid").exists()
            seen["interval"] = self.settings.sync_interval

        with patch("pycsync.cli.SyncScheduler.run", fake_run), patch(
            "pycsync.cli.signal.signal"
        ):
            result = runner.invoke(
                main,
                ["--config", str(config_file), "daemon", "--interval", "90s"],
            )

        assert result.exit_code == 0, result.output
        assert seen == {"pid_file": True, "interval": 90.0}
        assert not (temp_dir / "pycsync.pid").exists()

    def test_sighup_only_requests_reload(self, runner, config_file, temp_dir):
        """SIGHUP queues a reload; the scheduler reads the edited file itself."""
        seen = {}

        def fake_run(self):
            handlers = {c.args[0]: c.args[1] for c in register.call_args_list}
            data = json.loads(config_file.read_text())
            data["general"]["ignore_patterns"] = ["*.bak"]
            config_file.write_text(json.dumps(data))

            handlers[signal.SIGHUP](signal.SIGHUP, None)
            seen["message"] = self.control.get_nowait()
            seen["queue_empty"] = self.control.empty()
            seen["ignore"] = self.settings_loader().filters.ignore
            seen["initial_ignore"] = self.settings.filters.ignore

        with patch("pycsync.cli.SyncScheduler.run", fake_run), patch(
            "pycsync.cli.signal.signal"
        ) as register:
            result = runner.invoke(main, ["--config", str(config_file), "daemon"])

        assert result.exit_code == 0, result.output
        assert seen["message"] == ReloadConfig()
        assert seen["queue_empty"]
        assert seen["ignore"] == ("*.bak",)
        assert "*.bak" not in seen["initial_ignore"]

    def test_daemon_bad_interval(self, runner, config_file):
        result = runner.invoke(
            main, ["--config", str(config_file), "daemon", "--interval", "soon"]
        )
        assert result.exit_code == 2

    def test_status_not_running(self, runner, config_file):
        result = runner.invoke(main, ["--config", str(config_file), "--json", "status"])
        assert json.loads(result.output) == {"running": False, "pid": None}

    def test_status_running(self, runner, config_file, temp_dir):
        write_pid_file(temp_dir / "pycsync.pid", os.getpid())
        result = runner.invoke(main, ["--config", str(config_file), "--json", "status"])
        assert json.loads(result.output) == {"running": True, "pid": os.getpid()}

    def test_stop_sends_sigterm(self, runner, config_file, temp_dir):
        write_pid_file(temp_dir / "pycsync.pid", 424242)
        with patch("pycsync.cli.os.kill") as kill:
            result = runner.invoke(main, ["--config", str(config_file), "stop"])

        assert result.exit_code == 0
        kill.assert_called_with(424242, signal.SIGTERM)

    def test_stop_without_daemon(self, runner, config_file):
        result = runner.invoke(main, ["--config", str(config_file), "stop"])
        assert result.exit_code == 1
