"""Tests for the taskmaster-sync command line."""

import json
from unittest.mock import Mock

import pytest

from taskmaster_sync import __version__
from taskmaster_sync.cli import _mask, build_parser, main
from taskmaster_sync.sync.mapping_store import MappingStore

BOARD_ID = "1001"


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Empty CWD and HOME, credentials in env, logging and .env untouched."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    # --config writes os.environ directly; register the key so it is restored
    monkeypatch.setenv("TASKMASTER_SYNC_CONFIG", "")
    monkeypatch.delenv("TASKMASTER_SYNC_CONFIG")
    for name in ("MONDAY_GROUP_IDS", "MONDAY_API_URL", "MONDAY_API_VERSION"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MONDAY_API_KEY", "secret-api-key-123")
    monkeypatch.setenv("MONDAY_BOARD_ID", BOARD_ID)
    monkeypatch.setattr("taskmaster_sync.cli.load_dotenv", lambda: None)
    monkeypatch.setattr("taskmaster_sync.cli.setup_logging", lambda **kw: None)
    return tmp_path


@pytest.fixture
def wired(cli_env, engine, monkeypatch):
    """Route push/pull to the in-memory engine; record the build args."""
    seen = {}

    def fake_build(config, unified, tasks_file=None, state_file=None):
        seen.update(config=config, unified=unified, tasks_file=tasks_file)
        return engine

    monkeypatch.setattr("taskmaster_sync.cli.build_engine", fake_build)
    return seen


class TestParser:
    def test_group_option_repeatable(self):
        args = build_parser().parse_args(["--group", "a", "--group", "b", "push"])
        assert args.groups == ["a", "b"]

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert __version__ in capsys.readouterr().out

    def test_mask(self):
        assert _mask(None) == "(not set)"
        assert _mask("short") == "****"
        assert _mask("secret-api-key-123") == "secr...-123"


class TestPushPull:
    def test_push_prints_report(self, wired, write_tasks, capsys):
        write_tasks([{"id": 1, "title": "A"}])

        assert main(["push"]) == 0

        out = capsys.readouterr().out
        assert "1 created" in out
        assert wired["config"].board_id == BOARD_ID

    def test_push_json(self, wired, write_tasks, capsys):
        write_tasks([{"id": 1, "title": "A"}])

        assert main(["push", "--dry-run", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["direction"] == "push"
        assert data["dry_run"] is True
        assert data["counts"]["created"] == 1

    def test_push_errors_exit_nonzero(self, wired, write_tasks):
        write_tasks([{"title": "no id"}])
        assert main(["push"]) == 1

    def test_pull_flags_become_policy(self, wired, engine, monkeypatch, capsys):
        captured = {}

        def fake_pull(policy):
            captured["policy"] = policy
            from taskmaster_sync.sync.models import PullReport

            return PullReport(started_at="2026-10-01T00:00:00+00:00")

        monkeypatch.setattr(engine, "pull", fake_pull)
        code = main(
            ["pull", "--force", "--task", "42", "--no-remove-orphaned", "--dry-run"]
        )

        assert code == 0
        policy = captured["policy"]
        assert policy.force_overwrite is True
        assert policy.specific_local_id == "42"
        assert policy.remove_orphaned is False
        assert policy.recreate_missing_tasks is True
        assert policy.dry_run is True
        assert "Pull report (DRY RUN)" in capsys.readouterr().out

    def test_cli_group_override(self, wired, write_tasks):
        write_tasks([])
        main(["--group", "backlog", "push"])
        assert wired["config"].group_ids == ["backlog"]

    def test_missing_credentials(self, cli_env, monkeypatch, capsys):
        monkeypatch.delenv("MONDAY_API_KEY")
        assert main(["push"]) == 1
        assert "API key not found" in capsys.readouterr().err

    def test_sync_error_reported(self, wired, tasks_path, capsys):
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text("{broken", encoding="utf-8")

        assert main(["push"]) == 1
        assert "push failed" in capsys.readouterr().err


class TestRegenerate:
    @pytest.fixture
    def run_mock(self, monkeypatch):
        mock = Mock(return_value=Mock(returncode=0, stdout="ok", stderr=""))
        monkeypatch.setattr("taskmaster_sync.cli.subprocess.run", mock)
        return mock

    @pytest.fixture
    def board_item(self, fake_client, mapper, write_tasks):
        write_tasks([])
        return fake_client.add_task(
            mapper, {"id": 99, "title": "From the board", "status": "pending"}
        )

    def test_runs_after_pull_that_changed_tasks(self, wired, board_item, run_mock):
        assert main(["pull"]) == 0

        run_mock.assert_called_once()
        assert run_mock.call_args.args[0] == ["npx", "task-master", "generate"]

    def test_skipped_with_flag(self, wired, board_item, run_mock):
        assert main(["pull", "--no-regenerate"]) == 0
        run_mock.assert_not_called()

    def test_skipped_on_dry_run(self, wired, board_item, run_mock):
        assert main(["pull", "--dry-run"]) == 0
        run_mock.assert_not_called()

    def test_skipped_when_nothing_changed(self, wired, write_tasks, run_mock):
        write_tasks([])
        assert main(["pull"]) == 0
        run_mock.assert_not_called()

    def test_failure_reported_without_aborting(
        self, wired, board_item, run_mock, local_store, capsys
    ):
        run_mock.return_value = Mock(returncode=1, stdout="", stderr="boom")

        assert main(["pull"]) == 0

        assert "regenerating task files failed" in capsys.readouterr().err
        assert [t["id"] for t in local_store.read_all()] == [99]

    def test_missing_command_reported(self, wired, board_item, run_mock, capsys):
        run_mock.side_effect = FileNotFoundError("npx")

        assert main(["pull"]) == 0
        assert "regenerating task files failed" in capsys.readouterr().err


class TestLocalCommands:
    def test_status_without_credentials(self, cli_env, monkeypatch, capsys):
        monkeypatch.delenv("MONDAY_API_KEY")
        MappingStore(cli_env / ".taskmaster_sync_state.json").upsert("9001", "42")

        assert main(["status"]) == 0

        out = capsys.readouterr().out
        assert "Mappings: 1" in out
        assert "task 42 <-> item 9001" in out

    def test_prune(self, cli_env, capsys):
        store = MappingStore(cli_env / "state.json")
        store.upsert("9001", "42", synced_at=0.0)

        assert main(["--state-file", "state.json", "prune", "--max-age-days", "1"]) == 0

        assert "Pruned 1 mapping(s)" in capsys.readouterr().out
        assert MappingStore(cli_env / "state.json").list_all() == []

    def test_init_creates_config(self, cli_env, capsys):
        assert main(["init"]) == 0
        assert (cli_env / ".taskmaster_sync" / "config.yml").exists()
        assert "config.yml" in capsys.readouterr().out

    def test_config_masks_key(self, cli_env, capsys):
        assert main(["config"]) == 0
        out = capsys.readouterr().out
        assert "API key: secr...-123" in out
        assert f"Board id: {BOARD_ID}" in out
        assert "secret-api-key-123" not in out

    def test_bad_config_file(self, cli_env, capsys):
        (cli_env / "bad.yml").write_text("monday: [unclosed", encoding="utf-8")
        assert main(["--config", "bad.yml", "status"]) == 1
        assert "Configuration error" in capsys.readouterr().err
