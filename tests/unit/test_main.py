"""Tests for the CLI entry point."""

import json
from pathlib import Path

import pytest
import yaml

from main import dry_run, main, parse_args, run
from src.core.config import Settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(tmp_path: Path) -> Path:
    data = {
        "database": {"path": str(tmp_path / "engine.db")},
        "engine": {
            "connect_delay_s": 0,
            "processing_delay_s": 0,
            "poll_interval_s": 0.01,
        },
        "sources": {
            "linkedin": {"kind": "simulated", "options": {"results": 3}},
            "indeed": {"kind": "simulated", "options": {"results": 3}},
        },
        "searches": [
            {
                "id": "demo",
                "job_title": "Python Developer",
                "sources": ["linkedin", "indeed"],
                "delay": {"min_s": 0, "max_s": 0, "respect_rate_limit": False},
            },
            {
                "id": "paused",
                "job_title": "Go Developer",
                "sources": ["indeed"],
                "is_active": False,
            },
        ],
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------
class TestParseArgs:
    def test_defaults_to_run(self) -> None:
        args = parse_args([])
        assert args.command == "run"
        assert args.config == "config/settings.yaml"
        assert args.search_ids is None
        assert args.timeout is None
        assert args.dry_run is False

    def test_top_level_flags(self) -> None:
        args = parse_args(["--config", "x.yaml", "--dry-run", "-v"])
        assert args.command == "run"
        assert args.config == "x.yaml"
        assert args.dry_run is True
        assert args.verbose is True

    def test_run_repeatable_search_id(self) -> None:
        args = parse_args([
            "run", "--search-id", "a", "--search-id", "b", "--timeout", "30",
        ])
        assert args.search_ids == ["a", "b"]
        assert args.timeout == 30.0

    def test_logs_requires_execution_id(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["logs"])

    def test_logs_severity_choices(self) -> None:
        args = parse_args(["logs", "--execution-id", "e1", "--severity", "error"])
        assert args.severity == "error"
        with pytest.raises(SystemExit):
            parse_args(["logs", "--execution-id", "e1", "--severity", "fatal"])

    def test_results_flags(self) -> None:
        args = parse_args([
            "results", "--search-id", "demo", "--min-score", "50",
            "--include-duplicates", "--json",
        ])
        assert args.command == "results"
        assert args.min_score == 50.0
        assert args.include_duplicates is True
        assert args.json is True

    def test_stats_range(self) -> None:
        assert parse_args(["stats"]).time_range == "week"
        assert parse_args(["stats", "--range", "day"]).time_range == "day"
        with pytest.raises(SystemExit):
            parse_args(["stats", "--range", "year"])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
class TestDryRun:
    def test_lists_searches_and_sources(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        settings = Settings.from_yaml(_config(tmp_path))
        dry_run(settings, None)
        out = capsys.readouterr().out
        assert "[DRY RUN] 2 searches selected" in out
        assert "'demo' (active)" in out
        assert "'paused' (inactive)" in out
        assert "Source linkedin: simulated adapter" in out
        assert not (tmp_path / "engine.db").exists()

    def test_selected_only(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        dry_run(Settings.from_yaml(_config(tmp_path)), ["paused"])
        out = capsys.readouterr().out
        assert "[DRY RUN] 1 searches selected" in out
        assert "'demo'" not in out


class TestRun:
    async def test_runs_active_searches(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        settings = Settings.from_yaml(_config(tmp_path))
        exit_code = await run(settings, None, timeout=None, poll_interval=None)

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "Execution summary:" in out
        assert "'demo' [completed] 6 results" in out
        assert "paused" not in out

    async def test_nothing_started(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        settings = Settings.from_yaml(_config(tmp_path))
        settings = settings.model_copy(update={"searches": []})
        assert await run(settings, None, timeout=None, poll_interval=0.01) == 1
        assert "No searches started." in capsys.readouterr().out


class TestMain:
    def test_missing_config(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_path / "missing.yaml")])
        assert exc.value.code == 1
        assert "Error loading config" in capsys.readouterr().err

    def test_unknown_search_exits(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["run", "--config", str(_config(tmp_path)), "--search-id", "nope"])
        assert exc.value.code == 1
        assert "Search 'nope' not found" in capsys.readouterr().err

    def test_run_then_inspect(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        config = str(_config(tmp_path))
        with pytest.raises(SystemExit) as exc:
            main(["run", "--config", config, "--search-id", "demo"])
        assert exc.value.code == 0
        capsys.readouterr()

        main(["history", "--config", config])
        history = capsys.readouterr().out
        assert "demo" in history
        assert "completed" in history
        execution_id = history.split()[2]

        main(["logs", "--config", config, "--execution-id", execution_id])
        logs = capsys.readouterr().out
        assert "Search 'demo' started" in logs
        assert "Search completed successfully" in logs

        main(["results", "--config", config, "--search-id", "demo", "--json"])
        records = json.loads(capsys.readouterr().out)
        assert len(records) == 6
        assert {r["source"] for r in records} == {"linkedin", "indeed"}

        main(["stats", "--config", config, "--range", "day", "--json"])
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_executions"] == 1
        assert stats["completed_executions"] == 1
        assert stats["total_results_found"] == 6
        assert {s["source"] for s in stats["top_sources"]} == {"linkedin", "indeed"}
        assert sum(stats["hourly_distribution"]) == 1

        main(["stats", "--config", config])
        summary = capsys.readouterr().out
        assert "Total: 1" in summary
        assert "Top sources:" in summary

    def test_empty_history(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["history", "--config", str(_config(tmp_path))])
        assert "No executions recorded." in capsys.readouterr().out

    def test_logs_for_unknown_execution(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        main(["logs", "--config", str(_config(tmp_path)), "--execution-id", "nope"])
        assert "No activity recorded for execution nope." in capsys.readouterr().out

    def test_empty_stats(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["stats", "--config", str(_config(tmp_path)), "--range", "month"])
        out = capsys.readouterr().out
        assert "(month)" in out
        assert "Total: 0" in out
        assert "Top sources" not in out
