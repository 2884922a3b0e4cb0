"""Tests for the CLI commands."""

import json
import subprocess
import sys
from pathlib import Path

import pytest

from regmapper.__main__ import main
from tests.helpers import SAMPLE_TEXT, write_document

PROJECT_ROOT = Path(__file__).parent.parent


def run_cli(*args):
    return subprocess.run(
        [sys.executable, "-m", "regmapper", *args],
        capture_output=True,
        text=True,
        cwd=PROJECT_ROOT,
    )


class TestCLIHelp:
    """Argument parsing through ``python -m regmapper``."""

    def test_help_shows_subcommands(self):
        result = run_cli("--help")

        assert result.returncode == 0
        assert "Regmapper CLI" in result.stdout
        for cmd in ("upload", "parse", "tag", "map-controls", "semantic-map", "results", "run"):
            assert cmd in result.stdout

    def test_results_help(self):
        result = run_cli("results", "--help")

        assert result.returncode == 0
        assert "--threshold" in result.stdout
        assert "--group-tags" in result.stdout
        assert "--db-url" in result.stdout

    def test_requires_subcommand(self):
        result = run_cli()

        assert result.returncode != 0
        assert "required" in result.stderr.lower() or "choose from" in result.stderr.lower()

    def test_upload_requires_file(self):
        result = run_cli("upload")

        assert result.returncode != 0
        assert "--file" in result.stderr


class TestCLIFlow:
    """In-process runs against a temporary SQLite file."""

    @pytest.fixture
    def cli(self, tmp_path, monkeypatch, capsys):
        for name in ("REGMAPPER_CONFIG", "REGMAPPER_DB_URL", "REGMAPPER_SEED", "REGMAPPER_STAGE_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("REGMAPPER_EMBEDDING_PROVIDER", "hashing")
        db_url = f"sqlite:///{tmp_path / 'cli.db'}"

        def invoke(*args):
            code = main([*args, "--db-url", db_url])
            out = capsys.readouterr().out
            return code, json.loads(out)

        return invoke

    def test_init_db(self, cli):
        code, payload = cli("init-db")

        assert code == 0
        assert payload == {"ok": True, "seeded": {"tags": 5, "controls": 9}}

        _, again = cli("init-db")
        assert again["seeded"] == {"tags": 0, "controls": 0}

    def test_full_run(self, cli, tmp_path):
        path = write_document(tmp_path, SAMPLE_TEXT)

        code, upload = cli("upload", "--file", str(path), "--name", "Sample")
        assert code == 0
        assert upload["ok"] is True
        reg_id = str(upload["regulation_id"])

        code, outcomes = cli("run", reg_id)
        assert code == 0
        assert [o["stage"] for o in outcomes] == ["parse", "tag", "map-controls", "semantic-map"]
        assert [o["count"] for o in outcomes] == [2, 2, 2, 2]

        code, status = cli("status", reg_id)
        assert status == {"ok": True, "regulation_id": int(reg_id), "phase": "rescored"}

        code, results = cli("results", reg_id, "--threshold", "0")
        assert code == 0
        assert results["count"] == 2
        assert {row["source"] for row in results["rows"]} == {"hybrid"}
        assert {row["control_code"] for row in results["rows"]} == {"A.9.1.1", "A.9.2.3"}

        code, grouped = cli("results", reg_id, "--threshold", "0", "--group-tags")
        assert grouped["rows"][0]["tag_names"] == ["Access control"]

    def test_stage_by_stage(self, cli, tmp_path):
        _, upload = cli("upload", "--file", str(write_document(tmp_path, SAMPLE_TEXT)))
        reg_id = str(upload["regulation_id"])

        assert cli("parse", reg_id)[1]["count"] == 2

        code, again = cli("parse", reg_id)
        assert code == 1
        assert again["error"] == "RegulationAlreadyParsed"

        assert cli("parse", reg_id, "--replace")[1]["count"] == 2
        assert cli("tag", reg_id)[1]["count"] == 2
        assert cli("map-controls", reg_id)[1]["count"] == 2
        assert cli("semantic-map", reg_id, "--timeout", "30")[1]["count"] == 2

        code, payload = cli("delete", reg_id)
        assert code == 0
        assert payload["ok"] is True

    def test_out_of_order_stage_fails(self, cli, tmp_path):
        _, upload = cli("upload", "--file", str(write_document(tmp_path, SAMPLE_TEXT)))
        reg_id = str(upload["regulation_id"])

        code, payload = cli("semantic-map", reg_id)

        assert code == 1
        assert payload["ok"] is False
        assert payload["error_kind"] == "PreconditionNotMet"
        assert payload["error"] == "NoKeywordMappings"

    def test_unknown_regulation(self, cli):
        code, payload = cli("tag", "99")
        assert code == 1
        assert payload["error_kind"] == "NotFound"

        code, status = cli("status", "99")
        assert code == 1
        assert status["kind"] == "NotFound"

    def test_upload_missing_file(self, cli, tmp_path):
        code, payload = cli("upload", "--file", str(tmp_path / "missing.txt"))

        assert code == 1
        assert payload["error_kind"] == "NotFound"
