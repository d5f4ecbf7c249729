import logging

import orjson
import pytest
from click.testing import CliRunner

import Tasklets.cli as cli_module
from Tasklets.cli import EXIT_CANCELLED, EXIT_INPUT_UNREADABLE, EXIT_SEED_MISSING, cli
from Tasklets.importer_context import CancelToken


@pytest.fixture
def runner():
    yield CliRunner(env={"LOGGING_CONSOLE": "NONE", "LOGGING_FILE": "NONE"})
    logging.basicConfig(handlers=[logging.NullHandler()], force=True)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.sqlite3'}"


def _write_export(path, issue, jsonl):
    path.write_text(
        "".join(
            jsonl(
                issue("bd-e1", "epic"),
                issue("bd-f1", "feature", parent="bd-e1"),
                issue("bd-t1", "task", parent="bd-f1"),
                "not json",
            )
        ),
        encoding="utf-8",
    )


def test_init_seed_import_roundtrip(runner, db_url, tmp_path, issue, jsonl):
    source = tmp_path / "issues.jsonl"
    _write_export(source, issue, jsonl)

    res = runner.invoke(cli, ["--database-url", db_url, "init-db"])
    assert res.exit_code == 0, res.output
    res = runner.invoke(cli, ["--database-url", db_url, "seed"])
    assert res.exit_code == 0, res.output
    assert "Seed ready" in res.output

    res = runner.invoke(cli, ["--database-url", db_url, "import-beads", str(source)])
    assert res.exit_code == 0, res.output
    assert "Epics     created=1 reused=0 skipped=0" in res.stdout
    assert "Malformed lines: 1" in res.stdout

    res = runner.invoke(cli, ["--database-url", db_url, "import-beads", str(source), "--json"])
    assert res.exit_code == 0, res.output
    data = orjson.loads(res.stdout)
    assert data["kinds"]["task"] == {
        "created": 0,
        "reused": 1,
        "skipped": 0,
        "skip_reasons": {},
    }
    assert data["drift"] is False


def test_missing_seed_exits_1(runner, db_url, tmp_path, issue, jsonl):
    source = tmp_path / "issues.jsonl"
    _write_export(source, issue, jsonl)
    assert runner.invoke(cli, ["--database-url", db_url, "init-db"]).exit_code == 0

    res = runner.invoke(cli, ["--database-url", db_url, "import-beads", str(source)])
    assert res.exit_code == EXIT_SEED_MISSING
    assert "not found" in res.output


def test_unreadable_source_exits_2(runner, db_url, tmp_path):
    res = runner.invoke(
        cli, ["--database-url", db_url, "import-beads", str(tmp_path / "missing.jsonl")]
    )
    assert res.exit_code == EXIT_INPUT_UNREADABLE
    assert "cannot read issue source" in res.output


def test_source_handle_closed_when_seed_missing(
    runner, db_url, tmp_path, issue, jsonl, monkeypatch
):
    source = tmp_path / "issues.jsonl"
    _write_export(source, issue, jsonl)
    real_open = cli_module.open_issue_source
    opened = []

    def tracking_open(path):
        fh = real_open(path)
        opened.append(fh)
        return fh

    monkeypatch.setattr(cli_module, "open_issue_source", tracking_open)
    assert runner.invoke(cli, ["--database-url", db_url, "init-db"]).exit_code == 0

    res = runner.invoke(cli, ["--database-url", db_url, "import-beads", str(source)])
    assert res.exit_code == EXIT_SEED_MISSING
    assert len(opened) == 1
    assert opened[0].closed


class _CancelledToken(CancelToken):
    def __init__(self):
        super().__init__()
        self.cancel()


def test_cancelled_import_exits_130(runner, db_url, tmp_path, issue, jsonl, monkeypatch):
    source = tmp_path / "issues.jsonl"
    _write_export(source, issue, jsonl)
    assert runner.invoke(cli, ["--database-url", db_url, "init-db"]).exit_code == 0
    assert runner.invoke(cli, ["--database-url", db_url, "seed"]).exit_code == 0

    monkeypatch.setattr(cli_module, "CancelToken", _CancelledToken)
    res = runner.invoke(cli, ["--database-url", db_url, "import-beads", str(source)])
    assert res.exit_code == EXIT_CANCELLED
    assert "CANCELLED" in res.stdout
    assert "Epics     created=0" in res.stdout
