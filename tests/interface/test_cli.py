"""Tests for CLI commands against a file-backed store and the sample card set."""

import json
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from flashsync.interface.cli import app

runner = CliRunner()

SAMPLE = Path(__file__).parents[2] / "data" / "sample-basics.json"


@pytest.fixture
def cli_env(tmp_path, mock_home, monkeypatch):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    shutil.copy(SAMPLE, data_dir / "sample-basics.json")
    store_path = tmp_path / "store.json"

    monkeypatch.setenv("FLASHSYNC_STORE_BACKEND", "file")
    monkeypatch.setenv("FLASHSYNC_STORE_PATH", str(store_path))
    monkeypatch.setenv("FLASHSYNC_DATA_DIR", str(data_dir))
    monkeypatch.setenv("FLASHSYNC_BACKOFF_BASE_DELAY", "0")
    return store_path


def _review_all(n=3, rating="g"):
    return runner.invoke(app, ["review", "sample-basics"], input=f"\n{rating}\n" * n)


# --- Help ---


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "review" in result.stdout
    assert "migrate" in result.stdout
    assert "config" in result.stdout


# --- Review ---


def test_review_session(cli_env):
    result = _review_all()

    assert result.exit_code == 0, result.output
    assert "Reviewing 3 cards from sample-basics" in result.output
    assert "-> hello" in result.output
    assert "Session complete: 3 reviewed" in result.output
    assert "Progress: 3/3 (100%)" in result.output

    docs = json.loads(cli_env.read_text())
    cards = docs["accounts/local/cardSets/sample-basics"]["cards"]
    assert [c["totalReviews"] for c in cards] == [1, 1, 1]
    assert docs["accounts/local"]["cardSetsProgress"]["sample-basics"]["reviewedCards"] == 3


def test_review_again_then_good(cli_env):
    # Skip the first card, then grade all three
    result = runner.invoke(
        app, ["review", "sample-basics"], input="\na\n" + "\ng\n" * 3
    )
    assert result.exit_code == 0, result.output
    assert "Session complete: 3 reviewed (easy 3, hard 0, again 1)" in result.output


def test_review_nothing_due_after_session(cli_env):
    _review_all()
    result = _review_all()
    assert result.exit_code == 0
    assert "No cards due. Nice work!" in result.output


def test_review_quit_early(cli_env):
    result = runner.invoke(app, ["review", "sample-basics"], input="\ne\n\nq\n")
    assert result.exit_code == 0, result.output
    assert "Session complete: 1 reviewed" in result.output
    assert "Progress: 1/3 (33%)" in result.output


def test_review_rejects_unknown_rating(cli_env):
    result = runner.invoke(app, ["review", "sample-basics"], input="\nx\ng\n" + "\ng\n" * 2)
    assert result.exit_code == 0, result.output
    assert "Session complete: 3 reviewed" in result.output


def test_review_invalid_session_size(cli_env):
    result = runner.invoke(app, ["review", "sample-basics", "--size", "15"])
    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


def test_review_missing_card_set(cli_env):
    result = runner.invoke(app, ["review", "nope"])
    assert result.exit_code == 1
    assert "Error [CARD_SET_NOT_FOUND]" in result.output


# --- Due / progress / reset ---


def test_due(cli_env):
    result = runner.invoke(app, ["due", "sample-basics", "--limit", "2"])
    assert result.exit_code == 0, result.output
    assert "3/3 cards due in sample-basics" in result.output
    assert "basics-1" in result.output
    assert "basics-3" not in result.output

    _review_all()
    result = runner.invoke(app, ["due", "sample-basics"])
    assert "0/3 cards due" in result.output


def test_progress_empty(cli_env):
    result = runner.invoke(app, ["progress"])
    assert result.exit_code == 0
    assert "No progress recorded yet." in result.output


def test_progress_json(cli_env):
    _review_all()
    result = runner.invoke(app, ["progress", "--json"])
    assert result.exit_code == 0, result.output

    data = json.loads(result.stdout)
    assert data["sample-basics"]["reviewed_cards"] == 3
    assert data["sample-basics"]["progress_percentage"] == 100


def test_progress_other_account(cli_env):
    _review_all()
    result = runner.invoke(app, ["--account", "someone-else", "progress", "sample-basics"])
    assert result.exit_code == 0
    assert "No progress recorded yet." in result.output


def test_reset_force(cli_env):
    _review_all()
    result = runner.invoke(app, ["reset", "sample-basics", "--force"])
    assert result.exit_code == 0, result.output
    assert "Progress for sample-basics reset." in result.output

    result = runner.invoke(app, ["progress"])
    assert "0/3" in result.output
    docs = json.loads(cli_env.read_text())
    assert "accounts/local/cardSets/sample-basics" not in docs


def test_reset_requires_confirmation(cli_env):
    result = runner.invoke(app, ["reset", "sample-basics"], input="n\n")
    assert result.exit_code == 1
    assert not cli_env.exists()


# --- Seed import ---


def test_import_csv_then_due(cli_env, tmp_path):
    src = tmp_path / "animals.csv"
    src.write_text(
        "ID,front/title,back/title,back/description\n"
        "a-1,猫,cat,meow\n"
        "a-2,狗,dog,\n"
        ",鸟,bird,\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["import-csv", str(src)])
    assert result.exit_code == 0, result.output
    assert "Rows: 3, converted: 2, warnings: 2, errors: 1" in result.output
    assert (tmp_path / "data" / "animals.json").exists()

    result = runner.invoke(app, ["due", "animals"])
    assert "2/2 cards due in animals" in result.output


def test_import_csv_missing_columns(cli_env, tmp_path):
    src = tmp_path / "bad.csv"
    src.write_text("ID,front/title\na-1,猫\n", encoding="utf-8")
    dest = tmp_path / "bad.json"

    result = runner.invoke(app, ["import-csv", str(src), str(dest)])
    assert result.exit_code == 1
    assert "Error [CARD_SET_INVALID_DATA]" in result.output
    assert not dest.exists()


# --- Sync / migrate ---


def test_sync(cli_env):
    result = runner.invoke(app, ["sync"])
    assert result.exit_code == 0, result.output
    assert "Synced" in result.output


def test_migrate_legacy_documents(cli_env):
    cli_env.write_text(
        json.dumps(
            {
                "accounts/local/cardSetProgress/hsk1": {
                    "cardSetId": "hsk1",
                    "totalCards": 4,
                    "reviewedCards": 2,
                    "progressPercentage": 50,
                }
            }
        )
    )

    result = runner.invoke(app, ["migrate", "--check"])
    assert "Migration needed: yes" in result.output

    result = runner.invoke(app, ["migrate"])
    assert result.exit_code == 0, result.output
    assert "Migrated 1 card sets (2 reads, 2 writes)." in result.output

    result = runner.invoke(app, ["migrate"])
    assert "Already migrated; nothing to do." in result.output

    result = runner.invoke(app, ["progress", "hsk1"])
    assert "2/4" in result.output


# --- Serve / config ---


@patch("uvicorn.run")
def test_serve(mock_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    mock_run.assert_called_once_with(
        "flashsync.server:app", host="127.0.0.1", port=9000, reload=False
    )


def test_config_show_masks_token(cli_env, monkeypatch):
    monkeypatch.setenv("FLASHSYNC_STORE_TOKEN", "s3cret")
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["store_token"] == "***"
    assert data["store_backend"] == "file"
    assert data["store_path"] == str(cli_env.resolve())
