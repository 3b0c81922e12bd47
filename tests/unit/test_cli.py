import json
from pathlib import Path
from unittest.mock import patch

import pytest

from cf import run as cli
from contactfinder.pipeline.browser import BrowserLaunchError, ProfileBusyError
from contactfinder.schemas import ContactRecord, PipelineResult, RankedLink, SearchResponse


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("OPENAI_API_KEY", "PROXYAPI_API_KEY", "CF_CONCURRENCY", "CF_OPS_JSON"):
        monkeypatch.delenv(name, raising=False)


def _response():
    return SearchResponse(
        query="studio",
        total=2,
        results=[
            PipelineResult(
                link=RankedLink(url="https://a.ru/"),
                page="https://a.ru/",
                contacts=ContactRecord(phones=["+79991234567"]),
            ),
            PipelineResult(link=RankedLink(url="https://b.ru/"), page="https://b.ru/", error=True),
        ],
        logs=["line"],
    )


def test_dry_run_validates_and_exits_zero(tmp_path, capsys):
    code = cli.main(["--query", "studio", "--out", str(tmp_path), "--dry-run"])
    assert code == 0
    assert "Dry-run validation passed" in capsys.readouterr().out


@pytest.mark.parametrize("argv", [["--query", "  "], ["--query", "x", "--top", "16"], ["--query", "x", "--pages", "0"], ["--query", "x", "--concurrency", "0"]])
def test_invalid_input_exits_two(tmp_path, argv):
    assert cli.main(argv + ["--out", str(tmp_path), "--dry-run"]) == 2


def test_missing_config_exits_one(tmp_path):
    assert cli.main(["--query", "x", "--config", str(tmp_path / "nope.yaml"), "--out", str(tmp_path)]) == 1


def test_run_writes_response_json(tmp_path, capsys):
    async def fake_run_search(settings, request, *, history, ops_logger):
        assert history is None
        assert settings.pipeline.concurrency == 2
        return _response()

    with patch.object(cli, "run_search", fake_run_search):
        code = cli.main(["--query", "studio", "--out", str(tmp_path), "--db", "none", "--concurrency", "2", "--quiet"])
    assert code == 0
    files = list(Path(tmp_path).glob("search_*.json"))
    assert len(files) == 1
    data = json.loads(files[0].read_text(encoding="utf-8"))
    assert data["total"] == 2
    assert data["results"][0]["contacts"]["phones"] == ["+79991234567"]
    assert "error" not in data["results"][0]
    assert data["results"][1]["error"] is True
    out = capsys.readouterr().out
    assert "With contacts: 1" in out
    assert "Errors: 1" in out


@pytest.mark.parametrize("exc", [ProfileBusyError("profile busy"), BrowserLaunchError("no chromium")])
def test_browser_failure_exits_three(tmp_path, exc):
    async def failing_run_search(settings, request, *, history, ops_logger):
        raise exc

    with patch.object(cli, "run_search", failing_run_search):
        assert cli.main(["--query", "studio", "--out", str(tmp_path), "--db", "none"]) == 3


def test_history_store_created_from_db_path(tmp_path):
    seen = {}

    async def fake_run_search(settings, request, *, history, ops_logger):
        seen["history"] = history
        seen["ops"] = ops_logger
        return _response()

    db = tmp_path / "h.sqlite"
    with patch.object(cli, "run_search", fake_run_search):
        code = cli.main(["--query", "studio", "--out", str(tmp_path), "--db-path", str(db), "--ops-log", str(tmp_path / "ops.log")])
    assert code == 0
    assert seen["history"].db_path == db
    assert seen["ops"].file_path == tmp_path / "ops.log"
