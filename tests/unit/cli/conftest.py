"""CLI fixtures: an isolated global config and an initialized workspace."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from docdesk.cli.main import app


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch, make_embedder):
    """Keep the user's ~/.docdesk, DOCDESK_* variables and model downloads out of CLI tests."""
    monkeypatch.setattr("docdesk.config._GLOBAL_CONFIG_PATH", tmp_path / "global" / "config.yaml")
    for var in (
        "DOCDESK_GENERATION_MODEL",
        "DOCDESK_EMBEDDING_PROVIDER",
        "DOCDESK_EMBEDDING_MODEL",
        "DOCDESK_SEARCH_PROVIDER",
        "DOCDESK_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(
        "docdesk.services.make_embedding_provider",
        lambda cfg, num_retries=3: make_embedder(cfg.model, cfg.dimensions),
    )
    with patch("docdesk.cli.workspace.setup_logging"):
        yield


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(tmp_path, runner) -> Path:
    """A workspace created by ``docdesk init``."""
    ws = tmp_path / "ws"
    result = runner.invoke(app, ["init", str(ws)])
    assert result.exit_code == 0, result.output
    return ws
