"""Tests for AppServices wiring."""

from __future__ import annotations

from unittest.mock import patch

from docdesk.config import DocdeskConfig
from docdesk.services import AppServices


def _open(tmp_path, config, fake_llm, embedder, fake_search):
    return AppServices.open(
        tmp_path, config=config, llm=fake_llm, embedder=embedder, search_provider=fake_search
    )


def test_open_creates_database(tmp_path, config, fake_llm, embedder, fake_search):
    with _open(tmp_path, config, fake_llm, embedder, fake_search) as services:
        assert services.sync is None
        assert services.projects.mirror is None
        assert services.embeddings_invalidated is False
    assert (tmp_path / ".docdesk.db").exists()


def test_open_defaults_build_litellm_and_search(tmp_path, config, embedder, fake_search):
    with (
        patch("docdesk.services.LiteLLMClient") as client_cls,
        patch("docdesk.services.make_search_provider", return_value=fake_search) as make_search,
    ):
        services = AppServices.open(tmp_path, config=config, embedder=embedder)
    services.close()

    client_cls.assert_called_once_with(
        config.generation.model,
        max_tokens=config.generation.max_tokens,
        temperature=config.generation.temperature,
        num_retries=config.generation.num_retries,
    )
    make_search.assert_called_once_with(config.web_search)


def test_sync_wiring(tmp_path, fake_llm, embedder, fake_search):
    config = DocdeskConfig()
    config.sync.root = "mirror"
    with _open(tmp_path, config, fake_llm, embedder, fake_search) as services:
        assert services.sync is not None
        assert services.sync.fs.root == tmp_path.resolve() / "mirror"
        assert services.projects.mirror is None

    config.sync.enabled = True
    with _open(tmp_path, config, fake_llm, embedder, fake_search) as services:
        assert services.projects.mirror is services.sync


async def test_embedding_model_change_marks_files_pending(
    tmp_path, config, fake_llm, embedder, fake_search, make_embedder
):
    with _open(tmp_path, config, fake_llm, embedder, fake_search) as services:
        project, _ = services.projects.get_or_create_project("Research")
        file = await services.projects.add_document(project.id, "a.md", "# A\nbody")

    other = make_embedder("local/hashing-128", 128)
    with _open(tmp_path, config, fake_llm, other, fake_search) as services:
        assert services.embeddings_invalidated is True
        assert services.projects.get_file(file.id).status == "pending"


def test_tool_context_scope(services, project):
    ctx = services.tool_context(project.id)
    assert ctx.project_id == project.id
    assert ctx.projects is services.projects
    assert services.tool_context().project_id is None


def test_agent_flow_session_key(services, project):
    assert services.agent_flow(project.id).session_key == project.id
    assert services.agent_flow().session_key == "global"
    assert services.agent_flow(project.id, session_key="tab-2").session_key == "tab-2"
