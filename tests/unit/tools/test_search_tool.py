"""Tests for the search and summarize tools."""

from __future__ import annotations

from docdesk.tools.search import summarize_text


async def _run(services, tool, params, project_id=None):
    return await services.registry.execute(tool, params, services.tool_context(project_id))


async def test_search_ranks_relevant_file_first(services, project):
    await services.projects.add_document(project.id, "db.md", "# Storage\nsqlite vector search tables")
    await services.projects.add_document(project.id, "food.md", "# Food\nbread butter jam")
    result = await _run(services, "search", {"query": "sqlite vector search"}, project.id)
    assert result.success
    assert result.metadata["top_file"] == "db.md"
    assert result.data.startswith("[Result 1] (Source: db.md, Score:")


async def test_search_global_scope_prefixes_project(services, project):
    await services.projects.add_document(project.id, "db.md", "sqlite vector search")
    result = await _run(services, "search", {"query": "sqlite", "limit": 1})
    assert "(Source: Research/db.md" in result.data
    assert result.metadata["result_count"] == 1


async def test_search_scoped_to_other_project(services, project):
    await services.projects.add_document(project.id, "db.md", "sqlite vector search")
    services.projects.get_or_create_project("Empty")
    result = await _run(services, "search", {"query": "sqlite", "project": "Empty"}, project.id)
    assert result.data == "No relevant results found for your query."
    assert result.metadata["result_count"] == 0


async def test_global_search_leaves_out_unrelated_projects(services):
    fruit, _ = services.projects.get_or_create_project("A")
    zoo, _ = services.projects.get_or_create_project("B")
    await services.projects.add_document(fruit.id, "fruit.md", "apples oranges pears")
    await services.projects.add_document(zoo.id, "zoo.md", "zebra giraffe lion")

    result = await _run(services, "search", {"query": "zebra"})
    assert result.metadata["result_count"] == 1
    assert "(Source: B/zoo.md" in result.data
    assert "fruit.md" not in result.data

    scoped = await _run(services, "search", {"query": "zebra"}, fruit.id)
    assert scoped.metadata["result_count"] == 0


async def test_summarize_short_document_directly(services, project, fake_llm):
    await services.projects.add_document(project.id, "report.md", "Revenue grew 10%.")
    fake_llm.queue("Revenue grew.")
    result = await _run(services, "summarize", {"file": "report"}, project.id)
    assert result.success
    assert result.data == "Summary of report.md:\n\nRevenue grew."
    assert result.metadata["method"] == "direct"
    assert result.metadata["llm_calls"] == 1


async def test_summarize_text_hierarchical(fake_llm):
    fake_llm.default = "short"
    text = "This is one sentence of a long document. " * 20
    summary, method, calls = await summarize_text(fake_llm, text, "long.md", direct_tokens=50)
    assert method == "hierarchical"
    assert summary == "short"
    assert calls == len(fake_llm.calls)
    assert calls > 2
    assert "Combine them into one concise summary" in fake_llm.last_prompt


async def test_summarize_detailed_length(services, project, fake_llm):
    await services.projects.add_document(project.id, "r.md", "text")
    await _run(services, "summarize", {"file": "r.md", "length": "detailed"}, project.id)
    assert "detailed summary" in fake_llm.last_prompt
