"""Tests for docdesk ask / chat with a scripted model."""

from __future__ import annotations

from contextlib import closing
from unittest.mock import patch

import pytest

from docdesk.cli.main import app
from docdesk.db.connection import Database
from docdesk.db.repository import Repository
from docdesk.errors import LLMError

DONE = {"isComplete": True, "completedTasks": ["answered"]}


@pytest.fixture
def scripted(fake_llm):
    """Every workspace opened by the CLI talks to ``fake_llm``."""
    with (
        patch("docdesk.services.LiteLLMClient", return_value=fake_llm),
        patch("docdesk.cli.workspace.validate_api_key"),
    ):
        yield fake_llm


@pytest.fixture
def with_doc(runner, workspace, tmp_path):
    doc = tmp_path / "plan.md"
    doc.write_text("# Plan\n\n## Budget\nTen thousand.\n", encoding="utf-8")
    runner.invoke(app, ["ingest", str(doc), "-p", "Research", "-w", str(workspace)])
    return workspace


def _file_content(ws, name):
    with closing(Database(ws / ".docdesk.db").connect()) as conn:
        repo = Repository(conn)
        project = repo.get_project_by_name("Research")
        return repo.get_file_by_name(project.id, name).content


def test_ask_answers(runner, with_doc, scripted):
    scripted.queue(
        {"summary": "Search", "steps": [{"tool": "search", "params": {"query": "budget"}}]},
        DONE,
        "The budget is ten thousand.",
    )
    result = runner.invoke(app, ["ask", "what is the budget?", "-p", "Research", "-w", str(with_doc)])
    assert result.exit_code == 0, result.output
    assert "ten thousand" in result.output
    assert "search" in result.output


def test_ask_requires_api_key(runner, workspace):
    with patch("docdesk.cli.workspace.validate_api_key", side_effect=EnvironmentError("no key")):
        result = runner.invoke(app, ["ask", "hi", "-w", str(workspace)])
    assert result.exit_code == 1
    assert "No API key" in result.output


def test_ask_applies_confirmed_update(runner, with_doc, scripted):
    scripted.queue(
        {
            "summary": "Edit the budget",
            "complexity": "high",
            "steps": [
                {
                    "tool": "updateFile",
                    "params": {"file": "plan.md", "section": "Budget", "newContent": "Twelve thousand."},
                }
            ],
        },
        DONE,
        "Prepared the change.",
    )
    result = runner.invoke(
        app, ["ask", "raise the budget", "-p", "Research", "-w", str(with_doc), "--yes"]
    )
    assert result.exit_code == 0, result.output
    assert "Updated plan.md" in result.output
    assert "Twelve thousand." in _file_content(with_doc, "plan.md")


def test_ask_update_discarded_without_confirmation(runner, with_doc, scripted):
    scripted.queue(
        {
            "summary": "Edit",
            "complexity": "high",
            "steps": [
                {"tool": "updateFile", "params": {"file": "plan.md", "section": "Budget", "newContent": "Zero."}}
            ],
        },
        DONE,
        "Prepared.",
    )
    result = runner.invoke(
        app, ["ask", "zero it", "-p", "Research", "-w", str(with_doc)], input="y\nn\n"
    )
    assert result.exit_code == 0, result.output
    assert "Discarded" in result.output
    assert "Ten thousand." in _file_content(with_doc, "plan.md")


def test_ask_plan_rejected(runner, with_doc, scripted):
    scripted.queue(
        {
            "summary": "Delete",
            "complexity": "high",
            "steps": [{"tool": "deleteFile", "params": {"file": "plan.md"}}],
        }
    )
    result = runner.invoke(app, ["ask", "delete plan", "-p", "Research", "-w", str(with_doc)], input="n\n")
    assert result.exit_code == 0
    assert "Plan rejected" in result.output
    assert _file_content(with_doc, "plan.md") is not None


def test_ask_failure_exits_nonzero(runner, workspace, scripted):
    scripted.queue(LLMError("quota exceeded"))
    result = runner.invoke(app, ["ask", "anything", "-w", str(workspace)])
    assert result.exit_code == 1
    assert "quota exceeded" in result.output


def test_chat_direct_turn(runner, with_doc, scripted):
    scripted.queue("Hello from your documents.")
    result = runner.invoke(
        app, ["chat", "-p", "Research", "-w", str(with_doc)], input="hi\n/exit\n"
    )
    assert result.exit_code == 0, result.output
    assert "Hello" in result.output
    assert "documents." in result.output


def test_chat_agent_carries_clarification(runner, with_doc, scripted):
    scripted.queue(
        {"needsClarification": True, "clarificationQuestion": "Which file?", "steps": []},
        {"summary": "Read", "steps": [{"tool": "read", "params": {"file": "plan.md"}}]},
        DONE,
        "Read it.",
    )
    result = runner.invoke(
        app,
        ["chat", "--agent", "-p", "Research", "-w", str(with_doc)],
        input="summarize the file\nthe plan\n",
    )
    assert result.exit_code == 0, result.output
    assert "Which file?" in result.output
    second_plan_prompt = "\n".join(m["content"] for m in scripted.calls[1])
    assert "Original request: summarize the file" in second_plan_prompt
    assert "User answered: the plan" in second_plan_prompt
