"""Chat sessions and the direct tool-call chat path.

One turn of ``send_message``:
1. store the user message;
2. build a token-budgeted context (system prompt, history, retrieved chunks);
3. ask the model;
4. run any ``tool_call`` blocks in the reply, in order;
5. if tools ran, send their results back for a follow-up answer;
6. store the assistant message with its context chunks and tool executions.

``updateFile`` previews are returned with the turn, not applied; the caller
confirms them with ``docdesk.tools.update.apply_update``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from docdesk.agent import events as ev
from docdesk.agent.events import EventChannel
from docdesk.config import ContextCfg
from docdesk.db.models import ChatMessage, ChatSession
from docdesk.db.repository import Repository, new_id
from docdesk.errors import NotFoundError, ValidationError
from docdesk.rag.context import ManagedContext, manage_context
from docdesk.rag.llm_client import CompletionClient
from docdesk.tools.base import ToolContext, ToolResult
from docdesk.tools.protocol import format_parse_errors, format_tool_results, parse_tool_calls
from docdesk.tools.registry import ToolRegistry
from docdesk.tools.update import UpdateFilePreview

MESSAGE_ROLES = ("system", "user", "assistant")


@dataclass
class ChatTurn:
    message: ChatMessage
    context: ManagedContext
    tool_results: list[ToolResult] = field(default_factory=list)
    previews: list[UpdateFilePreview] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)


class ChatService:
    """Session persistence plus one-shot tool calling.

    Args:
        repo: Open Repository instance.
        llm: Completion client.
        registry: Tool registry for calls found in replies.
        tool_context: Builds the ToolContext for a scope (None = global).
        config: Context budget parameters.
    """

    def __init__(
        self,
        repo: Repository,
        llm: CompletionClient,
        registry: ToolRegistry,
        tool_context: Callable[[str | None], ToolContext],
        config: ContextCfg | None = None,
    ) -> None:
        self._repo = repo
        self._llm = llm
        self._registry = registry
        self._tool_context = tool_context
        self._config = config or ContextCfg()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_or_create_session(self, project_id: str | None) -> ChatSession:
        """Latest session for the scope, or a new one.

        Raises:
            NotFoundError: If *project_id* does not exist.
        """
        if project_id is not None and self._repo.get_project(project_id) is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        session = self._repo.get_latest_session(project_id)
        if session is None:
            session = self._repo.create_session(project_id)
            logger.debug("[chat] New session {} (project={})", session.id, project_id)
        session.messages = self._repo.list_messages(session.id)
        return session

    def get_session(self, session_id: str) -> ChatSession:
        session = self._repo.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Chat session '{session_id}' not found")
        return session

    def add_message(self, session_id: str, role: str, content: str, **extra) -> ChatMessage:
        if role not in MESSAGE_ROLES:
            raise ValidationError(f"Unknown message role '{role}'")
        self.get_session(session_id)
        return self._repo.add_message(
            ChatMessage(id=new_id(), session_id=session_id, role=role, content=content, **extra)
        )

    def get_messages(self, session_id: str) -> list[ChatMessage]:
        self.get_session(session_id)
        return self._repo.list_messages(session_id)

    def clear_session(self, session_id: str) -> int:
        self.get_session(session_id)
        return self._repo.clear_messages(session_id)

    def delete_session(self, session_id: str) -> None:
        self.get_session(session_id)
        self._repo.delete_session(session_id)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def send_message(
        self, session_id: str, content: str, *, events: EventChannel | None = None
    ) -> ChatTurn:
        """Run one chat turn and return the stored assistant message.

        With *events*, the final answer is streamed as ``response_chunk``
        events.

        Raises:
            NotFoundError: If the session or its project no longer exists.
            ValidationError: If *content* is blank.
            LLMError: If a completion call fails.
        """
        if not content.strip():
            raise ValidationError("Message must not be empty")
        session = self.get_session(session_id)
        self.add_message(session_id, "user", content)

        ctx = self._tool_context(session.project_id)
        managed = await manage_context(
            self._repo,
            ctx.embedder,
            ctx.indexer.vec_table,
            session.project_id,
            self._repo.list_messages(session_id),
            content,
            self._config,
        )
        messages = managed.to_llm_messages()
        # The first reply may hold tool blocks, so it is never streamed raw.
        reply = await self._llm.complete(messages)
        parsed = parse_tool_calls(reply)

        results: list[ToolResult] = []
        for call in parsed.calls:
            logger.info("[chat] Tool call: {}", call.tool)
            results.append(await self._registry.execute(call.tool, call.params, ctx))
        errors = [e.error for e in parsed.errors]

        if results or errors:
            feedback = format_tool_results(results)
            if parsed.errors:
                feedback = "\n\n".join(x for x in (feedback, format_parse_errors(parsed.errors)) if x)
            follow_up = messages + [
                {"role": "assistant", "content": reply},
                {
                    "role": "user",
                    "content": f"Tool results:\n\n{feedback}\n\n"
                    "Answer the original question using these results. Do not call tools again.",
                },
            ]
            answer = parse_tool_calls(await self._generate(follow_up, events)).text
            text = "\n\n".join(x for x in (parsed.text, answer) if x)
        else:
            text = parsed.text
            if events is not None:
                events.emit(ev.RESPONSE_CHUNK, text=text)

        previews = [r.preview for r in results if r.preview is not None]
        message = self.add_message(
            session_id,
            "assistant",
            text,
            context_chunks=[
                {
                    "chunk_id": c.chunk_id,
                    "file_name": c.file_name,
                    "project_name": c.project_name,
                    "score": round(c.score, 4),
                }
                for c in managed.relevant_chunks
            ],
            tool_executions=[r.to_dict() for r in results],
        )
        return ChatTurn(
            message=message,
            context=managed,
            tool_results=results,
            previews=previews,
            parse_errors=errors,
        )

    async def _generate(self, messages: list[dict[str, str]], events: EventChannel | None) -> str:
        if events is None:
            return await self._llm.complete(messages)
        parts: list[str] = []
        async for delta in self._llm.stream(messages):
            parts.append(delta)
            events.emit(ev.RESPONSE_CHUNK, text=delta)
        return "".join(parts)

