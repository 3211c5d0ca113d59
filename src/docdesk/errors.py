"""Docdesk exception taxonomy.

Services raise these; tools convert them to unsuccessful ``ToolResult`` values
at their boundary, and the CLI translates them into actionable messages
(see ``docdesk.cli.errors``).
"""

from __future__ import annotations


class DocdeskError(Exception):
    """Base class for all docdesk errors."""


class NotFoundError(DocdeskError, LookupError):
    """A project, file, session or version does not exist."""


class ValidationError(DocdeskError, ValueError):
    """Unsupported input: bad file type, malformed parameters, unsafe path."""


class ExternalServiceError(DocdeskError, RuntimeError):
    """An external collaborator (embedding backend, LLM, web) failed."""


class EmbeddingError(ExternalServiceError):
    """The embedding backend is unreachable or misconfigured."""


class LLMError(ExternalServiceError):
    """The LLM completion collaborator failed."""


class WebSearchError(ExternalServiceError):
    """A web search provider or page fetch failed."""


class IntegrityError(DocdeskError, RuntimeError):
    """Stored state could not be reconstructed (e.g. a patch failed to apply)."""


class ConcurrencyError(DocdeskError, RuntimeError):
    """A second plan was started on a session that already has one running."""
