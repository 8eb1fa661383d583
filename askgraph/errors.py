"""
Error taxonomy for askgraph.

Interpretation errors are recovered by the one-retry-per-stage policy of the
search graph. Execution, LLM transport and cancellation errors propagate to the
orchestration boundary. Empty results and an insufficient cache are not errors
and are modelled as plain values.
"""

from dataclasses import dataclass, field
from typing import Optional


class AskGraphError(Exception):
    """Base class for all askgraph errors."""


class InterpretationError(AskGraphError):
    """A natural-language or symbolic query could not be parsed or validated."""

    def __init__(self, message: str, node: Optional[str] = None):
        super().__init__(message)
        self.node = node


class FilterCompilationError(InterpretationError):
    """A search list cannot be compiled into filters (caller error)."""


class QueryExecutionError(AskGraphError):
    """The storage query for one filter step failed (bad regex, storage error)."""


class LLMError(AskGraphError):
    """The LLM collaborator could not be reached or answered with an HTTP error."""


class CancellationError(AskGraphError):
    """The user cancelled the in-flight request."""


class UserChoiceTimeoutError(AskGraphError):
    """A paused search waited too long for a user decision."""


class ResumptionInProgressError(AskGraphError):
    """A continuation is already being resumed for this conversation."""


@dataclass(frozen=True)
class EmptyResultCondition:
    """Zero matching blocks, or no executable filter at all."""

    reason: str = "No matching blocks"
    no_query: bool = False


@dataclass(frozen=True)
class CacheInsufficientCondition:
    """The cached results cannot answer the request; a fresh search is needed."""

    guidance: str = ""
    partial_findings: list = field(default_factory=list)
