"""
Conversation models for askgraph.

State threaded across conversational turns: cached result sets, the result
store with its lifecycle tags, and the continuation tokens of paused searches.
"""

import time
import uuid
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class ResultCacheEntry(BaseModel):
    """
    Full results of a search step, kept for follow-up turns.
    """

    tool_name: str
    full_results: List[Dict[str, Any]] = Field(default_factory=list)
    user_query: str = ""
    timestamp: int = Field(default_factory=now_ms)
    can_expand: bool = False
    result_id: Optional[str] = None

    @property
    def cache_id(self) -> str:
        return f"{self.tool_name}_{self.timestamp}"


class StoredResult(BaseModel):
    """
    A result set with lifecycle tags.

    Superseded entries are kept for audit and ignored when building answers.
    """

    data: List[Dict[str, Any]] = Field(default_factory=list)
    purpose: Literal["final", "intermediate", "replacement", "completion"] = "final"
    status: Literal["active", "superseded"] = "active"
    replaces_result_id: Optional[str] = None
    completes_result_id: Optional[str] = None
    tool_name: str = "graph_search"
    timestamp: int = Field(default_factory=now_ms)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ConversationState(BaseModel):
    """
    Per-conversation state, owned by the orchestration layer.
    """

    conversation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    cached_full_results: Dict[str, ResultCacheEntry] = Field(default_factory=dict)
    result_store: Dict[str, StoredResult] = Field(default_factory=dict)
    has_limited_results: bool = False
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    expansion_level: int = 0
    next_result_id: int = 1
    is_conversation_mode: bool = True
    private_mode: bool = False
    resumption_in_progress: bool = False


class ContinuationToken(BaseModel):
    """
    A paused search: the serialized graph state and the choices offered.

    Passed back to the resume entry point together with the user's decision.
    """

    token_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: Literal["pagination", "expansion"]
    state: Dict[str, Any] = Field(default_factory=dict)
    options: List[str] = Field(default_factory=list)
    conversation_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
