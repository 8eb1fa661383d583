"""
Request-scoped collaborators of the search graph.

One RequestContext is built per request and bound to every node, so that no
LLM client, tool set or cancellation flag is shared between requests.
"""

import random
import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..agents import AgentRunner
from ..cancellation import CancelToken
from ..config import ConfigManager
from ..database import GraphStore
from ..query import GraphQueryEngine


@dataclass
class RequestContext:
    store: GraphStore
    engine: GraphQueryEngine
    runner: AgentRunner
    config: ConfigManager
    cancel_token: CancelToken = field(default_factory=CancelToken)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    search_only: bool = False
    rng: random.Random = field(default_factory=random.Random)

    @property
    def overfetch(self) -> int:
        return self.config.get("search.post_processing_overfetch", 5)

    @property
    def max_results(self) -> int:
        return self.config.get("search.max_results_before_preselection", 100)

    @property
    def preselection_cap(self) -> int:
        return self.config.get("search.preselection_cap", 20)

    @property
    def preselection_factor(self) -> int:
        return self.config.get("search.preselection_factor", 3)
