"""
Agent Registry for askgraph.

This module defines the registry of the LLM collaborators used by the search
agent: their system prompts, user prompt templates and whether they answer
with structured JSON. Prompts can be overridden from config.yaml, see
AgentManager.
"""

from typing import Dict, List, Optional
from dataclasses import dataclass


@dataclass
class AgentConfig:
    """
    Configuration for an AI agent.
    """
    name: str
    description: str
    system_prompt: str
    user_prompt_template: str
    structured: bool = True
    timeout: float = 60.0


_WORDS_TO_IGNORE = """Do not use as search terms:
- particles, pronouns and obvious search instructions ("find", "search for", "look up")
- mentions of the database itself ("in my graph", "in my notes")
- names of the record type ("all blocks", "all pages") or of hierarchy levels ("parent", "children", "two levels")
- any term preceded by '\\' (e.g. 'my \\beautiful poems' gives 'poems')
- anything about the processing or judgement expected on the results, since a later stage handles it"""


NL_QUERY_INTERPRETER_PROMPT = f"""You convert a natural language request into search parameters for a Roam Research graph.
The graph is a set of hierarchically organized blocks (an outliner) spread over pages.

Write 'searchList', a symbolic query where:
1) items joined by ' + ' are conjunctive conditions (AND)
2) alternatives inside an item are separated by '|' (OR)
3) a single excluded item starts with '-' (NOT)
4) ' > ' means: blocks matching the left side with a descendant matching the right side;
   ' < ' means: blocks matching the left side with an ancestor matching the right side.
   A depth can follow the symbol, as in 'A >(1) B'.
5) quoted expressions are kept verbatim with their quotes for an exact match;
   [[page refs]], #tags, attribute:: and regular expressions are reproduced exactly;
   a trailing '~' on a word asks for semantic variations and must be kept.
   '.*' may be used on the child side only, alone, to get all children: '.* < #tag'.
{_WORDS_TO_IGNORE}

Also set, only when the request says so:
- 'alternativeList': a second, disjoint search list for a strong disjunction ('OR', '||')
- 'nbOfResults': the number of results requested
- 'isRandom': true if random results are requested
- 'depthLimitation': 0 (same block), 1 (direct children) or 2 (two levels)
- 'pagesLimitation': "dnp" for daily notes, or keywords of page titles such as "project|product"
- 'period': {{"begin": "yyyy/mm/dd", "end": "yyyy/mm/dd"}}, null for an open boundary
- 'isPostProcessingNeeded': true if the results must be processed beyond extraction
- 'isInferenceNeeded': true if the keywords of the question will probably miss the best answers
- 'isCaseSensitive': true if the request explicitly asks for a case-sensitive search

Keep to 3 or 4 items at most. Answer with a JSON object only.

Examples:
- 'all recipes with sugar or vanilla that are not pastries' => 'recipes + sugar|vanilla -pastries'
- 'all the books that have [[to read]] as a child' => 'books > [[to read]]'
- 'blocks tagged #important or #urgent under a block about the budget' => '#important|#urgent < budget'"""


NL_QUESTION_INTERPRETER_PROMPT = f"""You deepen the interpretation of a question asked about a Roam Research graph.
Only if the keywords of the initial search list are unlikely to catch the most relevant answers,
write an alternative search list with different keywords: at most 2 conjunctive items ('+'),
each one a broad disjunction ('|') of credible answers or closely related concepts.
Avoid ambiguous words that would bring many false positives.
The alternative must differ significantly from the initial search list, otherwise return an empty string.
{_WORDS_TO_IGNORE}

Answer with a JSON object: {{"alternativeSearchList": "..."}}

Example: 'What is the most mentioned color in my graph?' has the initial list 'color';
an alternative is 'red|blue|green|yellow|black|white|grey|purple|orange|pink|brown'."""


SEMANTIC_EXPANSION_PROMPT = """You suggest semantic variations of a search term: synonyms, acronyms,
common aliases or abbreviations, strictly in the language of the user request.
Give only close variations, never a word that could lead the search astray.
Answer with a JSON object: {"variations": ["...", "..."]}"""


PRESELECTION_PROMPT = """You help the user make the most of their notes. From the blocks below,
extracted from a Roam graph because they match the keywords of the request, keep the most
relevant ones for the request. Blocks are numbered from the most recent to the oldest; each one
is given as 'Block ((uid)) in page [[Page Title]]. Direct parent is: "..."' followed by its
content and some matching or first children.
Answer with a JSON object: {"relevantUids": ["uid1", "uid2"]}, copying each uid exactly,
without the parentheses."""


POST_PROCESSING_PROMPT = """You help the user make the most of their notes. Answer the request using
only the blocks below, extracted from a Roam graph. Blocks are numbered from the most recent to
the oldest; each one is given as 'Block ((uid)) in page [[Page Title]]. Parent blocks: "..."'
followed by its content and children up to 3 levels.
When commenting a block, first write its reference as {{[[embed-path]]: ((uid))}} then your
comment below it. When relying on a block elsewhere, cite it as ([source block](((uid)))).
Answer directly, without introduction, in the language of the request."""


REQUEST_ANALYZER_PROMPT = """You decide how to handle a turn of a conversation about a Roam graph.
Use the cached results when the request asks for more details about them, or about a related
or more specific aspect of a topic already searched. Ask for a new search when the topic is
different. Rewrite the request so it is explicit and self-contained, in the user's language.
Answer with a JSON object only:
{"decision": "use_cache" | "need_new_search", "reformulatedQuery": "..."}"""


CACHE_PROCESSOR_PROMPT = """You answer a request from cached search results of a Roam graph.
- If the cached results fully answer the request, answer directly, referencing blocks as ((uid)).
- If they are a useful base but a new search would improve the answer, reply 'HYBRID: ' followed
  by what is known and what to search.
- If they do not help, reply 'INSUFFICIENT_CACHE: ' followed by a short explanation."""


class AgentRegistry:
    """
    Registry of all available AI agents and their configurations.
    """

    def __init__(self):
        """Initialize the agent registry with default agents."""
        self._agents: Dict[str, AgentConfig] = {}
        self._register_default_agents()

    def _register_default_agents(self):
        """Register the default agents used by the search agent."""

        self.register_agent(AgentConfig(
            name="nl-query-interpreter",
            description="Turns a natural language request into a symbolic search list",
            system_prompt=NL_QUERY_INTERPRETER_PROMPT,
            user_prompt_template="""Today's date is {current_date}.
{mode_instructions}
User request: {user_query}{retry_instruction}"""
        ))

        self.register_agent(AgentConfig(
            name="nl-question-interpreter",
            description="Infers an alternative, broader search list from a question",
            system_prompt=NL_QUESTION_INTERPRETER_PROMPT,
            user_prompt_template="""Initial user request: {user_query}
Search list generated from its keywords: {search_list}{retry_instruction}"""
        ))

        self.register_agent(AgentConfig(
            name="semantic-expansion",
            description="Suggests semantic variations for terms marked with '~'",
            system_prompt=SEMANTIC_EXPANSION_PROMPT,
            user_prompt_template="""Term: {term}
User request, for the language to use: {user_query}"""
        ))

        self.register_agent(AgentConfig(
            name="preselection-filter",
            description="Narrows a large set of matching blocks to the most relevant ones",
            system_prompt=PRESELECTION_PROMPT,
            user_prompt_template="""User request: {user_query}{retry_instruction}
Select no more than {max_number} blocks.

Blocks matching the request:
{blocks}"""
        ))

        self.register_agent(AgentConfig(
            name="post-processing",
            description="Writes the final answer from the selected blocks",
            system_prompt=POST_PROCESSING_PROMPT,
            user_prompt_template="""User request: {user_query}{retry_instruction}

Main blocks matching the request:
{blocks}""",
            structured=False
        ))

        self.register_agent(AgentConfig(
            name="request-analyzer",
            description="Chooses between cached results and a new search for a conversation turn",
            system_prompt=REQUEST_ANALYZER_PROMPT,
            user_prompt_template="""Conversation history:
{history}

Cached results:
{cached_results}

Current request: {user_query}"""
        ))

        self.register_agent(AgentConfig(
            name="cache-processor",
            description="Answers from cached results or declares them insufficient",
            system_prompt=CACHE_PROCESSOR_PROMPT,
            user_prompt_template="""Request: {user_query}

Cached results:
{cached_results}""",
            structured=False
        ))

    def register_agent(self, config: AgentConfig) -> None:
        """
        Register a new agent configuration.

        Args:
            config: The agent configuration to register
        """
        self._agents[config.name] = config

    def get_agent(self, name: str) -> Optional[AgentConfig]:
        """
        Get an agent configuration by name.

        Args:
            name: The name of the agent

        Returns:
            The agent configuration, or None if not found
        """
        return self._agents.get(name)

    def list_agents(self) -> List[str]:
        """
        Get a list of all registered agent names.

        Returns:
            List of agent names
        """
        return list(self._agents.keys())


# Global agent registry instance
agent_registry = AgentRegistry()
