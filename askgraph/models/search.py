"""
Search models for askgraph.

Successive representations of a user query: the parsed symbolic search list,
its compiled filters, and the blocks matched by the graph query engine. The
structured shapes expected back from the LLM collaborators live here too.
"""

from typing import List, Literal, Optional, Union
from pydantic import BaseModel, Field


class SearchCondition(BaseModel):
    """
    One atomic test on block content.
    """

    text: str = Field(..., description="Searched text, page reference, uid or regex")
    type: Literal["text", "page_ref", "block_ref", "regex"] = "text"
    match_type: Literal["exact", "contains", "regex"] = "contains"
    negate: bool = False
    semantic_expansion: Optional[bool] = None


class ConditionGroup(BaseModel):
    """
    Conditions combined with a single logical operator.
    """

    conditions: List[Union[SearchCondition, 'ConditionGroup']] = Field(default_factory=list)
    combination: Literal["AND", "OR"] = "AND"


class SearchTerm(BaseModel):
    """
    One alternative inside a search item.
    """

    text: str
    quoted: bool = False
    semantic: bool = False
    wildcard: bool = False


class SearchItem(BaseModel):
    """
    A conjunctive item of a search list, made of OR-joined alternatives.
    """

    terms: List[SearchTerm] = Field(default_factory=list)
    negate: bool = False
    is_top_block: bool = False


class SearchList(BaseModel):
    """
    The parsed symbolic query.

    Items are joined by AND, alternatives inside an item by OR. At most one
    item is negated, and at most one hierarchy operator is present.
    """

    raw: str = ""
    items: List[SearchItem] = Field(default_factory=list)
    hierarchy: Optional[Literal[">", "<"]] = None
    depth_hint: Optional[int] = Field(
        default=None,
        description="Depth written after the hierarchy operator, as in 'A >(1) B'"
    )

    @property
    def is_directed(self) -> bool:
        return self.hierarchy is not None

    @property
    def children_only(self) -> bool:
        """'child < parent' queries return the child side blocks."""
        return self.hierarchy == "<"


class Filter(BaseModel):
    """
    Compiled form of one search list item.
    """

    regex_string: str = Field(
        ...,
        description="Regex with OR-joined alternatives, '(?i)' prefixed unless case sensitive"
    )
    is_to_exclude: bool = False
    is_top_block_filter: bool = False


class ChildMatch(BaseModel):
    """A descendant (or sibling) block that satisfied one of the other filters."""

    uid: str
    content: str


class MatchResult(BaseModel):
    """
    A block that satisfied the filters, with sample matching descendants.
    """

    uid: str
    content: str
    edit_time: int = 0
    page_title: str = ""
    child_matching_content: List[ChildMatch] = Field(default_factory=list)


class Period(BaseModel):
    """Restricted period of a request, dates as yyyy/mm/dd."""

    begin: Optional[str] = None
    end: Optional[str] = None


class QueryInterpretation(BaseModel):
    """
    Structured reply of the natural-language query interpreter.
    """

    searchList: str = Field(..., description="Symbolic search list extracted from the request")
    alternativeList: Optional[str] = Field(
        default=None,
        description="Second, disjoint search list when the request is a strong disjunction"
    )
    nbOfResults: Optional[int] = None
    isRandom: Optional[bool] = None
    isPostProcessingNeeded: Optional[bool] = None
    isInferenceNeeded: Optional[bool] = None
    isCaseSensitive: Optional[bool] = None
    depthLimitation: Optional[int] = Field(default=None, ge=0, le=2)
    pagesLimitation: Optional[str] = None
    period: Optional[Period] = None


class AlternativeSearchList(BaseModel):
    """Structured reply of the question interpreter."""

    alternativeSearchList: Optional[str] = None


class SemanticVariations(BaseModel):
    """Structured reply of the semantic expansion collaborator."""

    variations: List[str] = Field(default_factory=list)


class Preselection(BaseModel):
    """Structured reply of the preselection collaborator."""

    relevantUids: List[str] = Field(default_factory=list)


class RoutingDecision(BaseModel):
    """Structured reply of the request analyzer."""

    decision: Literal["use_cache", "need_new_search"]
    reformulatedQuery: Optional[str] = None


ConditionGroup.model_rebuild()
