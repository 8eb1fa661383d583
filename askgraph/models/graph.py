"""
Graph data models for askgraph.

This module defines the standardized structures that all importers convert
their source data into (page trees), and the flat records read back from the
graph store.
"""

import re
from typing import List, Optional
from pydantic import BaseModel, Field


# Roam daily note pages use "MM-DD-YYYY" uids
DNP_UID_PATTERN = r"^(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])-(19|20)[0-9][0-9]$"
DNP_UID_REGEX = re.compile(DNP_UID_PATTERN)


class RoamBlock(BaseModel):
    """
    A block and its ordered children, as produced by an importer.
    """

    uid: str = Field(
        ...,
        description="Stable 9-character identifier of the block"
    )

    content: str = Field(
        default="",
        description="Block string, may embed [[page]], #tag, attr:: or ((uid)) references"
    )

    create_time: Optional[int] = Field(
        default=None,
        description="Creation timestamp in milliseconds since epoch"
    )

    edit_time: Optional[int] = Field(
        default=None,
        description="Last edition timestamp in milliseconds since epoch"
    )

    children: List['RoamBlock'] = Field(
        default_factory=list,
        description="Ordered child blocks"
    )


class RoamPage(BaseModel):
    """
    A named root of a block tree.
    """

    uid: str = Field(..., description="Page uid")
    title: str = Field(..., description="Page title")
    create_time: Optional[int] = Field(default=None)
    edit_time: Optional[int] = Field(default=None)
    children: List[RoamBlock] = Field(
        default_factory=list,
        description="Top level blocks of the page, in order"
    )

    @property
    def is_daily(self) -> bool:
        """True for daily note pages."""
        return bool(DNP_UID_REGEX.match(self.uid))

    def block_count(self) -> int:
        def _count(blocks: List[RoamBlock]) -> int:
            return sum(1 + _count(block.children) for block in blocks)
        return _count(self.children)


class Block(BaseModel):
    """
    A block row as stored in the graph store.
    """

    uid: str
    content: str
    page_uid: str
    page_title: str
    edit_time: int = 0
    parent_uid: Optional[str] = None
    children_uids: List[str] = Field(default_factory=list)


class Page(BaseModel):
    """
    A page row as stored in the graph store.
    """

    uid: str
    title: str
    create_time: int = 0
    edit_time: int = 0

    @property
    def is_daily(self) -> bool:
        return bool(DNP_UID_REGEX.match(self.uid))


# Enable forward references for self-referencing model
RoamBlock.model_rebuild()
