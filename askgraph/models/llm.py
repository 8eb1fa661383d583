"""
LLM reply models for askgraph.

A structured reply is normalized once, at the LLM boundary, into one of two
shapes: the validated schema instance, or the raw fields when validation
failed. Later stages only ever see one of these two.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, Field


class ParsedResponse(BaseModel):
    """The reply validated against the requested schema."""

    kind: Literal["parsed"] = "parsed"
    value: Any


class RawResponse(BaseModel):
    """
    The reply could not be validated; fields hold whatever JSON was found,
    or the plain text under 'content'.
    """

    kind: Literal["raw"] = "raw"
    fields: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


LLMResponse = Annotated[Union[ParsedResponse, RawResponse], Field(discriminator="kind")]
