"""
Activity schema shared by the source stream, the pipeline and the publisher.

Only the fields the relay touches are declared. Anything else the provider
sends is kept as an extra field and published back unchanged.
"""

import re

from pydantic import BaseModel, ConfigDict, Field

# http/https links in free text. Parentheses count only in balanced pairs, as in
# http://en.wikipedia.org/wiki/Foo_(bar); trailing sentence punctuation is not
# part of the link.
URL_PATTERN = re.compile(
    r"""https?://"""
    r"""(?:\([^\s<>"'()]*\)|[^\s<>"'()])*"""
    r"""(?:\([^\s<>"'()]*\)|[^\s<>"'().,;:!?\]])"""
)


class Activity(BaseModel):
    """One record of the activity stream."""

    model_config = ConfigDict(extra="allow")

    id: str | None = Field(default=None, description="Provider activity id, if any")
    body: str = Field(default="", description="Free text of the activity")
    source_resource: str | None = Field(
        default=None,
        description="Identifier of the resource the activity came from",
    )
    sources: list[str] = Field(
        default_factory=list,
        description="Provenance tags, appended to by each relay that rewrites the activity",
    )

    @property
    def urls(self) -> list[str]:
        """Links in the body, in order of appearance."""
        return URL_PATTERN.findall(self.body)

    @property
    def has_links(self) -> bool:
        return URL_PATTERN.search(self.body) is not None
