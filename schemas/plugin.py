"""
Pydantic schemas for monitor plugin transform results.

A plugin's ``transform`` returns exactly one of:

- SkipResult: nothing usable in this fetch; the check ends quietly
- ReleasesResult: versioned release slices, newest first
- ContentResult: replacement normalized content for the plain snapshot path
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Union


class ReleaseSlice(BaseModel):
    """One release entry from a versioned feed"""
    version: str
    title: Optional[str] = None
    markdown: str = ""
    link: Optional[str] = None
    # Extra context handed to the summarizer (e.g. merged PR list)
    ai_extra: Optional[str] = None

    def snapshot_markdown(self) -> str:
        """Content stored on the slice's snapshot"""
        heading = self.title or self.version
        return f"## {heading}\n\n{self.markdown}".strip()


class SkipResult(BaseModel):
    kind: str = "skip"
    reason: Optional[str] = None


class ReleasesResult(BaseModel):
    kind: str = "releases"
    releases: List[ReleaseSlice] = Field(default_factory=list)


class ContentResult(BaseModel):
    kind: str = "content"
    content_md: str


TransformResult = Union[SkipResult, ReleasesResult, ContentResult]
