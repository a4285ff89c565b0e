from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from postsoma.core.lifecycle import Status

DEFAULT_LANGUAGE = "en"

SourceType = Literal["manual", "tg", "github"]


class _SourceBase(BaseModel):
    model_config = ConfigDict(extra="allow")


class ManualSource(_SourceBase):
    type: Literal["manual"]
    author: str | None = None


class InboxSource(_SourceBase):
    """Provenance for links posted into the messaging inbox chat."""

    type: Literal["tg"]
    chat_id: str
    message_id: str = ""
    author: str | None = None


class IssueSource(_SourceBase):
    """Provenance for repositories submitted through an issue."""

    type: Literal["github"]
    owner: str
    repo: str
    issue: int


ItemSource = Annotated[Union[ManualSource, InboxSource, IssueSource], Field(discriminator="type")]


class Published(BaseModel):
    model_config = ConfigDict(extra="allow")

    channel: str
    post_id: str
    posted_at: str


class Item(BaseModel):
    """One curated link record, serialized as a single line of the log.

    Timestamps are kept as the ISO strings found on disk so a load/save cycle
    reproduces each line exactly. Unknown keys are preserved.
    """

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    id: str
    url: str
    canonical_url: str
    title: str | None = None
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    language: str = DEFAULT_LANGUAGE
    source: ItemSource | None = None
    status: Status = Status.INBOX
    created_at: str | None = None
    updated_at: str | None = None
    published: Published | None = None
    content: dict[str, Any] | None = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)

    @property
    def source_type(self) -> str | None:
        return self.source.type if self.source is not None else None
