"""
Shared Pydantic models for the Prism rule server.

- RuleDocument, TranscriptChunk: documents served by the repository
- EmbeddableItem: the shape the similarity engine ranks
- RankedResult: ranking output
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ─── Documents ──────────────────────────────────────────────────────────────


def _coerce_embedding(value: object) -> list[float] | None:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ValueError("embedding must be a list of numbers")
    out: list[float] = []
    for x in value:
        # bool is an int subclass; reject it explicitly
        if isinstance(x, bool) or not isinstance(x, (int, float)):
            raise ValueError("embedding must contain only numbers")
        out.append(float(x))
    return out


class RuleDocument(BaseModel):
    """A unit of architectural guidance."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default="", alias="_id", description="Store-assigned identifier")
    slug: str = Field(min_length=1, description="Unique short name used for lookup")
    category: str = Field(default="general", description="Grouping key")
    name: str | None = Field(default=None, description="Display title")
    content: str = Field(description="Full rule body, returned verbatim")
    embedding: list[float] | None = Field(default=None, description="Semantic vector")
    tags: list[str] = Field(default_factory=list)
    priority: int = Field(default=100, description="Lower number = more important")
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> str:
        return "" if value is None else str(value)

    @field_validator("embedding", mode="before")
    @classmethod
    def _check_embedding(cls, value: object) -> list[float] | None:
        return _coerce_embedding(value)

    @model_validator(mode="before")
    @classmethod
    def _default_id(cls, data: object) -> object:
        if isinstance(data, dict) and not (data.get("id") or data.get("_id")):
            data = {**data, "id": data.get("slug")}
        return data

    @property
    def title(self) -> str:
        return self.name or self.slug


class TranscriptChunk(BaseModel):
    """A segment of a video transcript, ranked the same way as rules."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default="", alias="_id")
    video_id: str = Field(default="", alias="videoId")
    video_title: str = Field(default="Untitled Video", alias="videoTitle")
    start: float | None = Field(default=None, description="Start time in seconds")
    end: float | None = Field(default=None, description="End time in seconds")
    text: str = Field(description="Transcript text for this segment")
    embedding: list[float] | None = None

    @field_validator("id", "video_id", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> str:
        return "" if value is None else str(value)

    @field_validator("embedding", mode="before")
    @classmethod
    def _check_embedding(cls, value: object) -> list[float] | None:
        return _coerce_embedding(value)


# ─── Ranking ────────────────────────────────────────────────────────────────


class EmbeddableItem(Protocol):
    """Anything carrying an optional precomputed embedding."""

    @property
    def embedding(self) -> list[float] | None: ...


T = TypeVar("T")


@dataclass(frozen=True)
class RankedResult(Generic[T]):
    """An item plus its cosine similarity to the query."""

    item: T
    similarity: float
