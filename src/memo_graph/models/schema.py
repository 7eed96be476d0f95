"""Data models for the memo graph."""

import datetime
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite stores datetimes without an offset, so values read back from the
    database are naive and are assumed to be UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def canonical_pair(a: int, b: int) -> Tuple[int, int]:
    """Return an unordered note pair as (low, high).

    Raises:
        ValueError: If both ids are the same (self-loops are not edges).
    """
    if a == b:
        raise ValueError(f"A note cannot be paired with itself (id={a})")
    return (a, b) if a < b else (b, a)


class VectorStatus(str, Enum):
    """Whether a note's document vector is a real embedding."""

    UNVECTORIZED = "unvectorized"  # Placeholder zero vector, never compared
    VECTORIZED = "vectorized"  # Mean of the note's paragraph vectors


class Note(BaseModel):
    """A free-text note. Vectors are derived data and are not part of this model."""

    id: int = Field(..., description="Unique, stable ID of the note")
    title: str = Field(..., description="Title of the note")
    content: str = Field(default="", description="Content of the note")
    created_date: datetime.date = Field(
        default_factory=lambda: utc_now().date(),
        description="Date the note was created",
    )
    accessed_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last accessed (UTC)"
    )
    vector_status: VectorStatus = Field(
        default=VectorStatus.UNVECTORIZED,
        description="Whether the note takes part in similarity comparisons",
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("accessed_at")
    @classmethod
    def validate_accessed_at(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @property
    def is_vectorized(self) -> bool:
        return self.vector_status == VectorStatus.VECTORIZED


class NoteSummary(BaseModel):
    """Note metadata used in listings and graph nodes."""

    id: int
    title: str
    created_date: datetime.date
    accessed_at: datetime.datetime
    preview: str = ""

    model_config = {"frozen": True}


class SimilarityEdge(BaseModel):
    """An undirected similarity edge stored in canonical orientation.

    Edges are never updated in place: a refresh deletes and reinserts them,
    so ``created_time`` changes every time either endpoint is re-vectorized.
    """

    note_id_low: int = Field(..., description="Smaller note ID of the pair")
    note_id_high: int = Field(..., description="Larger note ID of the pair")
    score: float = Field(..., ge=-1.0, le=1.0, description="Cosine similarity")
    created_time: datetime.datetime = Field(
        default_factory=utc_now, description="When the edge was written (UTC)"
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_orientation(self) -> "SimilarityEdge":
        if self.note_id_low >= self.note_id_high:
            raise ValueError(
                "note_id_low must be smaller than note_id_high "
                f"(got {self.note_id_low}, {self.note_id_high})"
            )
        return self

    @property
    def pair(self) -> Tuple[int, int]:
        return (self.note_id_low, self.note_id_high)

    def other(self, note_id: int) -> int:
        """Return the endpoint that is not ``note_id``."""
        if note_id == self.note_id_low:
            return self.note_id_high
        if note_id == self.note_id_high:
            return self.note_id_low
        raise ValueError(f"Note {note_id} is not an endpoint of edge {self.pair}")


class SimilarNote(BaseModel):
    """One entry of a "similar notes" list."""

    note_id: int
    score: float
    title: str = ""

    model_config = {"frozen": True}


class GraphSnapshot(BaseModel):
    """The strongest similarity edges and the notes they connect."""

    nodes: List[NoteSummary] = Field(default_factory=list)
    edges: List[SimilarityEdge] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the graph renderer (``source``/``target`` edge keys)."""
        return {
            "nodes": [node.model_dump(mode="json") for node in self.nodes],
            "edges": [
                {
                    "source": edge.note_id_low,
                    "target": edge.note_id_high,
                    "score": edge.score,
                    "created_time": edge.created_time.isoformat(),
                }
                for edge in self.edges
            ],
        }
