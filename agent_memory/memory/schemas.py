"""
Memory system data models.

Defines MemoryRecord, Session and recall result types.
"""

from typing import Any, Dict, List, Optional
import time
import uuid

from pydantic import BaseModel, ConfigDict, Field


def new_record_id() -> str:
    return f"mem_{uuid.uuid4().hex[:12]}"


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex[:12]}"


class MemoryRecord(BaseModel):
    """
    A single remembered piece of conversation content.

    `node_id` is a plain back-reference to the index node holding the
    record's vector. A record without a node is pending: retrievable by
    id, not by semantic search.
    """

    id: str = Field(default_factory=new_record_id, description="Unique identifier")
    session_id: str = Field(..., description="Owning session")
    content: str = Field(..., description="Raw content (text or serialized payload)")
    created_at: float = Field(default_factory=time.time, description="Unix timestamp")
    node_id: Optional[int] = Field(None, description="Linked index node, None while pending")

    # Stored so the index can be rebuilt after a restart; never serialized to clients
    vector: Optional[List[float]] = Field(None, exclude=True, repr=False)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "mem_abc123",
                "session_id": "sess_xyz",
                "content": "User prefers concise answers with code samples.",
                "created_at": 1696723200.0,
                "node_id": 42,
            }
        }
    )

    @property
    def pending(self) -> bool:
        """True while the record is not searchable."""
        return self.node_id is None

    def snippet(self, max_chars: int = 100) -> str:
        """Get truncated content for display."""
        if len(self.content) <= max_chars:
            return self.content
        return self.content[:max_chars-3] + "..."


class Session(BaseModel):
    """A conversation session owning an ordered list of records."""

    id: str = Field(default_factory=new_session_id)
    user_id: str = Field(..., description="Owning user")
    created_at: float = Field(default_factory=time.time)
    last_accessed_at: float = Field(default_factory=time.time)
    record_ids: List[str] = Field(default_factory=list, description="Chronological record ids")

    def touch(self) -> None:
        self.last_accessed_at = time.time()


class RecallHit(BaseModel):
    """A recalled record with its distance to the query."""

    record: MemoryRecord
    distance: float

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.model_dump()
        data["distance"] = self.distance
        return data
