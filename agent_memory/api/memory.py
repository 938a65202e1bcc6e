"""
Memory API endpoints.

Thin HTTP driver over MemoryService: sessions, remember, recall, update, forget.
"""

import os
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from agent_memory.config.settings import load_settings
from agent_memory.errors import DimensionMismatch, NotFound, PartialFailure, PersistenceError
from agent_memory.memory.schemas import MemoryRecord, Session
from agent_memory.memory.service import MemoryService, create_memory_service


router = APIRouter(prefix="/memory", tags=["memory"])


# Default service instance (overridden in tests via dependency_overrides)
_memory_service: Optional[MemoryService] = None


def get_memory_service() -> MemoryService:
    """Get or create memory service singleton."""
    global _memory_service
    if _memory_service is None:
        _memory_service = create_memory_service(load_settings(os.getenv("AGENT_MEMORY_CONFIG")))
    return _memory_service


class StartSessionRequest(BaseModel):
    """Request to open a conversation session."""

    user_id: str = Field(..., min_length=1, description="Owning user")
    session_id: Optional[str] = Field(None, description="Explicit session id")


class RememberRequest(BaseModel):
    """Request to remember a piece of content."""

    session_id: str = Field(..., description="Owning session")
    content: str = Field(..., min_length=1, max_length=20000, description="Content to remember")
    vector: List[float] = Field(..., description="Embedding of the content")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "session_id": "sess_abc123",
                "content": "User prefers concise answers.",
                "vector": [0.1, 0.2, 0.3],
            }
        }
    )


class RememberResponse(BaseModel):
    """Response after remembering content."""

    record_id: str = Field(..., description="Generated record ID")
    indexed: bool = Field(..., description="False when the record is pending")
    message: str = Field(..., description="Status message")


class RecallRequest(BaseModel):
    """Request to recall memories for a query vector."""

    vector: List[float] = Field(..., description="Query embedding")
    k: int = Field(5, ge=1, le=100, description="Maximum number of results")
    session_id: Optional[str] = Field(None, description="Restrict to one session")
    user_id: Optional[str] = Field(None, description="Restrict to one user's sessions")
    ef: Optional[int] = Field(None, ge=1, description="Query-time candidate list size")


class RecallItem(BaseModel):
    """A recalled record with its distance."""

    record: MemoryRecord
    distance: float


class RecallResponse(BaseModel):
    """Response with recalled records."""

    memories: List[RecallItem] = Field(..., description="Records in ascending distance")
    count: int = Field(..., description="Number of results returned")


class UpdateRecordRequest(BaseModel):
    """Request to replace a record's content and optionally its vector."""

    content: str = Field(..., min_length=1, max_length=20000, description="New content")
    vector: Optional[List[float]] = Field(None, description="New embedding")


class ForgetResponse(BaseModel):
    """Response after forgetting a record."""

    deleted: bool
    message: str


def _raise_http(error: Exception) -> None:
    if isinstance(error, NotFound):
        raise HTTPException(status_code=404, detail=error.to_dict())
    if isinstance(error, DimensionMismatch):
        raise HTTPException(status_code=422, detail=error.to_dict())
    if isinstance(error, PersistenceError):
        raise HTTPException(status_code=503, detail=error.to_dict())
    raise error


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/sessions", response_model=Session)
async def start_session(request: StartSessionRequest, service: MemoryService = Depends(get_memory_service)):
    """Open a new conversation session."""
    try:
        return service.start_session(request.user_id, session_id=request.session_id)
    except (NotFound, PersistenceError) as e:
        _raise_http(e)


@router.get("/sessions/{session_id}", response_model=Session)
async def get_session(session_id: str, service: MemoryService = Depends(get_memory_service)):
    """Fetch a session with its chronological record ids."""
    try:
        return service.get_session(session_id)
    except (NotFound, PersistenceError) as e:
        _raise_http(e)


@router.delete("/sessions/{session_id}")
async def forget_session(session_id: str, service: MemoryService = Depends(get_memory_service)):
    """
    Delete a session and all of its records.

    Example:
        DELETE /memory/sessions/sess_abc123

        Response:
        {
            "purged": 12,
            "message": "Purged 12 session memories"
        }
    """
    try:
        purged = service.forget_session(session_id)
    except (NotFound, PersistenceError) as e:
        _raise_http(e)
    return {"purged": purged, "message": f"Purged {purged} session memories"}


@router.post("/remember", response_model=RememberResponse)
async def remember(request: RememberRequest, service: MemoryService = Depends(get_memory_service)):
    """
    Remember content with its embedding.

    Returns 202 with `indexed: false` when the record was stored but its
    vector was rejected (pending record).
    """
    try:
        record_id = service.remember(request.session_id, request.content, request.vector)
    except PartialFailure as e:
        body = RememberResponse(record_id=e.record_id, indexed=False, message=e.reason)
        return JSONResponse(status_code=202, content=body.model_dump())
    except (NotFound, PersistenceError) as e:
        _raise_http(e)

    return RememberResponse(record_id=record_id, indexed=True, message="Memory stored and indexed")


@router.post("/recall", response_model=RecallResponse)
async def recall(request: RecallRequest, service: MemoryService = Depends(get_memory_service)):
    """
    Recall the records closest to a query vector.

    Example:
        POST /memory/recall
        {
            "vector": [0.15, 0.25, 0.35],
            "k": 2
        }
    """
    try:
        hits = service.recall(request.vector, k=request.k, session_id=request.session_id,
                              ef=request.ef, user_id=request.user_id)
    except (NotFound, DimensionMismatch, PersistenceError) as e:
        _raise_http(e)

    items = [RecallItem(record=hit.record, distance=hit.distance) for hit in hits]
    return RecallResponse(memories=items, count=len(items))


@router.get("/records/{record_id}", response_model=MemoryRecord)
async def get_record(record_id: str, service: MemoryService = Depends(get_memory_service)):
    """Fetch a record by id, including pending records."""
    try:
        return service.get_record(record_id)
    except (NotFound, PersistenceError) as e:
        _raise_http(e)


@router.put("/records/{record_id}", response_model=MemoryRecord)
async def update_record(record_id: str, request: UpdateRecordRequest,
                        service: MemoryService = Depends(get_memory_service)):
    """Replace a record's content; a new vector re-indexes it under the same id."""
    try:
        return service.update_record(record_id, request.content, vector=request.vector)
    except (NotFound, DimensionMismatch, PersistenceError) as e:
        _raise_http(e)


@router.get("/users/{user_id}/records", response_model=List[MemoryRecord])
async def list_user_records(user_id: str, session_id: Optional[str] = None,
                            service: MemoryService = Depends(get_memory_service)):
    """A user's records across sessions, oldest first."""
    try:
        return service.list_user_records(user_id, session_id=session_id)
    except PersistenceError as e:
        _raise_http(e)


@router.delete("/records/{record_id}", response_model=ForgetResponse)
async def forget(record_id: str, service: MemoryService = Depends(get_memory_service)):
    """Forget a record; it never appears in later recalls."""
    try:
        service.forget(record_id)
    except (NotFound, PersistenceError) as e:
        _raise_http(e)
    return ForgetResponse(deleted=True, message="Memory record deleted")


@router.get("/stats")
async def stats(service: MemoryService = Depends(get_memory_service)):
    """Index shape and recall settings."""
    return service.stats()
