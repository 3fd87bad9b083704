"""
Memory API Routes
=================

Endpoints for indexing, search, routing and Cold tier consolidation.

Endpoints:
    POST /api/memory/documents            - Index a document
    DELETE /api/memory/documents/{id}     - Remove a document and its chunks
    POST /api/memory/search               - Similarity search (Warm + Cold)
    GET  /api/memory/hot                  - Current Hot memory block
    POST /api/memory/recall               - Facts, chunks and summaries about a topic
    POST /api/memory/pre-route            - Answer trivial queries without retrieval
    POST /api/memory/route                - Retrieval plan for a query
    POST /api/memory/context              - Full pipeline: pre-route, route, retrieve
    POST /api/memory/consolidation/run    - Run consolidation now
    POST /api/memory/consolidation/plan   - Preview consolidation and get a token
    POST /api/memory/consolidation/commit - Run consolidation if the token still matches
    GET  /api/memory/stats                - Index statistics
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from src.knowledge.errors import ModelUnavailable, StalePlanError, StoreUnavailable
from src.knowledge.models import DocType, Document, TierScope
from src.memory.service import MemoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/memory", tags=["Memory"])


def get_service(request: Request) -> MemoryService:
    """Memory service attached to the application at startup."""
    service = getattr(request.app.state, "memory_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Memory service not initialized")
    return service


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class IndexRequest(BaseModel):
    """Document to index."""
    content: str
    title: str = "Untitled"
    doc_type: DocType = DocType.NOTE
    id: Optional[str] = Field(None, description="Generated when omitted")
    created_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IndexResponse(BaseModel):
    document_id: str
    status: str
    chunk_count: int
    error: Optional[str] = None


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: Optional[int] = Field(None, ge=1, le=50)
    min_score: Optional[float] = Field(None, ge=0, le=1)
    tier_scope: TierScope = TierScope.ALL


class SearchResultModel(BaseModel):
    chunk_id: str
    document_id: Optional[str]
    content: str
    score: float
    tier: str
    match_type: str
    document_title: Optional[str] = None


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResultModel]
    formatted_context: str


class QueryRequest(BaseModel):
    query: str


class RecallRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    top_k: Optional[int] = Field(None, ge=1, le=50)


class PreRouteResponse(BaseModel):
    handled: bool
    answer: Optional[str] = None
    category: Optional[str] = None


class RouteResponse(BaseModel):
    mode: str
    tier_scope: str
    reason: str
    escalated: bool = False


class HotMemoryResponse(BaseModel):
    hot_memory: str


class CommitRequest(BaseModel):
    token: str = Field(..., min_length=1)


# =============================================================================
# INDEXING
# =============================================================================

@router.post("/documents", response_model=IndexResponse)
def index_document(request: IndexRequest, service: MemoryService = Depends(get_service)):
    """
    Index a document into the Warm tier.

    Embedding failures do not fail the request: the document is stored
    with status "failed" and can be retried with the reindex command.
    """
    document = Document(
        id=request.id or f"doc_{uuid.uuid4().hex[:12]}",
        doc_type=request.doc_type,
        title=request.title,
        content=request.content,
        tags=request.tags,
        metadata=request.metadata,
    )
    if request.created_at is not None:
        document.created_at = request.created_at

    try:
        result = service.index_document(document)
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")

    return IndexResponse(
        document_id=result.document_id,
        status=result.status.value,
        chunk_count=result.chunk_count,
        error=result.error,
    )


@router.delete("/documents/{document_id}")
def remove_document(document_id: str, service: MemoryService = Depends(get_service)):
    try:
        removed = service.remove_document(document_id)
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")

    if not removed:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
    return {"document_id": document_id, "removed": True}


# =============================================================================
# SEARCH & MEMORY
# =============================================================================

@router.post("/search", response_model=SearchResponse)
def search_memory(request: SearchRequest, service: MemoryService = Depends(get_service)):
    """Similarity search over Warm chunks and Cold summaries, with lexical fallback."""
    try:
        results = service.search(
            request.query,
            top_k=request.top_k,
            min_score=request.min_score,
            tier_scope=request.tier_scope,
        )
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")

    return SearchResponse(
        query=request.query,
        results=[SearchResultModel(**r.to_dict()) for r in results],
        formatted_context=service.search_engine.format_context(results),
    )


@router.get("/hot", response_model=HotMemoryResponse)
def get_hot_memory(service: MemoryService = Depends(get_service)):
    try:
        return HotMemoryResponse(hot_memory=service.build_hot_memory())
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")


@router.post("/recall")
def recall_topic(request: RecallRequest, service: MemoryService = Depends(get_service)):
    """What the memory holds about a topic: Hot facts plus Warm and Cold matches."""
    try:
        recalled = service.recall(request.topic, top_k=request.top_k)
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")

    return {
        "topic": request.topic,
        "facts": [f.to_record() for f in recalled["facts"]],
        "results": [r.to_dict() for r in recalled["results"]],
    }


# =============================================================================
# ROUTING
# =============================================================================

@router.post("/pre-route", response_model=PreRouteResponse)
def pre_route(request: QueryRequest, service: MemoryService = Depends(get_service)):
    """Answer greetings, acknowledgments, arithmetic, time and date directly."""
    return PreRouteResponse(**service.check_trivial(request.query).to_dict())


@router.post("/route", response_model=RouteResponse)
def route_query(request: QueryRequest, service: MemoryService = Depends(get_service)):
    return RouteResponse(**service.route(request.query).to_dict())


@router.post("/context")
def answer_context(request: QueryRequest, service: MemoryService = Depends(get_service)):
    """
    Full request pipeline.

    Returns the trivial answer when the pre-router handles the query,
    otherwise the retrieval plan, Hot memory, results and formatted context.
    """
    try:
        return service.answer_context(request.query).to_dict()
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")


# =============================================================================
# CONSOLIDATION
# =============================================================================

@router.post("/consolidation/run")
def run_consolidation(service: MemoryService = Depends(get_service)):
    try:
        return service.run_consolidation().to_dict()
    except ModelUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Consolidation unavailable: {e}")
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")


@router.post("/consolidation/plan")
def plan_consolidation(service: MemoryService = Depends(get_service)):
    """Preview the batches the next run would archive, with a confirmation token."""
    try:
        return service.plan_consolidation().to_dict()
    except ModelUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Consolidation unavailable: {e}")
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")


@router.post("/consolidation/commit")
def commit_consolidation(request: CommitRequest, service: MemoryService = Depends(get_service)):
    """Run consolidation only if the plan still matches the token."""
    try:
        return service.commit_consolidation(request.token).to_dict()
    except StalePlanError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ModelUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Consolidation unavailable: {e}")
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")


# =============================================================================
# STATS
# =============================================================================

@router.get("/stats")
def get_stats(service: MemoryService = Depends(get_service)):
    try:
        return service.stats()
    except StoreUnavailable as e:
        logger.error(f"Memory stats failed: {e}")
        raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")
