"""
DevIntel Server

FastAPI front end for the hybrid search pipeline.

Endpoints:
- POST /rag-search: hybrid search, optionally with a cited answer
- POST /rag-search/paginated: hybrid search, one page of combined results
- GET /health: Health check

Errors:
- 400: blank question, page size outside 1..500, page below 1
- 503: pipeline not initialized, or an answer was requested without an LLM
- 500: anything else, including both search branches failing
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .common.config import DevIntelConfig, load_config
from .common.errors import ConfigurationError
from .retriever.pipeline import HybridSearchPipeline
from .retriever.request import RequestContext, UserProfile

logger = logging.getLogger("devintel.server")

MAX_PAGE_SIZE = 500

# Global state
config: Optional[DevIntelConfig] = None
pipeline: Optional[HybridSearchPipeline] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline on startup unless one was injected"""
    global config, pipeline

    owned = False
    if pipeline is None:
        config = load_config()
        try:
            pipeline = HybridSearchPipeline.from_config(config)
            owned = True
            logger.info("Pipeline ready (answers %s)", "enabled" if pipeline.can_answer else "disabled")
        except ConfigurationError as e:
            logger.error("Pipeline not initialized: %s", e)

    yield

    if owned and pipeline is not None:
        await pipeline.close()
        pipeline = None


app = FastAPI(
    title="DevIntel",
    description="Hybrid vector and lexical search with cited answers",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Request Models
# =============================================================================

class RagSearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    chunker: Optional[str] = None
    use_audited_only: bool = Field(False, alias="useAuditedPocsOnly")
    enable_llm: bool = Field(False, alias="enableLLM")
    page_size: Optional[int] = Field(None, alias="pageSize")
    content_types: List[str] = Field(default_factory=list, alias="contentTypes")
    attendee_filters: bool = Field(False, alias="attendeeFilters")
    app: Optional[str] = None
    email: Optional[str] = None
    token: Optional[str] = None

    def to_context(self, default_app: str) -> RequestContext:
        return RequestContext(
            app=self.app or default_app,
            user=UserProfile(email=self.email, token=self.token),
            chunker=self.chunker,
            use_audited_only=self.use_audited_only,
            page_size=self.page_size,
            content_types=tuple(self.content_types),
            attendee_filters=self.attendee_filters,
        )


class PaginatedRagSearchRequest(RagSearchRequest):
    page: int = 1


def _validate(request: RagSearchRequest) -> None:
    if not request.question or not request.question.strip():
        raise HTTPException(status_code=400, detail="question is required")
    if request.page_size is not None and not (1 <= request.page_size <= MAX_PAGE_SIZE):
        raise HTTPException(status_code=400, detail=f"pageSize must be between 1 and {MAX_PAGE_SIZE}")


def _require_pipeline() -> HybridSearchPipeline:
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Search pipeline not initialized")
    return pipeline


def _default_app() -> str:
    return config.server.app if config is not None else "entwickler"


def _failure(e: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Search failed", "error": str(e)},
    )


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "devintel",
        "initialized": pipeline is not None,
        "answers_available": pipeline.can_answer if pipeline else False,
    }


@app.post("/rag-search")
async def rag_search(request: RagSearchRequest):
    _validate(request)
    search_pipeline = _require_pipeline()
    try:
        response = await search_pipeline.search(
            request.question.strip(),
            request.to_context(_default_app()),
            enable_answer=request.enable_llm,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("RAG search failed: %s", e, exc_info=True)
        return _failure(e)
    return {"success": True, "data": response.to_dict()}


@app.post("/rag-search/paginated")
async def rag_search_paginated(request: PaginatedRagSearchRequest):
    _validate(request)
    if request.page < 1:
        raise HTTPException(status_code=400, detail="page must be 1 or greater")
    search_pipeline = _require_pipeline()
    try:
        response = await search_pipeline.search_paginated(
            request.question.strip(),
            request.to_context(_default_app()),
            page=request.page,
            page_size=request.page_size,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("Paginated RAG search failed: %s", e, exc_info=True)
        return _failure(e)
    return {"success": True, "data": response.to_dict()}


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the DevIntel server"""
    import uvicorn

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    server_config = load_config().server

    logger.info("Starting server on %s:%d", server_config.host, server_config.port)
    uvicorn.run(
        "devintel.server:app",
        host=server_config.host,
        port=server_config.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
