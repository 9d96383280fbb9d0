"""
FastAPI wrapper for the GEO Content Pipeline - Vercel Serverless Function.

This module exposes the keyword dashboard backend as a REST API: keyword
listing, GEO content generation (JSON and streaming), usage metering,
refinement, history and the administrator endpoints.
"""

import base64
import json
import logging
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from geo_content_pipeline import __version__
from geo_content_pipeline.auth import AuthRequired, PermissionDenied
from geo_content_pipeline.compliance import check_compliance
from geo_content_pipeline.keyword_loader import is_error_sentinel
from geo_content_pipeline.keyword_source import DuplicateKeyword, KeywordNotFound
from geo_content_pipeline.llm_client import GenerationFailed
from geo_content_pipeline.models import ErrorKind, GenerationOptions, GenerationResult, Identity
from geo_content_pipeline.services import Services, build_services
from geo_content_pipeline.usage_ledger import QuotaExceeded, UsageRecordNotFound

logger = logging.getLogger(__name__)

PAA_HEADER = "X-PAA-Questions-Base64"
STREAM_INTERRUPTED_NOTE = "\n\n[Error] 內容生成中斷，請重新產生。"

app = FastAPI(
    title="GEO Content Pipeline API",
    description="Keyword to GEO-optimized content with PAA context, usage metering and model fallback",
    version=__version__,
)

# Enable CORS for all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Request / Response Models
# ============================================================================

class GenerateRequest(BaseModel):
    """Request model for GEO content generation."""
    model_config = ConfigDict(populate_by_name=True)

    keyword: str = Field(..., description="Keyword to generate content for")
    selected_model: Optional[str] = Field(None, alias="selectedModel", description="Model to try first")
    custom_prompt: Optional[str] = Field(
        None, alias="customPrompt", description="Custom instruction replacing the GEO formatting stage"
    )
    force_refresh: bool = Field(False, alias="forceRefresh", description="Skip the cached result")

    def to_options(self) -> GenerationOptions:
        return GenerationOptions(
            model=self.selected_model,
            custom_instruction=self.custom_prompt,
            force_refresh=self.force_refresh,
        )


class KeywordCreateRequest(BaseModel):
    """Request model for adding a personal keyword."""
    keyword: str = Field(..., description="Keyword phrase to add")


class RefineRequest(BaseModel):
    """Request model for manual content refinement."""
    model_config = ConfigDict(populate_by_name=True)

    original_content: str = Field(..., alias="originalContent")
    refinement_prompt: str = Field(..., alias="refinementPrompt")
    keyword: Optional[str] = None


class ComplianceRequest(BaseModel):
    """Request model for the compliance checklist."""
    content: str
    keyword: Optional[str] = None


class UsageUpdateRequest(BaseModel):
    """Administrator edit of a user's limits."""
    max_usage: int = Field(..., ge=0)
    is_premium: bool = False


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


# ============================================================================
# Dependencies
# ============================================================================

_services: Optional[Services] = None


def get_services() -> Services:
    """Process-wide services, built from the environment on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def get_identity(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> Optional[Identity]:
    """Resolve the bearer token to an Identity, or None."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return services.identity_resolver.resolve(authorization[7:].strip())


def require_user(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return identity


def require_admin(
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
) -> Identity:
    try:
        return services.policy.require_admin(identity)
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))


# ============================================================================
# Helpers
# ============================================================================

def _quota_response(e: QuotaExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={
            "error": "Usage limit exceeded",
            "message": e.message,
            "contactEmail": e.contact,
            "usage_count": e.usage_count,
            "max_usage": e.max_usage,
        },
    )


def _failure_response(result: GenerationResult) -> JSONResponse:
    """Map an error GenerationResult to an HTTP status and body."""
    body = result.to_dict()
    if result.error_kind == ErrorKind.QUOTA_EXCEEDED:
        body["error"] = "Usage limit exceeded"
        body["message"] = result.error_message
        if result.usage is not None:
            body["usage_count"] = result.usage.usage_count
            body["max_usage"] = result.usage.max_usage
        return JSONResponse(status_code=403, content=body)
    if result.error_kind == ErrorKind.AUTH_REQUIRED:
        return JSONResponse(status_code=401, content=body)
    if result.error_kind == ErrorKind.EXTERNAL_SERVICE:
        return JSONResponse(status_code=502, content=body)
    return JSONResponse(status_code=500, content=body)


def encode_paa_header(questions: list[str]) -> str:
    """Base64 of the UTF-8 JSON array, safe for an HTTP header."""
    payload = json.dumps(questions, ensure_ascii=False).encode("utf-8")
    return base64.b64encode(payload).decode("ascii")


def _guarded_chunks(chunks: Iterator[str], keyword: str) -> Iterator[str]:
    try:
        yield from chunks
    except GenerationFailed as e:
        logger.error(f"[{keyword}] Stream failed: {e}")
        yield STREAM_INTERRUPTED_NOTE


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/api/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@app.get("/api/keywords")
def list_keywords(
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Spreadsheet keywords plus the caller's personal list."""
    spreadsheet = services.catalog.spreadsheet_keywords()
    custom = services.catalog.custom_keywords(identity)
    return {
        "spreadsheet": spreadsheet,
        "spreadsheetError": spreadsheet[0] if is_error_sentinel(spreadsheet) else None,
        "custom": [
            {
                "id": record.id,
                "keyword": record.phrase,
                "created_at": record.created_at.isoformat() if record.created_at else None,
            }
            for record in custom
        ],
        "keywords": [record.phrase for record in services.catalog.all_keywords(identity)],
    }


@app.post("/api/keywords", status_code=201)
def add_keyword(
    request: KeywordCreateRequest,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Add a personal keyword (premium only)."""
    try:
        record = services.catalog.add(identity, request.keyword)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except DuplicateKeyword as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"id": record.id, "keyword": record.phrase}


@app.delete("/api/keywords/{keyword_id}")
def delete_keyword(
    keyword_id: int,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Delete one of the caller's personal keywords (premium only)."""
    try:
        services.catalog.delete(identity, keyword_id)
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except KeywordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}


@app.post("/api/generate")
def generate(
    request: GenerateRequest,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """
    Generate GEO content for a keyword.

    Returns the stored result when one exists for the keyword, unless
    forceRefresh or a custom prompt is given.
    """
    if not request.keyword.strip():
        raise HTTPException(status_code=400, detail="Missing keyword")
    result = services.pipeline.generate(identity, request.keyword, request.to_options())
    if not result.is_success:
        return _failure_response(result)
    return result.to_dict()


@app.post("/api/stream-geo")
def stream_geo(
    request: GenerateRequest,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """
    Streaming variant of /api/generate.

    Cache hits come back as JSON {"type": "cached", ...}. Fresh runs stream
    the formatted content as plain text, with the PAA questions in the
    X-PAA-Questions-Base64 header.
    """
    if not request.keyword.strip():
        raise HTTPException(status_code=400, detail="Missing keyword")
    stream = services.pipeline.stream_generate(identity, request.keyword, request.to_options())

    if stream.result is not None:
        if stream.result.is_success:
            return {
                "type": "cached",
                "content": stream.result.content,
                "paa": stream.result.paa_questions,
                "usedModel": stream.result.model_used,
            }
        return _failure_response(stream.result)

    return StreamingResponse(
        _guarded_chunks(stream.chunks, stream.keyword),
        media_type="text/plain; charset=utf-8",
        headers={PAA_HEADER: encode_paa_header(stream.paa_questions)},
    )


@app.get("/api/user-usage")
def get_user_usage(
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Caller's usage record, created with defaults on first access."""
    return services.ledger.get_or_create(identity).to_dict()


@app.post("/api/user-usage")
def reserve_user_usage(
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Consume one run from the caller's quota."""
    try:
        record = services.ledger.check_and_reserve(identity)
    except QuotaExceeded as e:
        return _quota_response(e)
    return record.to_dict()


@app.post("/api/refine-content")
def refine_content(
    request: RefineRequest,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Apply a manual revision request to generated content."""
    try:
        record = services.pipeline.refine_content(
            identity, request.original_content, request.refinement_prompt, request.keyword
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AuthRequired:
        raise HTTPException(status_code=401, detail="Unauthorized")
    except QuotaExceeded as e:
        return _quota_response(e)
    except GenerationFailed as e:
        logger.error(f"Refinement failed: {e} {e.attempts}")
        raise HTTPException(status_code=500, detail="所有模型都無法處理此請求，請稍後再試。")
    return {
        "refinedContent": record.refined_content,
        "usedModel": record.model_used,
        "success": True,
    }


@app.get("/api/history")
def history(
    limit: int = Query(20, ge=1, le=200),
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Caller's recent results, newest first."""
    results = services.store.list_recent(limit=limit, user_id=identity.user_id)
    return {"results": [result.to_dict() for result in results]}


@app.post("/api/compliance")
def compliance(
    request: ComplianceRequest,
    identity: Identity = Depends(require_user),
):
    """Run the GEO formatting checklist over arbitrary content."""
    return check_compliance(request.content, request.keyword).to_dict()


@app.get("/api/admin/users")
def admin_list_users(
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """All usage records, newest first."""
    return {"users": [record.to_dict() for record in services.ledger.list_records()]}


@app.put("/api/admin/users/{user_id}")
def admin_update_user(
    user_id: str,
    request: UsageUpdateRequest,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Change a user's cap and premium flag."""
    try:
        record = services.ledger.set_limits(user_id, request.max_usage, request.is_premium)
    except UsageRecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"{admin.email or admin.user_id} updated limits for {user_id}")
    return record.to_dict()


@app.post("/api/admin/users/{user_id}/reset")
def admin_reset_user(
    user_id: str,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Reset a user's counter to zero."""
    try:
        record = services.ledger.reset(user_id)
    except UsageRecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info(f"{admin.email or admin.user_id} reset usage for {user_id}")
    return record.to_dict()

