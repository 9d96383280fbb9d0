"""
GEO Content Pipeline

Backend for a keyword-to-GEO-content dashboard that:
- Lists candidate keywords from a spreadsheet plus each user's own list
- Meters runs per user with an atomic usage ledger
- Collects "People Also Ask" questions through a scraping actor
- Drafts and reformats content for generative engines with model fallback
- Stores results as a cache and history, plus a refinement audit trail
"""

__version__ = "1.0.0"
__author__ = "GEO Content Pipeline Team"

from .config import PipelineConfig

from .models import (
    Identity,
    KeywordRecord,
    KeywordSource,
    UsageRecord,
    AnalysisResult,
    RefinementRecord,
    GenerationOptions,
    GenerationResult,
    PipelineStage,
    ErrorKind,
    ComplianceReport,
)

from .auth import AccessPolicy, AuthRequired, PermissionDenied, TokenIdentityResolver
from .database import Database
from .usage_ledger import QuotaExceeded, UsageLedger
from .keyword_source import KeywordCatalog
from .paa_collector import ExternalServiceError, PAACollector
from .llm_client import GenerationFailed, LLMClientError, ModelFallbackChain
from .result_store import ResultStore
from .compliance import check_compliance
from .pipeline import GeoPipeline, GeoStream

__all__ = [
    # Config
    "PipelineConfig",
    # Models
    "Identity",
    "KeywordRecord",
    "KeywordSource",
    "UsageRecord",
    "AnalysisResult",
    "RefinementRecord",
    "GenerationOptions",
    "GenerationResult",
    "PipelineStage",
    "ErrorKind",
    "ComplianceReport",
    # Components
    "AccessPolicy",
    "TokenIdentityResolver",
    "Database",
    "UsageLedger",
    "KeywordCatalog",
    "PAACollector",
    "ModelFallbackChain",
    "ResultStore",
    "GeoPipeline",
    "GeoStream",
    "check_compliance",
    # Errors
    "AuthRequired",
    "PermissionDenied",
    "QuotaExceeded",
    "ExternalServiceError",
    "GenerationFailed",
    "LLMClientError",
]
