"""
Data models for the GEO content pipeline.

This module defines the core data structures passed between the keyword
source, usage ledger, collector, generation pipeline and result store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class KeywordSource(Enum):
    """Where a keyword came from."""
    SPREADSHEET = "spreadsheet"
    CUSTOM = "custom"


class PipelineStage(Enum):
    """Stages a single generation run moves through."""
    CACHE_CHECK = "cache_check"
    QUOTA_CHECK = "quota_check"
    COLLECTING = "collecting"
    DRAFTING = "drafting"
    REFINING = "refining"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class ErrorKind(Enum):
    """Classified failure reasons surfaced to callers."""
    AUTH_REQUIRED = "auth_required"
    QUOTA_EXCEEDED = "quota_exceeded"
    EXTERNAL_SERVICE = "external_service"
    GENERATION_FAILED = "generation_failed"


@dataclass
class Identity:
    """An authenticated caller."""
    user_id: str
    email: Optional[str] = None
    is_admin: bool = False

    def __post_init__(self) -> None:
        if self.email:
            self.email = self.email.strip().lower()


@dataclass
class KeywordRecord:
    """A keyword candidate plus its provenance."""
    phrase: str
    source: KeywordSource = KeywordSource.SPREADSHEET
    user_id: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Normalize the keyword phrase."""
        self.phrase = self.phrase.strip()

    @property
    def is_custom(self) -> bool:
        return self.source == KeywordSource.CUSTOM


@dataclass
class UsageRecord:
    """Per-user usage counter, cap and premium flag."""
    user_id: str
    email: Optional[str] = None
    usage_count: int = 0
    max_usage: int = 10
    is_premium: bool = False
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def remaining(self) -> Optional[int]:
        """Runs left before the cap, or None for premium accounts."""
        if self.is_premium:
            return None
        return max(self.max_usage - self.usage_count, 0)

    @property
    def is_exhausted(self) -> bool:
        return not self.is_premium and self.usage_count >= self.max_usage

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "usage_count": self.usage_count,
            "max_usage": self.max_usage,
            "is_premium": self.is_premium,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class AnalysisResult:
    """A stored keyword analysis: PAA questions plus generated content."""
    keyword: str
    paa_questions: list[str] = field(default_factory=list)
    content: str = ""
    draft_content: Optional[str] = None
    model_used: Optional[str] = None
    custom_instruction: Optional[str] = None
    user_id: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "keyword": self.keyword,
            "paa": self.paa_questions,
            "content": self.content,
            "usedModel": self.model_used,
            "customInstruction": self.custom_instruction,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class RefinementRecord:
    """Audit row for a manual post-hoc content edit."""
    user_id: str
    keyword: str
    original_content: str
    refinement_prompt: str
    refined_content: str
    model_used: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class GenerationOptions:
    """Caller-controlled knobs for a single generation run."""
    model: Optional[str] = None
    custom_instruction: Optional[str] = None
    force_refresh: bool = False

    def __post_init__(self) -> None:
        if self.custom_instruction is not None and not self.custom_instruction.strip():
            self.custom_instruction = None

    @property
    def bypasses_cache(self) -> bool:
        """Custom instructions change the output, so they never hit the cache."""
        return self.force_refresh or self.custom_instruction is not None


@dataclass
class ComplianceCheck:
    """A single checklist item."""
    name: str
    passed: bool
    detail: str = ""


@dataclass
class ComplianceReport:
    """Checklist result for a piece of generated content."""
    checks: list[ComplianceCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def score(self) -> float:
        if not self.checks:
            return 0.0
        return sum(1 for check in self.checks if check.passed) / len(self.checks)

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "score": round(self.score, 2),
            "checks": [
                {"name": c.name, "passed": c.passed, "detail": c.detail}
                for c in self.checks
            ],
        }


@dataclass
class GenerationResult:
    """Outcome of a pipeline run, successful or not."""
    keyword: str
    paa_questions: list[str] = field(default_factory=list)
    content: str = ""
    draft_content: Optional[str] = None
    model_used: Optional[str] = None
    cached: bool = False
    stage: PipelineStage = PipelineStage.DONE
    failed_stage: Optional[PipelineStage] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    contact: Optional[str] = None
    usage: Optional[UsageRecord] = None
    compliance: Optional[ComplianceReport] = None

    @property
    def status(self) -> str:
        return "error" if self.error_kind else "success"

    @property
    def is_success(self) -> bool:
        return self.error_kind is None

    @classmethod
    def from_cache(cls, stored: AnalysisResult) -> "GenerationResult":
        """Build a cache-sourced result from a stored analysis row."""
        return cls(
            keyword=stored.keyword,
            paa_questions=list(stored.paa_questions),
            content=stored.content,
            draft_content=stored.draft_content,
            model_used=stored.model_used,
            cached=True,
        )

    @classmethod
    def failure(
        cls,
        keyword: str,
        stage: PipelineStage,
        kind: ErrorKind,
        message: str,
        paa_questions: Optional[list[str]] = None,
        contact: Optional[str] = None,
        usage: Optional[UsageRecord] = None,
    ) -> "GenerationResult":
        """Build an error result carrying a user-facing message."""
        return cls(
            keyword=keyword,
            paa_questions=list(paa_questions or []),
            content="",
            stage=PipelineStage.FAILED,
            failed_stage=stage,
            error_message=message,
            error_kind=kind,
            contact=contact,
            usage=usage,
        )

    def to_dict(self) -> dict:
        data = {
            "keyword": self.keyword,
            "paa": self.paa_questions,
            "content": self.content,
            "draftContent": self.draft_content,
            "usedModel": self.model_used,
            "cached": self.cached,
            "status": self.status,
        }
        if self.error_message:
            data["errorMessage"] = self.error_message
            data["errorKind"] = self.error_kind.value if self.error_kind else None
            if self.failed_stage:
                data["failedStage"] = self.failed_stage.value
        if self.contact:
            data["contactEmail"] = self.contact
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.compliance is not None:
            data["compliance"] = self.compliance.to_dict()
        return data
