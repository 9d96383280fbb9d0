"""
GEO content generation pipeline.

A run moves through:

    CacheCheck -> QuotaCheck -> Collecting -> Drafting -> Refining -> Persisting -> Done

and can end in Failed from QuotaCheck, Collecting, Drafting or Refining.
Persistence is best-effort: a failed write is logged and the generated
content is still returned.

Known race: two concurrent cache misses for the same keyword both
generate and both insert. That wastes a run but corrupts nothing.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError

from .auth import AuthRequired, require_identity
from .compliance import check_compliance
from .config import PipelineConfig
from .llm_client import (
    AnthropicChainFactory,
    GenerationFailed,
    LLMClientError,
    ModelFallbackChain,
    StreamHandle,
)
from .models import (
    ErrorKind,
    GenerationOptions,
    GenerationResult,
    Identity,
    PipelineStage,
    RefinementRecord,
    UsageRecord,
)
from .paa_collector import ExternalServiceError, PAACollector
from .prompts import (
    build_custom_prompt,
    build_draft_prompt,
    build_geo_prompt,
    build_refinement_prompt,
)
from .result_store import ResultStore
from .usage_ledger import QuotaExceeded, UsageLedger

logger = logging.getLogger(__name__)

ChainFactory = Callable[[Optional[str]], ModelFallbackChain]

COLLECTION_FAILED_MESSAGE = "無法取得搜尋資料（PAA），請稍後再試。"
GENERATION_FAILED_MESSAGE = "AI 內容生成失敗，所有模型皆無法回應，請稍後再試。"
AUTH_REQUIRED_MESSAGE = "請先登入。"


@dataclass
class GeoStream:
    """
    Streaming variant of a pipeline run.

    Exactly one of `result` (cache hit or failure) and `handle` (live
    stream) is set. PAA questions are known before the first chunk, so
    callers can send them ahead of the streamed body.
    """
    keyword: str
    paa_questions: list[str] = field(default_factory=list)
    result: Optional[GenerationResult] = None
    handle: Optional[StreamHandle] = None
    chunks: Iterator[str] = field(default_factory=lambda: iter(()))
    draft_content: Optional[str] = None
    usage: Optional[UsageRecord] = None

    @property
    def cached(self) -> bool:
        return self.result is not None and self.result.cached

    @property
    def failed(self) -> bool:
        return self.result is not None and not self.result.is_success

    @property
    def model(self) -> Optional[str]:
        return self.handle.model if self.handle else None


class GeoPipeline:
    """
    Orchestrates cache lookup, quota, PAA collection, two-stage generation
    and persistence for one keyword at a time.

    Args:
        config: Pipeline configuration.
        ledger: Usage ledger gating each run.
        store: Result store used as cache and history.
        collector: PAA collector.
        chain_factory: Builds a fallback chain given an optional preferred
            model. Defaults to Anthropic chains sharing one client.
    """

    def __init__(
        self,
        config: PipelineConfig,
        ledger: UsageLedger,
        store: ResultStore,
        collector: PAACollector,
        chain_factory: Optional[ChainFactory] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.store = store
        self.collector = collector
        self._chain_factory = chain_factory or AnthropicChainFactory(config)

    def _cache_owner(self, identity: Identity) -> Optional[str]:
        return None if self.config.shares_cache_globally else identity.user_id

    def _lookup_cache(self, identity: Identity, keyword: str, options: GenerationOptions) -> Optional[GenerationResult]:
        if options.bypasses_cache:
            logger.info(f"[{keyword}] Cache bypassed (force_refresh={options.force_refresh}, "
                        f"custom={options.custom_instruction is not None})")
            return None
        try:
            cached = self.store.find_latest(keyword, user_id=self._cache_owner(identity))
        except SQLAlchemyError as e:
            logger.warning(f"[{keyword}] Cache lookup failed, generating fresh: {e}")
            return None
        if cached is None:
            return None
        logger.info(f"[{keyword}] Cache hit (result {cached.id})")
        result = GenerationResult.from_cache(cached)
        result.compliance = check_compliance(result.content, keyword)
        return result

    def _prepare(
        self,
        identity: Identity,
        keyword: str,
        options: GenerationOptions,
    ) -> tuple[Optional[GenerationResult], list[str], Optional[UsageRecord]]:
        """Run QuotaCheck and Collecting. Returns (failure or None, questions, usage)."""
        try:
            usage = self.ledger.check_and_reserve(identity)
        except QuotaExceeded as e:
            return GenerationResult.failure(
                keyword, PipelineStage.QUOTA_CHECK, ErrorKind.QUOTA_EXCEEDED,
                e.message, contact=e.contact, usage=e.record,
            ), [], None
        logger.info(f"[{keyword}] Quota reserved: {usage.usage_count}/{usage.max_usage}")

        try:
            questions = self.collector.collect(keyword)
        except ExternalServiceError as e:
            logger.error(f"[{keyword}] PAA collection failed: {e}")
            return GenerationResult.failure(
                keyword, PipelineStage.COLLECTING, ErrorKind.EXTERNAL_SERVICE,
                COLLECTION_FAILED_MESSAGE, usage=usage,
            ), [], usage
        return None, questions, usage

    def _draft(self, keyword: str, questions: list[str], options: GenerationOptions) -> tuple[ModelFallbackChain, str, str]:
        chain = self._chain_factory(options.model)
        draft, model = chain.invoke(build_draft_prompt(keyword, questions), stage="Drafting")
        return chain.starting_with(model), draft, model

    def _stage_two_prompt(self, keyword: str, questions: list[str], draft: str, options: GenerationOptions) -> str:
        if options.custom_instruction:
            return build_custom_prompt(keyword, questions, options.custom_instruction, draft)
        return build_geo_prompt(keyword, questions, draft)

    def _persist(
        self,
        identity: Identity,
        keyword: str,
        questions: list[str],
        content: str,
        draft: Optional[str],
        model: Optional[str],
        options: GenerationOptions,
    ) -> None:
        try:
            self.store.insert(
                keyword,
                questions,
                content,
                draft_content=draft,
                model_used=model,
                user_id=identity.user_id,
                custom_instruction=options.custom_instruction,
            )
        except SQLAlchemyError as e:
            logger.warning(f"[{keyword}] Failed to save result, returning it anyway: {e}")

    def generate(
        self,
        identity: Optional[Identity],
        keyword: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """
        Produce GEO content for a keyword.

        Args:
            identity: Authenticated caller.
            keyword: Keyword to generate for. Used verbatim as the cache key.
            options: Model choice, custom instruction and force-refresh.

        Returns:
            A successful GenerationResult (fresh or cache-sourced) or an
            error result with a classified, user-facing message.
        """
        options = options or GenerationOptions()
        keyword = keyword.strip()
        if not keyword:
            raise ValueError("Keyword must not be empty")
        try:
            identity = require_identity(identity)
        except AuthRequired:
            return GenerationResult.failure(
                keyword, PipelineStage.QUOTA_CHECK, ErrorKind.AUTH_REQUIRED, AUTH_REQUIRED_MESSAGE,
            )

        logger.info(f"Starting GEO pipeline for '{keyword}'")
        cached = self._lookup_cache(identity, keyword, options)
        if cached is not None:
            return cached

        failure, questions, usage = self._prepare(identity, keyword, options)
        if failure is not None:
            return failure

        try:
            chain, draft, draft_model = self._draft(keyword, questions, options)
        except LLMClientError as e:
            logger.error(f"[{keyword}] Drafting failed: {e}")
            return GenerationResult.failure(
                keyword, PipelineStage.DRAFTING, ErrorKind.GENERATION_FAILED,
                GENERATION_FAILED_MESSAGE, paa_questions=questions, usage=usage,
            )

        try:
            content, model = chain.invoke(
                self._stage_two_prompt(keyword, questions, draft, options), stage="Refining"
            )
        except GenerationFailed as e:
            logger.error(f"[{keyword}] Refining failed: {e}")
            return GenerationResult.failure(
                keyword, PipelineStage.REFINING, ErrorKind.GENERATION_FAILED,
                GENERATION_FAILED_MESSAGE, paa_questions=questions, usage=usage,
            )

        self._persist(identity, keyword, questions, content, draft, model, options)
        logger.info(f"[{keyword}] Done with {model}")

        return GenerationResult(
            keyword=keyword,
            paa_questions=questions,
            content=content,
            draft_content=draft,
            model_used=model,
            usage=usage,
            compliance=check_compliance(content, keyword),
        )

    def stream_generate(
        self,
        identity: Optional[Identity],
        keyword: str,
        options: Optional[GenerationOptions] = None,
    ) -> GeoStream:
        """
        Streaming entry point: same stages, Refining output yielded in chunks.

        The first chunk is read before returning, so a Refining stage where
        every model fails without output comes back as an error result.
        The result is persisted once the caller has consumed the whole
        stream. A stream that breaks part-way raises GenerationFailed from
        the chunk iterator and nothing is stored.
        """
        options = options or GenerationOptions()
        keyword = keyword.strip()
        if not keyword:
            raise ValueError("Keyword must not be empty")
        try:
            identity = require_identity(identity)
        except AuthRequired:
            return GeoStream(keyword=keyword, result=GenerationResult.failure(
                keyword, PipelineStage.QUOTA_CHECK, ErrorKind.AUTH_REQUIRED, AUTH_REQUIRED_MESSAGE,
            ))

        cached = self._lookup_cache(identity, keyword, options)
        if cached is not None:
            return GeoStream(keyword=keyword, paa_questions=cached.paa_questions, result=cached)

        failure, questions, usage = self._prepare(identity, keyword, options)
        if failure is not None:
            return GeoStream(keyword=keyword, result=failure)

        try:
            chain, draft, _ = self._draft(keyword, questions, options)
        except LLMClientError as e:
            logger.error(f"[{keyword}] Drafting failed: {e}")
            return GeoStream(keyword=keyword, paa_questions=questions, result=GenerationResult.failure(
                keyword, PipelineStage.DRAFTING, ErrorKind.GENERATION_FAILED,
                GENERATION_FAILED_MESSAGE, paa_questions=questions, usage=usage,
            ))

        handle = chain.stream(self._stage_two_prompt(keyword, questions, draft, options), stage="Refining")
        try:
            first = next(handle.chunks)
        except GenerationFailed as e:
            logger.error(f"[{keyword}] Refining failed before any output: {e}")
            return GeoStream(keyword=keyword, paa_questions=questions, result=GenerationResult.failure(
                keyword, PipelineStage.REFINING, ErrorKind.GENERATION_FAILED,
                GENERATION_FAILED_MESSAGE, paa_questions=questions, usage=usage,
            ))

        def persisting_chunks() -> Iterator[str]:
            yield from itertools.chain([first], handle.chunks)
            self._persist(identity, keyword, questions, handle.text, draft, handle.model, options)
            logger.info(f"[{keyword}] Stream complete with {handle.model}")

        return GeoStream(
            keyword=keyword,
            paa_questions=questions,
            handle=handle,
            chunks=persisting_chunks(),
            draft_content=draft,
            usage=usage,
        )

    def refine_content(
        self,
        identity: Optional[Identity],
        original_content: str,
        refinement_prompt: str,
        keyword: Optional[str] = None,
    ) -> RefinementRecord:
        """
        Apply a manual revision request to already generated content.

        Consumes one run from the caller's quota and records the edit in
        the refinement audit trail (best-effort).

        Raises:
            AuthRequired: No authenticated identity.
            ValueError: Missing content or revision request.
            QuotaExceeded: The caller is out of runs.
            GenerationFailed: Every model failed.
        """
        identity = require_identity(identity)
        if not original_content or not original_content.strip():
            raise ValueError("Missing original content")
        if not refinement_prompt or not refinement_prompt.strip():
            raise ValueError("Missing refinement prompt")

        self.ledger.check_and_reserve(identity)
        try:
            chain = self._chain_factory(None)
        except LLMClientError as e:
            raise GenerationFailed(str(e)) from e
        refined, model = chain.invoke(
            build_refinement_prompt(original_content, refinement_prompt), stage="Refinement"
        )

        record = RefinementRecord(
            user_id=identity.user_id,
            keyword=(keyword or "").strip() or "Unknown",
            original_content=original_content,
            refinement_prompt=refinement_prompt,
            refined_content=refined,
            model_used=model,
        )
        try:
            record = self.store.insert_refinement(record)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to save refinement: {e}")
        return record
