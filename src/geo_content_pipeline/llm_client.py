"""
LLM client abstraction for GEO content generation.

This module wraps the Anthropic Messages API behind a small provider
interface and chains providers into an ordered fallback list: each model
is tried in turn until one answers.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

import anthropic
import httpx

from .config import PipelineConfig

logger = logging.getLogger(__name__)


class LLMClientError(Exception):
    """Raised when LLM operations fail."""
    pass


class GenerationFailed(LLMClientError):
    """Raised once every model in the fallback chain has failed."""

    def __init__(self, message: str, attempts: Optional[list[tuple[str, str]]] = None):
        super().__init__(message)
        self.attempts = attempts or []


# System prompt shared by every generation call
GEO_SYSTEM_PROMPT = """You are an expert in GEO (Generative Engine Optimization).
You write content that AI search engines (ChatGPT Search, Google AI Overviews,
Perplexity) can quote directly: answer first, clearly structured, scannable,
and strictly factual.

CRITICAL RULES - MUST FOLLOW:
1. Never invent facts, prices, statistics, brands or claims you cannot support
2. When specific product data is missing, compare concepts instead of inventing details
3. Output Markdown only - no commentary about the task itself"""


class LLMProvider:
    """
    A single model behind a uniform invoke/stream capability.

    Subclasses implement invoke() and stream(). Any exception raised by
    either counts as a failure of this model.
    """

    model: str = ""

    def invoke(self, prompt: str) -> str:
        raise NotImplementedError

    def stream(self, prompt: str) -> Iterator[str]:
        raise NotImplementedError


class AnthropicProvider(LLMProvider):
    """
    Claude model accessed through the Anthropic SDK.

    Args:
        model: Model identifier to use.
        api_key: API key. If None, reads from ANTHROPIC_API_KEY env var.
        max_tokens: Maximum tokens in each response.
        timeout: Bounded wait for one call, in seconds.
        client: Optional shared anthropic.Anthropic instance.
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        if client is None:
            client = _build_anthropic_client(api_key, timeout)
        self.client = client

    def invoke(self, prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=GEO_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

    def stream(self, prompt: str) -> Iterator[str]:
        with self.client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            system=GEO_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            for text in stream.text_stream:
                yield text


def _build_anthropic_client(api_key: Optional[str], timeout: float) -> anthropic.Anthropic:
    if not api_key:
        raise LLMClientError(
            "No API key provided. Set ANTHROPIC_API_KEY environment variable "
            "or pass api_key parameter."
        )
    # Custom httpx client so every call is bounded by the configured timeout
    http_client = httpx.Client(
        timeout=httpx.Timeout(timeout, connect=30.0),
        follow_redirects=True,
    )
    return anthropic.Anthropic(api_key=api_key, http_client=http_client, max_retries=0)


@dataclass
class StreamHandle:
    """Incremental model output plus the model that produced it.

    `model` is set once the first chunk has arrived.
    """
    chunks: Iterator[str]
    model: Optional[str] = None
    parts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.parts)


class ModelFallbackChain:
    """
    Ordered list of providers tried front to back.

    Args:
        providers: Providers in priority order. Must not be empty.
    """

    def __init__(self, providers: Iterable[LLMProvider]):
        self.providers = list(providers)
        if not self.providers:
            raise LLMClientError("Fallback chain needs at least one provider")

    @property
    def models(self) -> list[str]:
        return [p.model for p in self.providers]

    def starting_with(self, model: Optional[str]) -> "ModelFallbackChain":
        """Copy of the chain with the named model moved to the front."""
        if model is None:
            return self
        first = [p for p in self.providers if p.model == model]
        rest = [p for p in self.providers if p.model != model]
        return ModelFallbackChain(first + rest)

    def invoke(self, prompt: str, stage: str = "generation") -> tuple[str, str]:
        """
        Send the prompt to each model in order until one succeeds.

        Returns:
            (generated text, model identifier that produced it)

        Raises:
            GenerationFailed: If every model failed.
        """
        attempts: list[tuple[str, str]] = []
        for provider in self.providers:
            try:
                logger.info(f"{stage} using: {provider.model}")
                text = provider.invoke(prompt)
                if not text or not text.strip():
                    raise LLMClientError("empty response")
                return text, provider.model
            except Exception as e:
                logger.warning(f"{stage}: {provider.model} failed: {e}")
                attempts.append((provider.model, str(e)))
        raise GenerationFailed(f"All models failed during {stage}", attempts)

    def stream(self, prompt: str, stage: str = "generation") -> StreamHandle:
        """
        Stream the prompt through the first model that starts answering.

        A model that fails before producing its first chunk is skipped for
        the next one. Once output has been emitted, a failure ends the
        stream with GenerationFailed.
        """
        handle = StreamHandle(chunks=iter(()))
        handle.chunks = self._stream_chunks(prompt, stage, handle)
        return handle

    def _stream_chunks(self, prompt: str, stage: str, handle: StreamHandle) -> Iterator[str]:
        attempts: list[tuple[str, str]] = []
        for provider in self.providers:
            started = False
            try:
                logger.info(f"{stage} streaming with: {provider.model}")
                for chunk in provider.stream(prompt):
                    if not started:
                        started = True
                        handle.model = provider.model
                    handle.parts.append(chunk)
                    yield chunk
                if started:
                    return
                raise LLMClientError("empty response")
            except Exception as e:
                if started:
                    logger.error(f"{stage}: stream from {provider.model} broke mid-way: {e}")
                    raise GenerationFailed(f"Stream interrupted during {stage}", [(provider.model, str(e))])
                logger.warning(f"{stage}: {provider.model} failed before streaming: {e}")
                attempts.append((provider.model, str(e)))
        raise GenerationFailed(f"All models failed during {stage}", attempts)


def create_fallback_chain(
    config: PipelineConfig,
    preferred_model: Optional[str] = None,
    client: Optional[anthropic.Anthropic] = None,
) -> ModelFallbackChain:
    """
    Factory function to build the Anthropic fallback chain.

    Args:
        config: Supplies the API key, model list, token limit and timeout.
        preferred_model: Model to try first, if any.
        client: Shared anthropic.Anthropic instance. A new one is built
            when omitted.

    Returns:
        Configured ModelFallbackChain.
    """
    if client is None:
        client = _build_anthropic_client(config.anthropic_api_key, config.generation_timeout_seconds)
    providers = [
        AnthropicProvider(
            model=model,
            max_tokens=config.max_tokens,
            timeout=config.generation_timeout_seconds,
            client=client,
        )
        for model in config.model_order(preferred_model)
    ]
    return ModelFallbackChain(providers)


class AnthropicChainFactory:
    """
    Builds fallback chains that share one Anthropic client.

    The client, and its connection pool, is created on first use and
    reused by every chain until close() is called.

    Args:
        config: Supplies the API key, model list, token limit and timeout.
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self._client: Optional[anthropic.Anthropic] = None

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = _build_anthropic_client(
                self.config.anthropic_api_key, self.config.generation_timeout_seconds
            )
        return self._client

    def __call__(self, preferred_model: Optional[str] = None) -> ModelFallbackChain:
        return create_fallback_chain(self.config, preferred_model, client=self.client)

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        if self._client is not None:
            self._client.close()
            self._client = None
