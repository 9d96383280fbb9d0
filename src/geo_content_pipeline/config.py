# -*- coding: utf-8 -*-
"""
Centralized configuration for the GEO content pipeline.

This module provides a unified configuration dataclass that controls
model selection and fallback, scraping parameters, usage quotas,
administrator identities and storage.
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Optional


# Cache/history sharing policy:
# - "user": cache hits and history are scoped to the requesting user.
# - "global": every user shares one cache keyed on the keyword string.
CacheScope = Literal["user", "global"]

DEFAULT_MODEL = "claude-sonnet-4-20250514"

# Ordered fallback list, tried front to back until one model answers.
DEFAULT_MODELS: tuple[str, ...] = (
    "claude-sonnet-4-20250514",
    "claude-3-7-sonnet-20250219",
    "claude-3-5-haiku-20241022",
)

DEFAULT_ACTOR_ID = "apify/google-search-scraper"
DEFAULT_CONTACT_EMAIL = "admin@example.com"
UNLIMITED_USAGE = 999999


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class PipelineConfig:
    """
    Central configuration for the keyword-to-GEO-content pipeline.

    Attributes:
        anthropic_api_key: Key for the generation API. Falls back to
            ANTHROPIC_API_KEY when built via from_env().
        models: Ordered model identifiers for the fallback chain.
        default_model: Model tried first when the caller does not pick one.
        max_tokens: Token ceiling for each generation call.
        generation_timeout_seconds: Bounded wait for a single model call.

        apify_token: Credential for the scraping service. Collection fails
            with ExternalServiceError when it is missing.
        actor_id: Scraping actor identifier.
        country_code / language_code / results_per_page / mobile_results:
            Fixed locale, result-count and device-profile parameters sent
            with every scrape.
        scrape_timeout_seconds: Bounded wait for the scrape run to finish.
        scrape_max_attempts: Submission attempts for transient failures.

        default_max_usage: Cap given to new, unprivileged users.
        admin_emails: Identities treated as administrators. They get an
            effectively unlimited cap and the premium flag.
        contact_email: Channel shown to users who hit their quota.
        api_tokens: Bearer tokens for the HTTP API as
            "token:user_id:email,..." (GEO_API_TOKENS).

        keyword_file: Spreadsheet holding the candidate keyword list.
        spreadsheet_keyword_limit: How many spreadsheet keywords to surface.
            None means no limit.

        database_url: SQLAlchemy URL for the relational store.
        cache_scope: "user" (default) or "global" result sharing.
    """

    # Generation
    anthropic_api_key: Optional[str] = None
    models: list[str] = field(default_factory=lambda: list(DEFAULT_MODELS))
    default_model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    generation_timeout_seconds: float = 120.0

    # Scraping
    apify_token: Optional[str] = None
    actor_id: str = DEFAULT_ACTOR_ID
    apify_base_url: str = "https://api.apify.com/v2"
    country_code: str = "tw"
    language_code: str = "zh-TW"
    results_per_page: int = 10
    mobile_results: bool = False
    scrape_timeout_seconds: float = 180.0
    scrape_max_attempts: int = 3

    # Usage quota
    default_max_usage: int = 10
    admin_max_usage: int = UNLIMITED_USAGE
    admin_emails: set[str] = field(default_factory=set)
    contact_email: str = DEFAULT_CONTACT_EMAIL
    api_tokens: Optional[str] = None

    # Keyword source
    keyword_file: str = "data.xlsx"
    spreadsheet_keyword_limit: Optional[int] = 5

    # Storage
    database_url: str = "sqlite:///geo_pipeline.db"
    cache_scope: CacheScope = "user"

    def __post_init__(self):
        """Validate configuration values."""
        if not self.models:
            raise ValueError("models must contain at least one model identifier")
        if self.cache_scope not in ("user", "global"):
            raise ValueError(
                f"cache_scope must be 'user' or 'global', got '{self.cache_scope}'"
            )
        if self.default_max_usage < 0:
            raise ValueError(f"default_max_usage must be >= 0, got {self.default_max_usage}")
        if self.scrape_max_attempts < 1:
            raise ValueError(f"scrape_max_attempts must be >= 1, got {self.scrape_max_attempts}")
        if self.scrape_timeout_seconds <= 0 or self.generation_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        self.admin_emails = {email.strip().lower() for email in self.admin_emails if email.strip()}

    @property
    def shares_cache_globally(self) -> bool:
        """Check if cached results are shared across all users."""
        return self.cache_scope == "global"

    def model_order(self, preferred: Optional[str] = None) -> list[str]:
        """Return the fallback order with the preferred model moved to the front.

        Args:
            preferred: Model requested by the caller, if any. Unknown
                identifiers are still tried first.

        Returns:
            Model identifiers without duplicates.
        """
        first = preferred or self.default_model
        order = [first]
        order.extend(m for m in self.models if m != first)
        return order

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """Create config from environment variables.

        Recognised variables: ANTHROPIC_API_KEY, APIFY_API_TOKEN,
        GEO_MODELS, GEO_DEFAULT_MODEL, GEO_DATABASE_URL, GEO_ADMIN_EMAILS,
        GEO_CONTACT_EMAIL, GEO_KEYWORD_FILE, GEO_DEFAULT_MAX_USAGE,
        GEO_CACHE_SCOPE, GEO_SCRAPE_TIMEOUT, GEO_GENERATION_TIMEOUT,
        GEO_API_TOKENS.

        Args:
            **overrides: Override any config values after the environment.

        Returns:
            PipelineConfig populated from the environment.
        """
        env = os.environ
        values: dict = {
            "anthropic_api_key": env.get("ANTHROPIC_API_KEY"),
            "apify_token": env.get("APIFY_API_TOKEN"),
            "api_tokens": env.get("GEO_API_TOKENS"),
            "admin_emails": set(_split_csv(env.get("GEO_ADMIN_EMAILS"))),
        }
        models = _split_csv(env.get("GEO_MODELS"))
        if models:
            values["models"] = models
        if env.get("GEO_DEFAULT_MODEL"):
            values["default_model"] = env["GEO_DEFAULT_MODEL"]
        if env.get("GEO_DATABASE_URL"):
            values["database_url"] = env["GEO_DATABASE_URL"]
        if env.get("GEO_CONTACT_EMAIL"):
            values["contact_email"] = env["GEO_CONTACT_EMAIL"]
        if env.get("GEO_KEYWORD_FILE"):
            values["keyword_file"] = env["GEO_KEYWORD_FILE"]
        if env.get("GEO_DEFAULT_MAX_USAGE"):
            values["default_max_usage"] = int(env["GEO_DEFAULT_MAX_USAGE"])
        if env.get("GEO_CACHE_SCOPE"):
            values["cache_scope"] = env["GEO_CACHE_SCOPE"].strip().lower()
        if env.get("GEO_SCRAPE_TIMEOUT"):
            values["scrape_timeout_seconds"] = float(env["GEO_SCRAPE_TIMEOUT"])
        if env.get("GEO_GENERATION_TIMEOUT"):
            values["generation_timeout_seconds"] = float(env["GEO_GENERATION_TIMEOUT"])
        values.update(overrides)
        return cls(**values)
