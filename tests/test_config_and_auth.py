# -*- coding: utf-8 -*-
"""
Tests for PipelineConfig and the identity/access policy.
"""

from dataclasses import replace

import pytest

from geo_content_pipeline.auth import (
    AccessPolicy,
    AuthRequired,
    PermissionDenied,
    TokenIdentityResolver,
    require_identity,
)
from geo_content_pipeline.config import DEFAULT_MODELS, PipelineConfig
from geo_content_pipeline.database import Database
from geo_content_pipeline.services import build_services

from conftest import FakeCollector


class TestPipelineConfig:
    """Tests for PipelineConfig dataclass."""

    def test_default_config(self):
        """Test default configuration values."""
        config = PipelineConfig()
        assert config.models == list(DEFAULT_MODELS)
        assert config.country_code == "tw"
        assert config.language_code == "zh-TW"
        assert config.results_per_page == 10
        assert config.mobile_results is False
        assert config.default_max_usage == 10
        assert config.spreadsheet_keyword_limit == 5
        assert config.cache_scope == "user"
        assert config.shares_cache_globally is False

    def test_invalid_cache_scope(self):
        with pytest.raises(ValueError, match="cache_scope"):
            PipelineConfig(cache_scope="team")

    def test_empty_models_rejected(self):
        with pytest.raises(ValueError, match="models"):
            PipelineConfig(models=[])

    def test_negative_default_cap_rejected(self):
        with pytest.raises(ValueError, match="default_max_usage"):
            PipelineConfig(default_max_usage=-1)

    def test_admin_emails_normalized(self):
        config = PipelineConfig(admin_emails={" Admin@Example.com ", ""})
        assert config.admin_emails == {"admin@example.com"}

    def test_model_order_preferred_first(self):
        config = PipelineConfig(models=["a", "b", "c"], default_model="a")

        assert config.model_order() == ["a", "b", "c"]
        assert config.model_order("c") == ["c", "a", "b"]
        assert config.model_order("x") == ["x", "a", "b", "c"]

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        monkeypatch.setenv("APIFY_API_TOKEN", "apify-env")
        monkeypatch.setenv("GEO_MODELS", "m1, m2")
        monkeypatch.setenv("GEO_DEFAULT_MODEL", "m2")
        monkeypatch.setenv("GEO_ADMIN_EMAILS", "a@x.com,B@x.com")
        monkeypatch.setenv("GEO_DEFAULT_MAX_USAGE", "25")
        monkeypatch.setenv("GEO_CACHE_SCOPE", "GLOBAL")
        monkeypatch.setenv("GEO_API_TOKENS", "t1:user-1")

        config = PipelineConfig.from_env(contact_email="help@x.com")

        assert config.anthropic_api_key == "sk-env"
        assert config.apify_token == "apify-env"
        assert config.models == ["m1", "m2"]
        assert config.model_order() == ["m2", "m1"]
        assert config.admin_emails == {"a@x.com", "b@x.com"}
        assert config.default_max_usage == 25
        assert config.shares_cache_globally is True
        assert config.contact_email == "help@x.com"
        assert config.api_tokens == "t1:user-1"


class TestAccessPolicy:
    """Tests for administrator detection."""

    def test_identify_admin(self):
        policy = AccessPolicy(["admin@example.com"])

        assert policy.identify("u1", "ADMIN@example.com").is_admin is True
        assert policy.identify("u2", "user@example.com").is_admin is False
        assert policy.identify("u3").is_admin is False

    def test_require_admin(self):
        policy = AccessPolicy(["admin@example.com"])

        with pytest.raises(PermissionDenied):
            policy.require_admin(policy.identify("u2", "user@example.com"))
        with pytest.raises(AuthRequired):
            policy.require_admin(None)

    def test_require_identity(self):
        with pytest.raises(AuthRequired):
            require_identity(None)


class TestTokenIdentityResolver:
    """Tests for static bearer-token resolution."""

    def test_resolves_tokens(self):
        policy = AccessPolicy(["admin@example.com"])
        resolver = TokenIdentityResolver.from_string(
            "t1:user-1:user@example.com, t2:user-2:admin@example.com, t3:user-3", policy
        )

        assert resolver.resolve("t1").user_id == "user-1"
        assert resolver.resolve("t2").is_admin is True
        assert resolver.resolve("t3").email is None
        assert resolver.resolve("missing") is None
        assert resolver.resolve(None) is None

    def test_malformed_entries_skipped(self):
        resolver = TokenIdentityResolver.from_string("bad,:nouser,t1:", AccessPolicy())

        assert resolver.resolve("bad") is None
        assert resolver.resolve("t1") is None


class TestServicesIdentityResolver:
    """Tests for the resolver wired up with the other services."""

    def test_built_from_config_tokens(self, config: PipelineConfig, database: Database):
        services = build_services(
            replace(config, api_tokens="t1:user-1:admin@example.com"),
            database=database,
            collector=FakeCollector(),
        )

        identity = services.identity_resolver.resolve("t1")

        assert identity.user_id == "user-1"
        assert identity.is_admin is True

    def test_no_tokens_rejects_everything(self, config: PipelineConfig, database: Database):
        services = build_services(config, database=database, collector=FakeCollector())

        assert services.identity_resolver.resolve("t1") is None
