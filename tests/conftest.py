"""
Pytest fixtures and configuration for GEO Content Pipeline tests.
"""

from pathlib import Path
from typing import Iterator, Optional

import pandas as pd
import pytest

from geo_content_pipeline.auth import AccessPolicy
from geo_content_pipeline.config import PipelineConfig
from geo_content_pipeline.database import Database
from geo_content_pipeline.llm_client import LLMProvider, ModelFallbackChain
from geo_content_pipeline.models import Identity
from geo_content_pipeline.paa_collector import ExternalServiceError
from geo_content_pipeline.pipeline import GeoPipeline
from geo_content_pipeline.result_store import ResultStore
from geo_content_pipeline.usage_ledger import UsageLedger

ADMIN_EMAIL = "admin@example.com"

SAMPLE_GEO_CONTENT = """魚油推薦首選高濃度 rTG 型，每日補充 1000mg 即可。

## 魚油怎麼挑？

- **濃度**：選擇 EPA+DHA 含量高的產品
- **型態**：rTG 型吸收率較佳

### 常見型態比較

| 型態 | 吸收率 | 價格 |
|------|--------|------|
| TG | 中 | 中 |
| rTG | 高 | 高 |
| EE | 低 | 低 |
"""


class FakeProvider(LLMProvider):
    """Scripted provider that records every prompt it receives."""

    def __init__(
        self,
        model: str,
        response: str = SAMPLE_GEO_CONTENT,
        fail: bool = False,
        chunks: Optional[list[str]] = None,
        fail_after_chunks: Optional[int] = None,
    ):
        self.model = model
        self.response = response
        self.fail = fail
        self.chunks = chunks
        self.fail_after_chunks = fail_after_chunks
        self.prompts: list[str] = []
        self.stream_prompts: list[str] = []

    def invoke(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError(f"{self.model} unavailable")
        return self.response

    def stream(self, prompt: str) -> Iterator[str]:
        self.stream_prompts.append(prompt)
        if self.fail:
            raise RuntimeError(f"{self.model} unavailable")
        chunks = self.chunks if self.chunks is not None else [self.response[:20], self.response[20:]]
        for i, chunk in enumerate(chunks):
            if self.fail_after_chunks is not None and i >= self.fail_after_chunks:
                raise RuntimeError(f"{self.model} connection reset")
            yield chunk

    @property
    def calls(self) -> int:
        return len(self.prompts) + len(self.stream_prompts)


class FakeCollector:
    """Stand-in for PAACollector returning canned questions."""

    def __init__(self, questions: Optional[list[str]] = None, error: Optional[str] = None):
        self.questions = questions if questions is not None else []
        self.error = error
        self.keywords: list[str] = []

    def collect(self, keyword: str) -> list[str]:
        self.keywords.append(keyword)
        if self.error:
            raise ExternalServiceError(self.error)
        return list(self.questions)


class FakeChainFactory:
    """Builds fallback chains over FakeProviders in the configured model order."""

    def __init__(self, config: PipelineConfig, providers: dict[str, FakeProvider]):
        self.config = config
        self.providers = providers
        self.requested: list[Optional[str]] = []

    def __call__(self, preferred_model: Optional[str]) -> ModelFallbackChain:
        self.requested.append(preferred_model)
        order = self.config.model_order(preferred_model)
        return ModelFallbackChain(self.providers[m] for m in order if m in self.providers)

    @property
    def total_calls(self) -> int:
        return sum(p.calls for p in self.providers.values())


@pytest.fixture
def config(tmp_path: Path) -> PipelineConfig:
    """Configuration backed by a temporary SQLite file."""
    return PipelineConfig(
        database_url=f"sqlite:///{tmp_path / 'geo.db'}",
        keyword_file=str(tmp_path / "data.xlsx"),
        models=["model-a", "model-b", "model-c"],
        default_model="model-a",
        admin_emails={ADMIN_EMAIL},
        apify_token="test-token",
    )


@pytest.fixture
def database(config: PipelineConfig) -> Database:
    db = Database(config.database_url)
    db.create_all()
    return db


@pytest.fixture
def policy(config: PipelineConfig) -> AccessPolicy:
    return AccessPolicy(config.admin_emails)


@pytest.fixture
def ledger(database: Database, config: PipelineConfig, policy: AccessPolicy) -> UsageLedger:
    return UsageLedger(database, config, policy)


@pytest.fixture
def store(database: Database) -> ResultStore:
    return ResultStore(database)


@pytest.fixture
def alice(policy: AccessPolicy) -> Identity:
    return policy.identify("user-alice", "alice@example.com")


@pytest.fixture
def bob(policy: AccessPolicy) -> Identity:
    return policy.identify("user-bob", "bob@example.com")


@pytest.fixture
def admin(policy: AccessPolicy) -> Identity:
    return policy.identify("user-admin", ADMIN_EMAIL)


@pytest.fixture
def providers() -> dict[str, FakeProvider]:
    return {
        "model-a": FakeProvider("model-a"),
        "model-b": FakeProvider("model-b"),
        "model-c": FakeProvider("model-c"),
    }


@pytest.fixture
def chain_factory(config: PipelineConfig, providers: dict[str, FakeProvider]) -> FakeChainFactory:
    return FakeChainFactory(config, providers)


@pytest.fixture
def collector() -> FakeCollector:
    return FakeCollector(questions=["魚油什麼時候吃最好？", "魚油有什麼副作用？"])


@pytest.fixture
def pipeline(
    config: PipelineConfig,
    ledger: UsageLedger,
    store: ResultStore,
    collector: FakeCollector,
    chain_factory: FakeChainFactory,
) -> GeoPipeline:
    return GeoPipeline(config, ledger, store, collector, chain_factory=chain_factory)


@pytest.fixture
def sample_keywords_excel(config: PipelineConfig) -> Path:
    """Keyword spreadsheet at the configured location, seven rows."""
    xlsx_path = Path(config.keyword_file)
    df = pd.DataFrame({
        "Keyword": ["魚油推薦", "葉黃素推薦", "益生菌推薦", "膠原蛋白推薦", "維他命D推薦", "鈣片推薦", "薑黃推薦"],
        "Volume": [5400, 4400, 3600, 2900, 1900, 1300, 880],
    })
    df.to_excel(xlsx_path, index=False)
    return xlsx_path


@pytest.fixture
def sample_keywords_csv(tmp_path: Path) -> Path:
    """Create a sample keywords CSV file."""
    csv_path = tmp_path / "keywords.csv"
    csv_content = """keyword,search_volume
魚油推薦,5400
葉黃素推薦,4400

益生菌推薦,3600
"""
    csv_path.write_text(csv_content, encoding="utf-8")
    return csv_path
