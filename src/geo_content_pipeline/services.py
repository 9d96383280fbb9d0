"""
Wiring of the pipeline components from one PipelineConfig.

Both the HTTP app and the CLI build their collaborators here so that
they share the same database, ledger and store.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .auth import AccessPolicy, TokenIdentityResolver
from .config import PipelineConfig
from .database import Database
from .keyword_source import KeywordCatalog
from .paa_collector import PAACollector
from .pipeline import ChainFactory, GeoPipeline
from .result_store import ResultStore
from .usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Configured collaborators for one process."""
    config: PipelineConfig
    database: Database
    policy: AccessPolicy
    identity_resolver: TokenIdentityResolver
    ledger: UsageLedger
    store: ResultStore
    catalog: KeywordCatalog
    collector: PAACollector
    pipeline: GeoPipeline


def build_services(
    config: Optional[PipelineConfig] = None,
    database: Optional[Database] = None,
    collector: Optional[PAACollector] = None,
    chain_factory: Optional[ChainFactory] = None,
) -> Services:
    """
    Build every component and make sure the tables exist.

    Args:
        config: Configuration. Defaults to PipelineConfig.from_env().
        database: Existing database handle. Built from config.database_url
            when omitted.
        collector: PAA collector override.
        chain_factory: Fallback chain factory override.
    """
    config = config or PipelineConfig.from_env()
    database = database or Database(config.database_url)
    database.create_all()

    policy = AccessPolicy(config.admin_emails)
    identity_resolver = TokenIdentityResolver.from_string(config.api_tokens, policy)
    ledger = UsageLedger(database, config, policy)
    store = ResultStore(database)
    catalog = KeywordCatalog(database, ledger, config)
    collector = collector or PAACollector(config)
    pipeline = GeoPipeline(config, ledger, store, collector, chain_factory=chain_factory)

    logger.info(f"Services ready (database={database.url}, cache_scope={config.cache_scope})")
    return Services(
        config=config,
        database=database,
        policy=policy,
        identity_resolver=identity_resolver,
        ledger=ledger,
        store=store,
        catalog=catalog,
        collector=collector,
        pipeline=pipeline,
    )
