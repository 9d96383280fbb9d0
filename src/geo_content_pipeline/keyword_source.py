"""
Keyword candidates for the dashboard: spreadsheet list plus each user's
personal list.

Only premium users may add or delete personal keywords.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from .auth import PermissionDenied, require_identity
from .config import PipelineConfig
from .database import Database, DBCustomKeyword, utcnow
from .keyword_loader import deduplicate_keywords, is_error_sentinel, read_spreadsheet_keywords
from .models import Identity, KeywordRecord, KeywordSource
from .usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


class DuplicateKeyword(Exception):
    """Raised when a user adds a keyword already on their list."""
    pass


class KeywordNotFound(Exception):
    """Raised when deleting a keyword the user does not own."""
    pass


def _to_record(row: DBCustomKeyword) -> KeywordRecord:
    return KeywordRecord(
        phrase=row.keyword,
        source=KeywordSource.CUSTOM,
        user_id=row.user_id,
        id=row.id,
        created_at=row.created_at,
    )


class KeywordCatalog:
    """Reads spreadsheet keywords and manages user-added ones."""

    def __init__(self, database: Database, ledger: UsageLedger, config: Optional[PipelineConfig] = None):
        self.database = database
        self.ledger = ledger
        self.config = config or ledger.config

    def spreadsheet_keywords(self) -> list[str]:
        """Spreadsheet list, or a single "Error:" sentinel on failure."""
        return read_spreadsheet_keywords(
            self.config.keyword_file, limit=self.config.spreadsheet_keyword_limit
        )

    def custom_keywords(self, identity: Optional[Identity]) -> list[KeywordRecord]:
        identity = require_identity(identity)
        with self.database.session_scope() as session:
            rows = (
                session.query(DBCustomKeyword)
                .filter(DBCustomKeyword.user_id == identity.user_id)
                .order_by(DBCustomKeyword.created_at.asc(), DBCustomKeyword.id.asc())
                .all()
            )
            return [_to_record(row) for row in rows]

    def all_keywords(self, identity: Optional[Identity]) -> list[KeywordRecord]:
        """Spreadsheet keywords followed by the caller's own, deduplicated."""
        records: list[KeywordRecord] = []
        spreadsheet = self.spreadsheet_keywords()
        if not is_error_sentinel(spreadsheet):
            records.extend(KeywordRecord(phrase=p) for p in spreadsheet)
        records.extend(self.custom_keywords(identity))
        return deduplicate_keywords(records)

    def _require_premium(self, identity: Identity) -> None:
        usage = self.ledger.get_or_create(identity)
        if not usage.is_premium:
            raise PermissionDenied("Custom keywords are available to premium accounts only")

    def add(self, identity: Optional[Identity], phrase: str) -> KeywordRecord:
        identity = require_identity(identity)
        phrase = phrase.strip()
        if not phrase:
            raise ValueError("Keyword must not be empty")
        self._require_premium(identity)

        row = DBCustomKeyword(user_id=identity.user_id, keyword=phrase, created_at=utcnow())
        try:
            with self.database.session_scope() as session:
                session.add(row)
                session.flush()
                record = _to_record(row)
        except IntegrityError:
            raise DuplicateKeyword(f"'{phrase}' is already on your keyword list")
        logger.info(f"{identity.user_id} added custom keyword '{phrase}'")
        return record

    def delete(self, identity: Optional[Identity], keyword_id: int) -> None:
        identity = require_identity(identity)
        self._require_premium(identity)
        with self.database.session_scope() as session:
            deleted = (
                session.query(DBCustomKeyword)
                .filter(
                    DBCustomKeyword.id == keyword_id,
                    DBCustomKeyword.user_id == identity.user_id,
                )
                .delete(synchronize_session=False)
            )
        if not deleted:
            raise KeywordNotFound(f"Keyword {keyword_id} not found")
        logger.info(f"{identity.user_id} deleted custom keyword {keyword_id}")
