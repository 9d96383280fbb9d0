"""
Per-user usage ledger.

Each user has one row holding a run counter, a cap and a premium flag.
Reservations are a single conditional UPDATE so that concurrent requests
from the same user can never push the counter past the cap.
"""

import logging
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from .auth import AccessPolicy, require_identity
from .config import PipelineConfig
from .database import Database, DBUserUsage, utcnow
from .models import Identity, UsageRecord

logger = logging.getLogger(__name__)

QUOTA_MESSAGE = "您已達到使用次數上限，請聯繫管理員以獲得更多使用次數。"


class QuotaExceeded(Exception):
    """Raised when a non-premium user has used up their runs."""

    def __init__(self, record: UsageRecord, contact: str, message: str = QUOTA_MESSAGE):
        super().__init__(message)
        self.record = record
        self.contact = contact
        self.message = message

    @property
    def usage_count(self) -> int:
        return self.record.usage_count

    @property
    def max_usage(self) -> int:
        return self.record.max_usage


class UsageRecordNotFound(Exception):
    """Raised when an administrative change targets an unknown user."""
    pass


def _to_record(row: DBUserUsage) -> UsageRecord:
    return UsageRecord(
        user_id=row.user_id,
        email=row.email,
        usage_count=row.usage_count,
        max_usage=row.max_usage,
        is_premium=row.is_premium,
        last_used_at=row.last_used_at,
        created_at=row.created_at,
    )


class UsageLedger:
    """
    Reads and mutates UsageRecords.

    Args:
        database: Store holding the user_usage table.
        config: Supplies the default cap, admin cap and contact channel.
        policy: Decides which identities are administrators.
    """

    def __init__(
        self,
        database: Database,
        config: Optional[PipelineConfig] = None,
        policy: Optional[AccessPolicy] = None,
    ):
        self.database = database
        self.config = config or PipelineConfig()
        self.policy = policy or AccessPolicy(self.config.admin_emails)

    def get_or_create(self, identity: Optional[Identity]) -> UsageRecord:
        """
        Fetch the caller's usage row, inserting defaults on first access.

        Raises:
            AuthRequired: If no authenticated identity is supplied.
        """
        identity = require_identity(identity)
        existing = self.get(identity.user_id)
        if existing is not None:
            return existing

        is_admin = identity.is_admin or self.policy.is_admin(identity.email)
        row = DBUserUsage(
            user_id=identity.user_id,
            email=identity.email,
            usage_count=0,
            max_usage=self.config.admin_max_usage if is_admin else self.config.default_max_usage,
            is_premium=is_admin,
            created_at=utcnow(),
        )
        try:
            with self.database.session_scope() as session:
                session.add(row)
            logger.info(f"Created usage record for {identity.user_id} (admin={is_admin})")
            return _to_record(row)
        except IntegrityError:
            # Another request created the row first
            existing = self.get(identity.user_id)
            if existing is None:
                raise
            return existing

    def get(self, user_id: str) -> Optional[UsageRecord]:
        with self.database.session_scope() as session:
            row = session.query(DBUserUsage).filter(DBUserUsage.user_id == user_id).first()
            return _to_record(row) if row else None

    def check_and_reserve(self, identity: Optional[Identity]) -> UsageRecord:
        """
        Consume one run for the caller if they are under their cap.

        The check and the increment happen in one UPDATE ... WHERE
        usage_count < max_usage statement, so at most max_usage
        reservations can ever succeed for a non-premium user.

        Returns:
            The updated UsageRecord.

        Raises:
            AuthRequired: If no authenticated identity is supplied.
            QuotaExceeded: If the user is at or over the cap and not premium.
        """
        identity = require_identity(identity)
        self.get_or_create(identity)

        with self.database.session_scope() as session:
            result = session.execute(
                update(DBUserUsage)
                .where(DBUserUsage.user_id == identity.user_id)
                .where(
                    or_(
                        DBUserUsage.is_premium.is_(True),
                        DBUserUsage.usage_count < DBUserUsage.max_usage,
                    )
                )
                .values(
                    usage_count=DBUserUsage.usage_count + 1,
                    last_used_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            reserved = result.rowcount == 1

        record = self.get(identity.user_id)
        if not reserved:
            logger.warning(
                f"Usage limit reached for {identity.user_id}: "
                f"{record.usage_count}/{record.max_usage}"
            )
            raise QuotaExceeded(record, contact=self.config.contact_email)
        return record

    def reset(self, user_id: str) -> UsageRecord:
        """Administrative reset of the counter to zero."""
        with self.database.session_scope() as session:
            row = session.query(DBUserUsage).filter(DBUserUsage.user_id == user_id).first()
            if row is None:
                raise UsageRecordNotFound(f"No usage record for user {user_id}")
            row.usage_count = 0
        logger.info(f"Reset usage for {user_id}")
        return self.get(user_id)

    def set_limits(self, user_id: str, max_usage: int, is_premium: bool) -> UsageRecord:
        """Administrative cap/premium edit."""
        if max_usage < 0:
            raise ValueError(f"max_usage must be >= 0, got {max_usage}")
        with self.database.session_scope() as session:
            row = session.query(DBUserUsage).filter(DBUserUsage.user_id == user_id).first()
            if row is None:
                raise UsageRecordNotFound(f"No usage record for user {user_id}")
            row.max_usage = max_usage
            row.is_premium = is_premium
        logger.info(f"Updated limits for {user_id}: max_usage={max_usage}, premium={is_premium}")
        return self.get(user_id)

    def list_records(self) -> list[UsageRecord]:
        """All usage rows, newest first."""
        with self.database.session_scope() as session:
            rows = (
                session.query(DBUserUsage)
                .order_by(DBUserUsage.created_at.desc(), DBUserUsage.id.desc())
                .all()
            )
            return [_to_record(row) for row in rows]
