"""
SQLAlchemy models and session handling for the GEO content pipeline.

Tables:
- user_usage: one row per user (count, cap, premium flag)
- custom_keywords: user-added keywords, unique per user
- geo_analysis_results: append-only generation results (cache + history)
- content_refinements: append-only audit trail of manual refinements
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DBUserUsage(Base):
    """Usage counter, cap and premium flag for a single user."""
    __tablename__ = "user_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(320), nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    max_usage = Column(Integer, default=10, nullable=False)
    is_premium = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<DBUserUsage(user_id='{self.user_id}', {self.usage_count}/{self.max_usage})>"


class DBCustomKeyword(Base):
    """Keyword added by a user to their personal list."""
    __tablename__ = "custom_keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    keyword = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "keyword", name="uq_custom_keywords_user_keyword"),
    )


class DBAnalysisResult(Base):
    """Generated GEO content for a keyword."""
    __tablename__ = "geo_analysis_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(500), nullable=False)
    paa_questions = Column(JSON, nullable=False, default=list)
    geo_optimized_content = Column(Text, nullable=False, default="")
    draft_content = Column(Text, nullable=True)
    model_used = Column(String(100), nullable=True)
    # Rows produced with a custom instruction are history only, never cache hits
    custom_instruction = Column(Text, nullable=True)
    # Nullable: rows imported or generated outside a user session carry no owner
    user_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_results_keyword_created", "keyword", "created_at"),
        Index("idx_results_user_keyword", "user_id", "keyword"),
    )


class DBContentRefinement(Base):
    """Manual post-hoc refinement of generated content."""
    __tablename__ = "content_refinements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    keyword = Column(String(500), nullable=False)
    original_content = Column(Text, nullable=False)
    refinement_prompt = Column(Text, nullable=False)
    refined_content = Column(Text, nullable=False)
    model_used = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Database:
    """Engine and session factory for one database URL."""

    def __init__(self, url: str, engine: Optional[Engine] = None):
        self.url = url
        if engine is None:
            connect_args = {}
            if url.startswith("sqlite"):
                # Sessions are used from FastAPI's worker threads
                connect_args = {"check_same_thread": False, "timeout": 30}
            engine = create_engine(url, connect_args=connect_args)
        self.engine = engine
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        """Create tables if they don't exist. Safe to call on every startup."""
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
