"""
Result store for generated GEO content.

Analysis rows double as the keyword cache (latest row wins) and as the
history list. Refinement rows are an audit trail only. Both tables are
append-only: nothing here updates or deletes rows.
"""

import logging
from typing import Optional

from .database import Database, DBAnalysisResult, DBContentRefinement, utcnow
from .models import AnalysisResult, RefinementRecord

logger = logging.getLogger(__name__)


def _to_result(row: DBAnalysisResult) -> AnalysisResult:
    return AnalysisResult(
        id=row.id,
        keyword=row.keyword,
        paa_questions=list(row.paa_questions or []),
        content=row.geo_optimized_content,
        draft_content=row.draft_content,
        model_used=row.model_used,
        custom_instruction=row.custom_instruction,
        user_id=row.user_id,
        created_at=row.created_at,
    )


def _to_refinement(row: DBContentRefinement) -> RefinementRecord:
    return RefinementRecord(
        id=row.id,
        user_id=row.user_id,
        keyword=row.keyword,
        original_content=row.original_content,
        refinement_prompt=row.refinement_prompt,
        refined_content=row.refined_content,
        model_used=row.model_used,
        created_at=row.created_at,
    )


class ResultStore:
    """Insert and read analysis results and refinement records."""

    def __init__(self, database: Database):
        self.database = database

    def insert(
        self,
        keyword: str,
        questions: list[str],
        content: str,
        draft_content: Optional[str] = None,
        model_used: Optional[str] = None,
        user_id: Optional[str] = None,
        custom_instruction: Optional[str] = None,
    ) -> AnalysisResult:
        row = DBAnalysisResult(
            keyword=keyword,
            paa_questions=list(questions),
            geo_optimized_content=content,
            draft_content=draft_content,
            model_used=model_used,
            custom_instruction=custom_instruction,
            user_id=user_id,
            created_at=utcnow(),
        )
        with self.database.session_scope() as session:
            session.add(row)
            session.flush()
            result = _to_result(row)
        logger.info(f"Stored analysis result {result.id} for '{keyword}'")
        return result

    def find_latest(self, keyword: str, user_id: Optional[str] = None) -> Optional[AnalysisResult]:
        """
        Most recent default-prompt result for the exact keyword string.

        Rows generated from a custom instruction are skipped: they answer a
        different prompt than the one the cache is keyed on.

        Args:
            keyword: Keyword to look up. No normalization is applied.
            user_id: Restrict the lookup to one user's rows. None searches
                every row.

        Returns:
            The newest matching AnalysisResult, or None.
        """
        with self.database.session_scope() as session:
            query = session.query(DBAnalysisResult).filter(
                DBAnalysisResult.keyword == keyword,
                DBAnalysisResult.custom_instruction.is_(None),
            )
            if user_id is not None:
                query = query.filter(DBAnalysisResult.user_id == user_id)
            row = query.order_by(
                DBAnalysisResult.created_at.desc(), DBAnalysisResult.id.desc()
            ).first()
            return _to_result(row) if row else None

    def list_recent(self, limit: int = 20, user_id: Optional[str] = None) -> list[AnalysisResult]:
        """Newest-first history, optionally for a single user."""
        with self.database.session_scope() as session:
            query = session.query(DBAnalysisResult)
            if user_id is not None:
                query = query.filter(DBAnalysisResult.user_id == user_id)
            rows = (
                query.order_by(DBAnalysisResult.created_at.desc(), DBAnalysisResult.id.desc())
                .limit(max(limit, 0))
                .all()
            )
            return [_to_result(row) for row in rows]

    def insert_refinement(self, record: RefinementRecord) -> RefinementRecord:
        row = DBContentRefinement(
            user_id=record.user_id,
            keyword=record.keyword,
            original_content=record.original_content,
            refinement_prompt=record.refinement_prompt,
            refined_content=record.refined_content,
            model_used=record.model_used,
            created_at=utcnow(),
        )
        with self.database.session_scope() as session:
            session.add(row)
            session.flush()
            return _to_refinement(row)

    def list_refinements(self, user_id: str, limit: int = 20) -> list[RefinementRecord]:
        with self.database.session_scope() as session:
            rows = (
                session.query(DBContentRefinement)
                .filter(DBContentRefinement.user_id == user_id)
                .order_by(DBContentRefinement.created_at.desc(), DBContentRefinement.id.desc())
                .limit(max(limit, 0))
                .all()
            )
            return [_to_refinement(row) for row in rows]
