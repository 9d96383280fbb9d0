"""Tests for the result store."""

from geo_content_pipeline.models import RefinementRecord
from geo_content_pipeline.result_store import ResultStore


class TestInsertAndFind:
    """Tests for cache lookups."""

    def test_insert_assigns_id(self, store: ResultStore):
        result = store.insert("魚油推薦", ["Q1"], "content", draft_content="draft", model_used="m", user_id="u1")

        assert result.id is not None
        assert result.created_at is not None
        assert result.paa_questions == ["Q1"]

    def test_find_latest_returns_newest(self, store: ResultStore):
        store.insert("魚油推薦", ["Q1"], "old", user_id="u1")
        store.insert("魚油推薦", ["Q1", "Q2"], "new", user_id="u1")

        latest = store.find_latest("魚油推薦", user_id="u1")

        assert latest.content == "new"
        assert latest.paa_questions == ["Q1", "Q2"]

    def test_find_latest_exact_match_only(self, store: ResultStore):
        store.insert("魚油推薦", [], "content", user_id="u1")

        assert store.find_latest("魚油", user_id="u1") is None
        assert store.find_latest("魚油推薦 ", user_id="u1") is None

    def test_find_latest_scoped_to_user(self, store: ResultStore):
        store.insert("魚油推薦", [], "alice's", user_id="u1")

        assert store.find_latest("魚油推薦", user_id="u2") is None
        assert store.find_latest("魚油推薦").content == "alice's"

    def test_custom_instruction_rows_not_cached(self, store: ResultStore):
        store.insert("魚油推薦", [], "default", user_id="u1")
        store.insert("魚油推薦", [], "faq", user_id="u1", custom_instruction="FAQ 格式")

        assert store.find_latest("魚油推薦", user_id="u1").content == "default"
        assert len(store.list_recent(user_id="u1")) == 2


class TestListRecent:
    """Tests for history listing."""

    def test_newest_first_with_limit(self, store: ResultStore):
        for i in range(5):
            store.insert(f"kw-{i}", [], f"content {i}", user_id="u1")

        results = store.list_recent(limit=3, user_id="u1")

        assert [r.keyword for r in results] == ["kw-4", "kw-3", "kw-2"]

    def test_no_dedup(self, store: ResultStore):
        store.insert("魚油推薦", [], "a", user_id="u1")
        store.insert("魚油推薦", [], "b", user_id="u1")

        assert len(store.list_recent()) == 2


class TestRefinements:
    """Tests for the refinement audit trail."""

    def test_insert_and_list(self, store: ResultStore):
        saved = store.insert_refinement(RefinementRecord(
            user_id="u1",
            keyword="魚油推薦",
            original_content="原始",
            refinement_prompt="縮短",
            refined_content="短",
            model_used="m",
        ))

        assert saved.id is not None
        records = store.list_refinements("u1")
        assert len(records) == 1
        assert records[0].refined_content == "短"
        assert store.list_refinements("u2") == []
