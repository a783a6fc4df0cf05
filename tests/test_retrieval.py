"""Tests for llm.retrieval: ranking, context formatting, chunking, embedding search."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from api.config_models import AnalysisTypeEnum
from conftest import COMPANY, OTHER_COMPANY
from llm.retrieval import (
    EmbeddingRetriever,
    RetrievedSnippet,
    build_rag_query,
    chunk_text,
    cosine_scores,
    format_rag_context,
    rank_snippets,
)


def _snippet(score, name="doc"):
    return RetrievedSnippet(content=f"text {score}", score=score, source_id=name, source_name=name)


class TestRankSnippets:
    def test_threshold_order_limit(self):
        snippets = [_snippet(0.75), _snippet(0.5), _snippet(0.95), _snippet(0.8)]
        ranked = rank_snippets(snippets, limit=2, score_threshold=0.7)
        assert [s.score for s in ranked] == [0.95, 0.8]

    def test_threshold_inclusive(self):
        assert len(rank_snippets([_snippet(0.7)], limit=3, score_threshold=0.7)) == 1


class TestFormatRagContext:
    def test_empty(self):
        assert format_rag_context([]) == ""

    def test_numbered_sources(self):
        text = format_rag_context([_snippet(0.91, "Guide A"), _snippet(0.82, "Guide B")])
        assert "[1] Source: Guide A (relevance 0.91)" in text
        assert "[2] Source: Guide B (relevance 0.82)" in text
        assert "text 0.91" in text


class TestBuildRagQuery:
    def test_uses_provided_values(self):
        query = build_rag_query(
            AnalysisTypeEnum.LABORATORY,
            {"mainSymptoms": "fatigue", "lifeCycle": "Not provided", "examData": "TSH 3.8"},
        )
        assert "fatigue" in query
        assert "TSH 3.8" in query
        assert "Not provided" not in query

    def test_capped(self):
        query = build_rag_query(AnalysisTypeEnum.IFM, {"mainSymptoms": "x" * 5000})
        assert len(query) == 1000


class TestChunkText:
    def test_overlapping_windows(self):
        chunks = chunk_text("abcdefghij", size=4, overlap=1)
        assert chunks == ["abcd", "defg", "ghij"]

    def test_short_text(self):
        assert chunk_text("  hello  ") == ["hello"]

    def test_empty(self):
        assert chunk_text("   ") == []

    def test_bad_overlap(self):
        with pytest.raises(ValueError):
            chunk_text("abc", size=2, overlap=2)


class TestCosineScores:
    def test_values(self):
        scores = cosine_scores([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        assert scores.tolist() == pytest.approx([1.0, 0.0, 2 ** -0.5])

    def test_degenerate_rows_score_zero(self):
        scores = cosine_scores([1.0, 1.0], [[0.0, 0.0], [1.0], [2.0, 2.0]])
        assert scores.tolist() == pytest.approx([0.0, 0.0, 1.0])

    def test_empty_query(self):
        assert cosine_scores([], [[1.0]]).tolist() == [0.0]

    def test_no_rows(self):
        assert cosine_scores([1.0], []).tolist() == []


class TestEmbeddingRetriever:
    def test_index_and_search_scoped_to_tenant(self, db):
        retriever = EmbeddingRetriever(db, api_key="sk-test")
        embeddings = {
            "thyroid": [1.0, 0.0],
            "gut": [0.0, 1.0],
        }

        async def fake_embed(texts):
            return [embeddings["thyroid" if "thyroid" in t else "gut"] for t in texts]

        async def scenario():
            with patch.object(retriever, "embed", new=AsyncMock(side_effect=fake_embed)):
                await retriever.index_document(COMPANY, "Thyroid guide", "thyroid functional ranges")
                await retriever.index_document(COMPANY, "Gut guide", "microbiome notes")
                await retriever.index_document(OTHER_COMPANY, "Other thyroid", "thyroid for clinic b")
                return await retriever.search(
                    "thyroid markers", company_id=COMPANY, limit=3, score_threshold=0.7,
                )

        results = asyncio.run(scenario())
        assert [r.source_name for r in results] == ["Thyroid guide"]
        assert results[0].score == pytest.approx(1.0)

    def test_search_without_documents_skips_embedding(self, db):
        retriever = EmbeddingRetriever(db, api_key="sk-test")
        with patch.object(retriever, "embed", new=AsyncMock()) as embed:
            assert asyncio.run(retriever.search("anything", company_id=COMPANY)) == []
        embed.assert_not_called()
