"""
Retrieval of reference snippets (RAG) for prompt augmentation.

The pipeline only depends on the ``Retriever`` protocol. EmbeddingRetriever
is the built-in implementation: tenant documents are chunked, embedded with
the OpenAI embeddings API and ranked by cosine similarity at query time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import numpy as np

from api.config_models import AnalysisTypeEnum
from storage.database import Database

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-3-small"
CHUNK_SIZE = 1000
CHUNK_OVERLAP = 200


@dataclass
class RetrievedSnippet:
    content: str
    score: float
    source_id: str
    source_name: str


class Retriever(Protocol):
    async def search(
        self,
        query: str,
        *,
        company_id: str,
        category: Optional[str] = None,
        limit: int = 3,
        score_threshold: float = 0.7,
    ) -> list[RetrievedSnippet]:
        ...


def rank_snippets(
    snippets: list[RetrievedSnippet],
    limit: int,
    score_threshold: float,
) -> list[RetrievedSnippet]:
    """Filter to score >= threshold, sort by descending score, truncate."""
    kept = [s for s in snippets if s.score >= score_threshold]
    kept.sort(key=lambda s: s.score, reverse=True)
    return kept[:limit]


def format_rag_context(snippets: list[RetrievedSnippet]) -> str:
    """Render snippets as the ``{{ragContext}}`` value. Empty list -> ''."""
    if not snippets:
        return ""
    lines = ["REFERENCE MATERIAL (knowledge base):", ""]
    for i, snippet in enumerate(snippets, 1):
        lines.append(
            f"[{i}] Source: {snippet.source_name} (relevance {snippet.score:.2f})"
        )
        lines.append(snippet.content.strip())
        lines.append("")
    lines.append(
        "Use the reference material where relevant and cite sources by number."
    )
    return "\n".join(lines)


_STAGE_QUERIES = {
    AnalysisTypeEnum.LABORATORY: "functional medicine laboratory interpretation optimal ranges women",
    AnalysisTypeEnum.TCM: "traditional chinese medicine gynecology patterns herbal formulas acupuncture",
    AnalysisTypeEnum.CHRONOLOGY: "women's health timeline triggers hormonal life stages",
    AnalysisTypeEnum.IFM: "IFM matrix functional systems root causes women",
    AnalysisTypeEnum.TREATMENT_PLAN: "integrative treatment protocol women's health interventions",
}

# Inputs that say most about what to look up, in priority order.
_QUERY_KEYS = ("mainSymptoms", "lifeCycle", "examData", "tcmObservations", "therapeuticGoals")
_MAX_QUERY_CHARS = 1000


def build_rag_query(analysis_type: AnalysisTypeEnum, values: Mapping[str, str]) -> str:
    parts = [_STAGE_QUERIES[analysis_type]]
    for key in _QUERY_KEYS:
        value = values.get(key)
        if value and value != "Not provided":
            parts.append(str(value))
    return " ".join(parts)[:_MAX_QUERY_CHARS]


def chunk_text(text: str, size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> list[str]:
    """Split ``text`` into windows of ``size`` chars overlapping by ``overlap``."""
    if overlap >= size:
        raise ValueError("overlap must be smaller than size")
    text = text.strip()
    if not text:
        return []
    chunks = []
    step = size - overlap
    for start in range(0, len(text), step):
        chunks.append(text[start:start + size])
        if start + size >= len(text):
            break
    return chunks


def cosine_scores(query: list[float], embeddings: list[list[float]]) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``embeddings``.

    Rows whose dimension differs from the query, and zero vectors, score 0.
    """
    q = np.asarray(query, dtype=float)
    scores = np.zeros(len(embeddings))
    rows = [i for i, e in enumerate(embeddings) if len(e) == q.size]
    if not rows or q.size == 0:
        return scores
    matrix = np.array([embeddings[i] for i in rows], dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    with np.errstate(divide="ignore", invalid="ignore"):
        scores[rows] = np.where(norms > 0, (matrix @ q) / norms, 0.0)
    return scores


class EmbeddingRetriever:
    """Tenant-scoped retriever over documents stored in SQLite."""

    def __init__(self, db: Database, api_key: str, model: str = EMBEDDING_MODEL):
        self._db = db
        self._api_key = api_key
        self._model = model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        import openai

        client = openai.AsyncOpenAI(api_key=self._api_key)
        response = await client.embeddings.create(model=self._model, input=texts)
        return [item.embedding for item in response.data]

    async def index_document(
        self,
        company_id: str,
        name: str,
        content: str,
        category: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> dict:
        chunks = chunk_text(content)
        embeddings = await self.embed(chunks) if chunks else []
        doc = self._db.save_rag_document(
            company_id=company_id,
            name=name,
            content=content,
            chunks=list(zip(chunks, embeddings)),
            category=category,
            created_by=created_by,
        )
        logger.info("Indexed document %s (%d chunks)", doc["id"], len(chunks))
        return doc

    async def search(
        self,
        query: str,
        *,
        company_id: str,
        category: Optional[str] = None,
        limit: int = 3,
        score_threshold: float = 0.7,
    ) -> list[RetrievedSnippet]:
        rows = self._db.list_rag_chunks(company_id, category=category)
        if not rows:
            return []
        [query_embedding] = await self.embed([query])
        scores = cosine_scores(query_embedding, [row["embedding"] for row in rows])
        snippets = [
            RetrievedSnippet(
                content=row["content"],
                score=float(score),
                source_id=row["document_id"],
                source_name=row["document_name"],
            )
            for row, score in zip(rows, scores)
        ]
        return rank_snippets(snippets, limit, score_threshold)
