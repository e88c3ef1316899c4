"""
Access-gated question answering over ingested documents.

One query runs four stages:

1. Search: rank chunks by similarity and collapse them to one candidate
   per stored blob
2. Authorize: evaluate every candidate's access policy for the caller
3. Branch: with nothing authorized, stop before generation
4. Generate: answer from the authorized content only

Content is fetched only after a candidate is authorized, so a denied
candidate's content is never read, let alone placed in a prompt.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .access import check_access
from .blob_store import BlobStoreError
from .protocol import BlobStoreProtocol, PolicyStoreProtocol, SimilarityEngine
from .providers.base import ANSWER_SYSTEM_PROMPT, GenerationProvider, build_answer_prompt
from .types import SourceCandidate, validate_principal

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 4
DEFAULT_MAX_WORKERS = 8
PREVIEW_CHARS = 200


class QueryOutcome(str, Enum):
    ANSWERED = "answered"
    NO_SOURCES = "no_sources"
    NO_ACCESSIBLE_SOURCES = "no_accessible_sources"


@dataclass
class SourceRef:
    """A source cited in an answer."""
    blob_id: str
    filename: str
    score: float
    preview: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "blob_id": self.blob_id,
            "filename": self.filename,
            "score": self.score,
            "preview": self.preview,
        }


@dataclass
class QueryResult:
    outcome: QueryOutcome
    answer: Optional[str] = None
    sources: list[SourceRef] = field(default_factory=list)
    denied_count: int = 0
    unavailable_count: int = 0
    processing_ms: int = 0

    @property
    def answered(self) -> bool:
        return self.outcome == QueryOutcome.ANSWERED

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
            "denied_count": self.denied_count,
            "unavailable_count": self.unavailable_count,
            "processing_ms": self.processing_ms,
        }


@dataclass
class AuthorizedSource:
    candidate: SourceCandidate
    content: str


@dataclass
class Retrieval:
    """Everything the gate decided for one query, before generation."""
    searched: int
    authorized: list[AuthorizedSource] = field(default_factory=list)
    denied_count: int = 0
    unavailable_count: int = 0


def candidates_from_hits(
    hits: list[tuple[str, float, dict[str, Any]]],
) -> list[SourceCandidate]:
    """
    Collapse search hits to one candidate per content ref.

    Several chunks of one document share a blob ID; the best-scoring chunk
    supplies the score and preview. Hits with no blob ID are dropped.
    Result is ordered by score, best first.
    """
    best: dict[str, SourceCandidate] = {}
    for content, score, meta in hits:
        blob_id = meta.get("blob_id")
        if not blob_id:
            logger.debug("Dropping search hit without blob_id")
            continue
        current = best.get(blob_id)
        if current is not None and current.relevance_score >= score:
            continue
        best[blob_id] = SourceCandidate(
            content_ref=blob_id,
            resource_id=meta.get("resource_id") or blob_id,
            relevance_score=float(score),
            preview_text=content[:PREVIEW_CHARS],
            owner_hint=meta.get("owner"),
            filename=meta.get("filename", "unknown"),
            metadata=dict(meta),
        )
    return sorted(best.values(), key=lambda c: c.relevance_score, reverse=True)


class AccessGatedQueryPipeline:
    """
    Answers questions for a principal from the sources it may read.

    Args:
        engine: Similarity search over ingested chunks
        policies: Policy lookup; a resource without a policy is public
        blobs: Content store holding each document's full text
        generator: Answer generator, or None for retrieval-only use
        max_workers: Fan-out for policy checks and content fetches
        max_tokens: Generation budget per answer
    """

    def __init__(
        self,
        engine: SimilarityEngine,
        policies: PolicyStoreProtocol,
        blobs: BlobStoreProtocol,
        generator: Optional[GenerationProvider] = None,
        *,
        top_k: int = DEFAULT_TOP_K,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_tokens: int = 1024,
    ):
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        self._engine = engine
        self._policies = policies
        self._blobs = blobs
        self._generator = generator
        self._top_k = top_k
        self._max_workers = max(1, max_workers)
        self._max_tokens = max_tokens

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def _authorize(self, candidate: SourceCandidate, principal: str) -> bool:
        """Policy check for one candidate. A failed lookup denies."""
        try:
            policy = self._policies.get_policy(candidate.resource_id)
        except Exception as e:
            logger.warning(
                "Policy lookup failed for %s, denying: %s", candidate.resource_id, e,
            )
            return False
        return check_access(policy, principal)

    def _fetch(self, candidate: SourceCandidate) -> Optional[str]:
        try:
            data = self._blobs.get(candidate.content_ref)
        except BlobStoreError as e:
            logger.warning("Content unavailable for %s: %s", candidate.content_ref, e)
            return None
        return data.decode("utf-8", errors="replace")

    def retrieve(
        self,
        principal: str,
        question: str,
        top_k: Optional[int] = None,
    ) -> Retrieval:
        """
        Search, authorize and fetch, without generating.

        Every authorization decision is collected before any content is
        fetched. Only authorized candidates are fetched.
        """
        validate_principal(principal)
        if not question or not question.strip():
            raise ValueError("question is required")
        k = self._top_k if top_k is None else top_k
        if k <= 0:
            raise ValueError("top_k must be positive")

        candidates = candidates_from_hits(self._engine.similarity_search(question, k))
        retrieval = Retrieval(searched=len(candidates))
        if not candidates:
            return retrieval

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(candidates))) as pool:
            decisions = list(pool.map(lambda c: self._authorize(c, principal), candidates))

        allowed = [c for c, ok in zip(candidates, decisions) if ok]
        retrieval.denied_count = len(candidates) - len(allowed)
        if not allowed:
            return retrieval

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(allowed))) as pool:
            contents = list(pool.map(self._fetch, allowed))

        for candidate, content in zip(allowed, contents):
            if content is None:
                retrieval.unavailable_count += 1
            else:
                retrieval.authorized.append(AuthorizedSource(candidate, content))
        return retrieval

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def query(
        self,
        principal: str,
        question: str,
        top_k: Optional[int] = None,
    ) -> QueryResult:
        """
        Answer ``question`` for ``principal``.

        Returns a QueryResult whose outcome is ``no_sources`` when search
        found nothing and ``no_accessible_sources`` when nothing survived
        authorization and fetch. Generation runs only for ``answered``.
        """
        if self._generator is None:
            raise RuntimeError("No generation provider configured")
        started = time.perf_counter()
        retrieval = self.retrieve(principal, question, top_k)

        def elapsed() -> int:
            return int((time.perf_counter() - started) * 1000)

        if retrieval.searched == 0:
            logger.info("Query from %s...: no sources", principal[:10])
            return QueryResult(outcome=QueryOutcome.NO_SOURCES, processing_ms=elapsed())

        if not retrieval.authorized:
            logger.info(
                "Query from %s...: no accessible sources (%d denied, %d unavailable)",
                principal[:10], retrieval.denied_count, retrieval.unavailable_count,
            )
            return QueryResult(
                outcome=QueryOutcome.NO_ACCESSIBLE_SOURCES,
                denied_count=retrieval.denied_count,
                unavailable_count=retrieval.unavailable_count,
                processing_ms=elapsed(),
            )

        prompt = build_answer_prompt(
            question,
            [(s.candidate.filename, s.content) for s in retrieval.authorized],
        )
        answer = self._generator.generate(
            ANSWER_SYSTEM_PROMPT, prompt, max_tokens=self._max_tokens,
        )
        sources = [
            SourceRef(
                blob_id=s.candidate.content_ref,
                filename=s.candidate.filename,
                score=s.candidate.relevance_score,
                preview=s.candidate.preview_text,
            )
            for s in retrieval.authorized
        ]
        result = QueryResult(
            outcome=QueryOutcome.ANSWERED,
            answer=answer or "",
            sources=sources,
            denied_count=retrieval.denied_count,
            unavailable_count=retrieval.unavailable_count,
            processing_ms=elapsed(),
        )
        logger.info(
            "Query from %s... answered from %d sources (%d denied) in %dms",
            principal[:10], len(sources), result.denied_count, result.processing_ms,
        )
        return result
