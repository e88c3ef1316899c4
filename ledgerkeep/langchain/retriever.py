"""
AccessGatedRetriever: LangChain BaseRetriever over the access gate.

Returns only documents the configured principal may read, with the full
stored content of each as ``page_content``. Denied sources are never
fetched.

Usage::

    from ledgerkeep.langchain import AccessGatedRetriever

    retriever = AccessGatedRetriever(pipeline=kp.pipeline, principal="0xabc...")

    # Plugs into any RAG chain
    docs = retriever.invoke("What does the lease policy say?")
"""

from __future__ import annotations

try:
    from langchain_core.callbacks import CallbackManagerForRetrieverRun
    from langchain_core.documents import Document
    from langchain_core.retrievers import BaseRetriever
except ImportError as e:
    raise ImportError(
        "langchain-core is required for AccessGatedRetriever. "
        "Install with: pip install ledgerkeep[langchain]"
    ) from e

from ledgerkeep.query import AccessGatedQueryPipeline


class AccessGatedRetriever(BaseRetriever):
    """LangChain retriever that returns authorized sources only.

    Args:
        pipeline: The query pipeline doing search, authorization and fetch.
        principal: Address the retrieval runs on behalf of.
        limit: Maximum search results to consider.
    """

    model_config = {"arbitrary_types_allowed": True}

    pipeline: AccessGatedQueryPipeline
    principal: str
    limit: int = 4

    def _get_relevant_documents(
        self,
        query: str,
        *,
        run_manager: CallbackManagerForRetrieverRun,
    ) -> list[Document]:
        retrieval = self.pipeline.retrieve(self.principal, query, self.limit)
        docs: list[Document] = []
        for source in retrieval.authorized:
            candidate = source.candidate
            metadata = {
                "source": candidate.content_ref,
                "resource_id": candidate.resource_id,
                "filename": candidate.filename,
                "score": candidate.relevance_score,
            }
            if candidate.owner_hint:
                metadata["owner"] = candidate.owner_hint
            docs.append(Document(page_content=source.content, metadata=metadata))
        return docs
