"""
Embedding providers.
"""

import os

from .base import get_registry

# Known output sizes; other models report theirs after the first call
_MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbedding:
    """
    Embedding provider using OpenAI's embeddings API.

    Requires: LEDGERKEEP_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAIEmbedding requires 'openai' library")

        self.model_name = model
        key = api_key or os.environ.get("LEDGERKEEP_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set LEDGERKEEP_OPENAI_API_KEY or OPENAI_API_KEY"
            )
        self._client = OpenAI(api_key=key)
        self._dimension = _MODEL_DIMENSIONS.get(model)

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.embed("dimension probe"))
        return self._dimension

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = self._client.embeddings.create(model=self.model_name, input=texts)
        vectors = [d.embedding for d in sorted(response.data, key=lambda d: d.index)]
        if vectors and self._dimension is None:
            self._dimension = len(vectors[0])
        return vectors


# Register providers
_registry = get_registry()
_registry.register_embedding("openai", OpenAIEmbedding)
