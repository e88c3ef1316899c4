"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from typing import Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider instance must be used for both indexing and querying
    to ensure consistent vectors.

    Example implementation:
        class OpenAIEmbedding:
            def __init__(self, model: str = "text-embedding-3-small"):
                self.client = OpenAI()
                self.model_name = model

            @property
            def dimension(self) -> int:
                return 1536

            def embed(self, text: str) -> list[float]:
                return self.embed_batch([text])[0]

            def embed_batch(self, texts: list[str]) -> list[list[float]]:
                resp = self.client.embeddings.create(model=self.model_name, input=texts)
                return [d.embedding for d in resp.data]
    """

    @property
    def dimension(self) -> int:
        """The dimensionality of the embedding vectors."""
        ...

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector
        """
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per input text
        """
        ...


# -----------------------------------------------------------------------------
# Answer Generation
# -----------------------------------------------------------------------------

ANSWER_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on the provided context. "
    "Always cite which document(s) you used to answer. "
    "If the context does not contain enough information to answer the question, say so."
)


def build_answer_prompt(question: str, sources: list[tuple[str, str]]) -> str:
    """
    Build the user prompt for answering from retrieved sources.

    Args:
        question: The user's question
        sources: (filename, content) pairs, already authorized

    Returns:
        The complete prompt string for the LLM
    """
    context = "\n---\n\n".join(
        f"Document {i}: {filename}\n{content}"
        for i, (filename, content) in enumerate(sources, start=1)
    )
    return f"Context:\n\n{context}\n\n---\n\nQuestion: {question}\n\nAnswer:"


@runtime_checkable
class GenerationProvider(Protocol):
    """
    Produces text from a system + user prompt.

    The query pipeline only calls this with content the requesting
    principal is allowed to read.
    """

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 1024,
    ) -> str | None:
        """
        Send a raw system+user prompt to the underlying LLM and return text.

        Returns:
            Generated text, or None if the model produced nothing
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from
    configuration, so ledgerkeep.toml can name a provider without code
    changes.

    Example:
        registry = ProviderRegistry()
        registry.register_embedding("openai", OpenAIEmbedding)

        # Later, from config:
        provider = registry.create_embedding("openai", {"model": "text-embedding-3-small"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._generation_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        # Importing registers the concrete classes; nothing is instantiated
        from . import embeddings  # noqa: F401
        from . import llm  # noqa: F401

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def register_generation(self, name: str, provider_class: type) -> None:
        """Register a generation provider class."""
        self._generation_providers[name] = provider_class

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """Create an embedding provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("embedding", name, self._embedding_providers, params)

    def create_generation(self, name: str, params: dict | None = None) -> GenerationProvider:
        """Create a generation provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("generation", name, self._generation_providers, params)

    def list_embedding_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())

    def list_generation_providers(self) -> list[str]:
        self._ensure_providers_loaded()
        return list(self._generation_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
