"""
Provider interfaces for embedding and answer generation.

Concrete providers are registered lazily the first time the registry is
asked to create one.
"""

from .base import (
    ANSWER_SYSTEM_PROMPT,
    EmbeddingProvider,
    GenerationProvider,
    ProviderRegistry,
    build_answer_prompt,
    get_registry,
)

__all__ = [
    # Protocols
    "EmbeddingProvider",
    "GenerationProvider",
    # Prompting
    "ANSWER_SYSTEM_PROMPT",
    "build_answer_prompt",
    # Registry
    "ProviderRegistry",
    "get_registry",
]
