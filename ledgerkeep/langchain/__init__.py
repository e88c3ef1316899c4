"""
LangChain integration for ledgerkeep.

Components:
    AccessGatedRetriever  BaseRetriever that returns only sources the
                          principal is allowed to read

Requires: pip install ledgerkeep[langchain]
"""

# The retriever module guards its own optional dependency
from ledgerkeep.langchain.retriever import AccessGatedRetriever

__all__ = [
    "AccessGatedRetriever",
]
