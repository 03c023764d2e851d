"""
Document Processing Package
════════════════════════════

The two external collaborators of the similarity pipeline:

  Text Extraction → Embedding

Modules
───────
  extractor.py   XML fragment extraction + selector validation
  embeddings.py  Embedding providers (sentence-transformers / OpenAI / hash)
                 and the embed_fragments pipeline step

Design principles
─────────────────
  • Every component is stateless and dependency-injected.
  • Heavy computation runs on the orchestrator's worker pool, never on the
    request path.
  • Failures raise; the orchestrator turns them into a terminal session status.
"""

from semsim.processing.embeddings import (
    EmbeddingProvider,
    HashEmbeddingProvider,
    OpenAIEmbeddingProvider,
    SentenceTransformerEmbeddingProvider,
    embed_fragments,
    get_embedding_provider,
)
from semsim.processing.extractor import TextExtractor, XmlTextExtractor, validate_selectors

__all__ = [
    "EmbeddingProvider",
    "HashEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "SentenceTransformerEmbeddingProvider",
    "embed_fragments",
    "get_embedding_provider",
    "TextExtractor",
    "XmlTextExtractor",
    "validate_selectors",
]
