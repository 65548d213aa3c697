"""
Tiered memory: raw log, semantic facts, knowledge graph and summaries.
"""

from .crypto import FieldCipher
from .embeddings import Embedder, LiteLLMEmbedder, cosine_similarity
from .graph import KnowledgeGraph
from .store import MemoryStore, estimate_cost_usd
from .vector_index import ChromaVectorIndex, NullVectorIndex, VectorIndex

__all__ = [
    "FieldCipher",
    "Embedder",
    "LiteLLMEmbedder",
    "cosine_similarity",
    "KnowledgeGraph",
    "MemoryStore",
    "estimate_cost_usd",
    "ChromaVectorIndex",
    "NullVectorIndex",
    "VectorIndex",
]
