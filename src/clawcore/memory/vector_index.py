"""
Nearest-neighbour index mirroring chat lines, media descriptions and files.

The store treats this as a black box: upsert vectors with metadata, query by
vector, get back scored matches.
"""

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import chromadb

from ..models.contracts import VectorMatch
from ..utils.logging import get_logger

logger = get_logger(__name__)

MetadataValue = str | int | float | bool


@runtime_checkable
class VectorIndex(Protocol):
    """Minimal nearest-neighbour interface."""

    def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None: ...

    def query(self, embedding: list[float], top_k: int) -> list[VectorMatch]: ...


def _clean_metadata(metadata: dict[str, Any]) -> dict[str, MetadataValue]:
    # chromadb only accepts scalar metadata values
    cleaned: dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        cleaned[key] = value if isinstance(value, (str, int, float, bool)) else str(value)
    return cleaned


class ChromaVectorIndex:
    """
    chromadb collection in cosine space.

    Scores are ``1 - distance``, so identical vectors score 1.0.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        collection: str = "clawcore-memory",
        client: Any | None = None,
    ):
        """
        Args:
            path: Persistence directory. None keeps the index in memory.
            collection: Collection name
            client: Pre-built chromadb client (overrides path)
        """
        if client is None:
            client = chromadb.PersistentClient(path=str(path)) if path else chromadb.EphemeralClient()
        self._client = client
        self._collection = client.get_or_create_collection(
            name=collection, metadata={"hnsw:space": "cosine"}
        )
        logger.info("vector_index_ready", collection=collection, persistent=bool(path))

    def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        document = metadata.get("content")
        self._collection.upsert(
            ids=[id],
            embeddings=[embedding],
            metadatas=[_clean_metadata(metadata)],
            documents=[document] if isinstance(document, str) else None,
        )

    def query(self, embedding: list[float], top_k: int) -> list[VectorMatch]:
        count = self._collection.count()
        if count == 0:
            return []

        results = self._collection.query(
            query_embeddings=[embedding],
            n_results=min(top_k, count),
            include=["metadatas", "distances"],
        )
        if not results or not results["ids"] or not results["ids"][0]:
            return []

        matches = []
        for id_, meta, dist in zip(results["ids"][0], results["metadatas"][0], results["distances"][0]):
            matches.append(VectorMatch(id=id_, score=1.0 - dist, metadata=dict(meta or {})))
        return matches

    def count(self) -> int:
        return self._collection.count()


class NullVectorIndex:
    """Index used when mirroring is disabled: accepts writes, never matches."""

    def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        return None

    def query(self, embedding: list[float], top_k: int) -> list[VectorMatch]:
        return []
