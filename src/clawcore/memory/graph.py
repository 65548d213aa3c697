"""
Knowledge graph tier: named entities and labeled relationships between them.
"""

import json
import sqlite3
from typing import TYPE_CHECKING, Any

from ..core.persistence import Database, now_ms
from ..models.contracts import Entity, GraphExtraction, Relationship
from ..models.enums import EntityType
from ..utils.logging import get_logger
from ..utils.text import parse_json_reply

if TYPE_CHECKING:
    from ..llm.router import ProviderRouter

VALID_PREDICATES = (
    "works_at",
    "involved_in",
    "uses",
    "located_at",
    "friend_of",
    "part_of",
    "owns",
)

GRAPH_PROMPT = """Analyze the following message and extract a structured Knowledge Graph.
Identify Entities (People, Projects, Places, Organizations, Tools) and their Relationships.

Message: "{content}"

Return ONLY a JSON object with this structure:
{{
  "entities": [{{"name": "Ray", "type": "Person", "description": "Client representative"}}],
  "relationships": [{{"subject": "Ray", "predicate": "works_at", "object": "741agency"}}]
}}

Valid Types: {types}.
Valid Predicates: {predicates}.

If nothing found, return {{"entities":[], "relationships":[]}}."""


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        name=row["name"],
        type=EntityType(row["type"]),
        description=row["description"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        created_at=row["created_at"],
    )


class KnowledgeGraph:
    """
    Entity/relationship store with LLM-driven extraction.

    Entities are unique by exact, case-sensitive name. Resolution is
    insert-or-reuse, so concurrent extractions of the same name converge on
    one row.
    """

    def __init__(self, db: Database, llm: "ProviderRouter | None" = None):
        self.db = db
        self.llm = llm
        self.logger = get_logger(__name__)

    def resolve_entity(
        self, name: str, type: EntityType, description: str | None = None
    ) -> int:
        """Return the id of the entity named ``name``, creating it if needed."""
        row = self.db.query_one("SELECT id FROM entities WHERE name = ?", (name,))
        if row is not None:
            return row["id"]

        try:
            entity_id = self.db.execute(
                "INSERT INTO entities (name, type, description, created_at) VALUES (?, ?, ?, ?)",
                (name, type.value, description, now_ms()),
            )
        except sqlite3.IntegrityError:
            # Lost the race against another extraction
            row = self.db.query_one("SELECT id FROM entities WHERE name = ?", (name,))
            if row is None:
                raise
            return row["id"]

        self.logger.info("entity_created", name=name, type=type.value)
        return entity_id

    def add_relationship(
        self, subject_id: int, predicate: str, object_id: int, metadata: dict[str, Any] | None = None
    ) -> int:
        return self.db.execute(
            "INSERT INTO relationships (subject_id, predicate, object_id, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (subject_id, predicate, object_id, json.dumps(metadata) if metadata else None, now_ms()),
        )

    def apply(self, graph: dict[str, Any], source_id: int | None = None) -> GraphExtraction:
        """
        Write an extracted ``{entities, relationships}`` document.

        Entities with unknown types are dropped. Relationships are inserted only
        when both endpoints resolved in this document.
        """
        extraction = GraphExtraction()
        entities = graph.get("entities")
        if not isinstance(entities, list):
            return extraction

        for ent in entities:
            if not isinstance(ent, dict) or not ent.get("name"):
                continue
            try:
                entity_type = EntityType(ent.get("type"))
            except ValueError:
                self.logger.debug("entity_type_dropped", name=ent.get("name"), type=ent.get("type"))
                continue
            extraction.entity_ids[ent["name"]] = self.resolve_entity(
                ent["name"], entity_type, ent.get("description")
            )

        relationships = graph.get("relationships")
        if isinstance(relationships, list):
            metadata = {"source_message_id": source_id} if source_id is not None else None
            for rel in relationships:
                if not isinstance(rel, dict):
                    continue
                subject_id = extraction.entity_ids.get(rel.get("subject"))
                object_id = extraction.entity_ids.get(rel.get("object"))
                if subject_id and object_id and rel.get("predicate"):
                    rel_id = self.add_relationship(subject_id, rel["predicate"], object_id, metadata)
                    extraction.relationship_ids.append(rel_id)
                    self.logger.info(
                        "relationship_created",
                        subject=rel["subject"],
                        predicate=rel["predicate"],
                        object=rel["object"],
                    )

        return extraction

    async def extract_graph(self, content: str, source_id: int | None = None) -> GraphExtraction:
        """Ask the model for entities and relationships in ``content`` and store them."""
        if self.llm is None:
            return GraphExtraction()

        prompt = GRAPH_PROMPT.format(
            content=content,
            types=", ".join(t.value for t in EntityType),
            predicates=", ".join(VALID_PREDICATES),
        )
        response = await self.llm.send(prompt)
        try:
            graph = parse_json_reply(response.text)
        except ValueError as e:
            self.logger.debug("graph_extraction_skipped", error=str(e))
            return GraphExtraction()
        if not isinstance(graph, dict):
            return GraphExtraction()
        return self.apply(graph, source_id)

    def get_entity(self, name: str) -> Entity | None:
        row = self.db.query_one("SELECT * FROM entities WHERE name = ?", (name,))
        return _row_to_entity(row) if row else None

    def relationships_for(self, name: str) -> list[Relationship]:
        """Edges where the named entity is subject or object."""
        entity = self.get_entity(name)
        if entity is None:
            return []
        rows = self.db.query(
            "SELECT * FROM relationships WHERE subject_id = ? OR object_id = ? ORDER BY id",
            (entity.id, entity.id),
        )
        return [
            Relationship(
                id=r["id"],
                subject_id=r["subject_id"],
                predicate=r["predicate"],
                object_id=r["object_id"],
                metadata=json.loads(r["metadata"]) if r["metadata"] else None,
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def count_entities(self) -> int:
        return self.db.scalar("SELECT COUNT(*) FROM entities")
