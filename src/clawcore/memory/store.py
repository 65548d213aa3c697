"""
Memory Store: the four memory tiers plus usage accounting.

Tiers:
- Raw conversation log (pruned into summaries once it grows past a threshold)
- Semantic facts with embeddings, searched by cosine similarity
- Knowledge graph of entities and relationships (see graph.py)
- Rolling compressed summaries

Writes happen inline; the expensive follow-ups (vector mirroring, fact and
graph extraction, pruning, media description) run as background tasks whose
failures are logged and swallowed.
"""

import asyncio
import json
import sqlite3
from typing import TYPE_CHECKING, Any

from ..core.config import ClawConfig
from ..core.persistence import Database, now_ms
from ..exceptions import PersistenceError
from ..models.contracts import (
    ChatMessage,
    ConsolidationReport,
    Fact,
    MessagePart,
    MessagePayload,
    Summary,
    UsageRecord,
    UsageTotals,
)
from ..models.enums import FactType, Role
from ..utils.background import BackgroundTasks
from ..utils.logging import get_logger
from ..utils.text import parse_json_reply, word_count
from .crypto import FieldCipher
from .embeddings import Embedder, cosine_similarity
from .graph import KnowledgeGraph
from .multimodal import is_multimodal, media_hash, payload_text
from .vector_index import NullVectorIndex, VectorIndex

if TYPE_CHECKING:
    from ..llm.router import ProviderRouter

FACT_TAGS: dict[str, str] = {
    FactType.MEDIA_CONTEXT.value: "[VISUAL MEMORY]",
    FactType.USER_PREFERENCE.value: "[PREFERENCE]",
    FactType.STRATEGIC_LESSON.value: "[LESSON]",
    FactType.FILE_CHUNK.value: "[FILE]",
}

# USD per 1M tokens (input, output), matched by substring of the model name
MODEL_PRICES: tuple[tuple[str, float, float], ...] = (
    ("gpt-4o", 2.5, 10.0),
    ("claude", 3.0, 15.0),
    ("gemini", 0.075, 0.3),
)

SUMMARY_PROMPT = """You are a conversation compressor.
Summarize the following conversation history into a concise but information-dense summary.
Include key decisions, topics discussed, and project status.
If a previous summary exists, incorporate its key points into the NEW summary.

{previous}
New Messages to compress:
{history}

Return ONLY the summary text. No preamble. Keep it under 250 words."""

MEMORIZE_PROMPT = """Analyze the following message and extract any core, permanent facts that are worth remembering for the future.
Focus on user preferences, biographical info, specific requests, or important context.
Do not extract trivial conversational filler.

Message: "{content}"

Return ONLY a JSON array of strings. Example: ["User lives in Bali", "User prefers dark mode"].
If nothing worth saving, return []."""

CONSOLIDATE_PROMPT = """You are a Memory Specialist. Below is a list of extracted facts from a user's conversation.
Your goal is to find facts that are redundant, similar, or contradictory, and propose a consolidated list.

Input Facts:
{facts}

Rules:
1. Merge similar info (e.g., "User lives in Bali" and "User is based in Bali").
2. Retain the most detail.
3. Resolve contradictions (use the most recent if timestamp/logic suggests it).
4. Return ONLY a JSON array of objects: [{{"mergeIds": [ID1, ID2], "newFact": "Consolidated Fact"}}, {{"deleteIds": [ID3], "reason": "redundant"}}]
5. If no changes needed, return [].

Return ONLY the JSON."""

MEDIA_PROMPT = """You are a Visual Intelligence agent.
Analyze the provided media ({mime_type}) and provide a detailed, information-dense description.
Focus on:
1. Entities: People, places, things.
2. Text: OCR any readable text.
3. Context: What is the purpose of this media? (e.g., "A receipt for coffee", "A system architecture diagram").

Return ONLY the description."""


def estimate_cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Rough USD cost from the per-1M price table. Unknown models cost 0."""
    for family, input_price, output_price in MODEL_PRICES:
        if family in model:
            return (prompt_tokens * input_price + completion_tokens * output_price) / 1_000_000
    return 0.0


class MemoryStore:
    """
    Owns persistence for messages, facts, summaries, graph and usage.

    Example:
        store = MemoryStore(db, embedder, config, llm=router)
        await store.log_message(Role.USER, "I moved to Lisbon last month")
        facts = await store.search_relevant_facts("where does the user live?")
    """

    def __init__(
        self,
        db: Database,
        embedder: Embedder,
        config: ClawConfig,
        llm: "ProviderRouter | None" = None,
        vector_index: VectorIndex | None = None,
        cipher: FieldCipher | None = None,
        background: BackgroundTasks | None = None,
    ):
        self.db = db
        self.embedder = embedder
        self.config = config
        self.llm = llm
        self.vector_index = vector_index or NullVectorIndex()
        self.cipher = cipher or FieldCipher(config.encryption_key)
        self.background = background or BackgroundTasks()
        self.graph = KnowledgeGraph(db, llm)
        self.logger = get_logger(__name__)
        self._prune_lock = asyncio.Lock()
        self._dimension: int | None = None

    # ------------------------------------------------------------------
    # Raw log
    # ------------------------------------------------------------------

    async def log_message(
        self,
        role: Role | str,
        content: MessagePayload,
        metadata: dict[str, Any] | None = None,
    ) -> int | None:
        """
        Append a message to the raw log and schedule its follow-ups.

        Returns:
            The new message id, or None if nothing was stored
        """
        role = Role(role)
        if is_multimodal(content):
            self.background.spawn(self.index_media(content, role), name="index_media")

        text = payload_text(content)
        if not text or not text.strip():
            return None

        try:
            message_id = self.db.execute(
                "INSERT INTO conversations (role, content, timestamp, metadata) VALUES (?, ?, ?, ?)",
                (
                    role.value,
                    self.cipher.encrypt(text),
                    now_ms(),
                    self.cipher.encrypt(json.dumps(metadata)) if metadata else None,
                ),
            )
        except PersistenceError as e:
            self.logger.error("message_log_failed", role=role.value, error=str(e))
            return None

        self.background.spawn(self._mirror_message(text, message_id, role, metadata), name="mirror_message")
        if word_count(text) > self.config.fact_extraction_min_words:
            self.background.spawn(self.memorize(text, message_id), name="memorize")
        self.background.spawn(self.check_pruning_trigger(), name="check_pruning")
        return message_id

    async def _mirror_message(
        self, text: str, message_id: int, role: Role, metadata: dict[str, Any] | None
    ) -> None:
        embedding = await self.embedder.embed(text)
        if not embedding:
            return
        # caller metadata never overrides the indexed fields
        payload = {
            **(metadata or {}),
            "type": "message",
            "role": role.value,
            "content": text,
            "timestamp": now_ms(),
        }
        await asyncio.to_thread(self.vector_index.upsert, f"msg_{message_id}", embedding, payload)

    def count_messages(self) -> int:
        return self.db.scalar("SELECT COUNT(*) FROM conversations")

    def count_unpruned(self) -> int:
        return self.db.scalar("SELECT COUNT(*) FROM conversations WHERE is_pruned = 0")

    def get_recent_context(self, limit: int = 10) -> list[ChatMessage]:
        """
        Latest unpruned messages, oldest first, preceded by the current summary.
        """
        rows = self.db.query(
            "SELECT role, content FROM conversations WHERE is_pruned = 0 "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        )
        history = [
            ChatMessage(role=Role(r["role"]), content=self.cipher.decrypt(r["content"]))
            for r in reversed(rows)
        ]

        summary = self.get_latest_summary()
        if summary is not None:
            history.insert(
                0,
                ChatMessage(
                    role=Role.SYSTEM,
                    content=f"[HISTORICAL CONTEXT SUMMARY]: {summary.content}",
                ),
            )
        return history

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def check_pruning_trigger(self) -> Summary | None:
        """Summarize the oldest batch once the unpruned log exceeds the threshold."""
        async with self._prune_lock:
            unpruned = self.count_unpruned()
            if unpruned <= self.config.prune_threshold:
                return None
            self.logger.info("pruning_triggered", unpruned=unpruned)
            return await self._summarize(self.config.prune_batch_size)

    async def summarize_history(self, count: int) -> Summary | None:
        """
        Compress the ``count`` oldest unpruned messages into a new summary.

        Skipped when fewer than two messages are available. The summary insert
        and the pruned flags are written in one transaction.
        """
        async with self._prune_lock:
            return await self._summarize(count)

    async def _summarize(self, count: int) -> Summary | None:
        if self.llm is None:
            self.logger.warning("summarize_skipped", reason="no_llm")
            return None

        rows = self.db.query(
            "SELECT id, role, content FROM conversations WHERE is_pruned = 0 "
            "ORDER BY timestamp ASC, id ASC LIMIT ?",
            (count,),
        )
        if len(rows) < 2:
            return None

        last_id = rows[-1]["id"]
        history = "\n".join(f"{r['role']}: {self.cipher.decrypt(r['content'])}" for r in rows)
        previous = self.get_latest_summary()
        previous_text = f"Previous Summary: {previous.content}\n\n" if previous else ""

        response = await self.llm.send(SUMMARY_PROMPT.format(previous=previous_text, history=history))
        text = response.text.strip()
        timestamp = now_ms()

        ids = [r["id"] for r in rows]
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO summaries (content, last_pruned_id, timestamp) VALUES (?, ?, ?)",
                (self.cipher.encrypt(text), last_id, timestamp),
            )
            summary_id = cursor.lastrowid
            conn.execute(
                f"UPDATE conversations SET is_pruned = 1 WHERE id IN ({','.join('?' * len(ids))})",
                ids,
            )

        self.logger.info("summary_created", messages=len(ids), last_pruned_id=last_id, length=len(text))
        return Summary(id=summary_id, content=text, last_pruned_id=last_id, timestamp=timestamp)

    def get_latest_summary(self) -> Summary | None:
        row = self.db.query_one("SELECT * FROM summaries ORDER BY timestamp DESC, id DESC LIMIT 1")
        if row is None:
            return None
        return Summary(
            id=row["id"],
            content=self.cipher.decrypt(row["content"]),
            last_pruned_id=row["last_pruned_id"],
            timestamp=row["timestamp"],
        )

    # ------------------------------------------------------------------
    # Facts
    # ------------------------------------------------------------------

    def _embedding_dimension(self) -> int | None:
        if self._dimension is None:
            row = self.db.query_one("SELECT embedding FROM facts ORDER BY id DESC LIMIT 1")
            if row is not None:
                self._dimension = len(json.loads(row["embedding"]))
        return self._dimension

    async def store_fact(
        self,
        content: str,
        source_message_id: int | None = None,
        type: FactType = FactType.CHAT_FACT,
        metadata: dict[str, Any] | None = None,
    ) -> Fact:
        """
        Embed and persist a fact.

        Raises:
            PersistenceError: If the embedding length differs from stored facts
        """
        embedding = await self.embedder.embed(content)
        dimension = self._embedding_dimension()
        if dimension is not None and len(embedding) != dimension:
            raise PersistenceError(
                "Embedding dimensionality mismatch",
                details={"expected": dimension, "got": len(embedding)},
            )

        created_at = now_ms()
        fact_id = self.db.execute(
            "INSERT INTO facts (content, embedding, created_at, source_message_id, type, metadata) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                self.cipher.encrypt(content),
                json.dumps(embedding),
                created_at,
                source_message_id,
                type.value,
                json.dumps(metadata) if metadata else None,
            ),
        )
        self._dimension = len(embedding)
        self.logger.info("fact_stored", type=type.value, preview=content[:50])
        return Fact(
            id=fact_id,
            content=content,
            embedding=embedding,
            type=type,
            created_at=created_at,
            source_message_id=source_message_id,
            metadata=metadata,
        )

    def _row_to_fact(self, row: sqlite3.Row) -> Fact:
        return Fact(
            id=row["id"],
            content=self.cipher.decrypt(row["content"]),
            embedding=json.loads(row["embedding"]),
            type=FactType(row["type"]),
            created_at=row["created_at"],
            source_message_id=row["source_message_id"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )

    def list_facts(self, type: FactType | None = None) -> list[Fact]:
        if type is None:
            rows = self.db.query("SELECT * FROM facts ORDER BY id")
        else:
            rows = self.db.query("SELECT * FROM facts WHERE type = ? ORDER BY id", (type.value,))
        return [self._row_to_fact(r) for r in rows]

    def delete_facts(self, ids: list[int]) -> int:
        if not ids:
            return 0
        return self.db.execute(
            f"DELETE FROM facts WHERE id IN ({','.join('?' * len(ids))})", list(ids)
        )

    async def memorize(self, content: str, source_id: int) -> list[Fact]:
        """Extract durable facts from a message, then schedule graph extraction."""
        if self.llm is None:
            return []

        response = await self.llm.send(MEMORIZE_PROMPT.format(content=content))
        try:
            extracted = parse_json_reply(response.text)
        except ValueError as e:
            self.logger.debug("memorize_skipped", error=str(e))
            extracted = []

        stored = []
        if isinstance(extracted, list):
            for item in extracted:
                if isinstance(item, str) and item.strip():
                    stored.append(await self.store_fact(item.strip(), source_id))

        self.background.spawn(self.graph.extract_graph(content, source_id), name="extract_graph")
        return stored

    async def search_relevant_facts(self, query: str, limit: int = 3) -> list[str]:
        """
        Tagged snippets relevant to ``query``.

        Scans the latest facts by cosine similarity, then appends vector index
        matches. Failures are logged and yield whatever was gathered so far.
        """
        results: list[str] = []
        try:
            query_embedding = await self.embedder.embed(query)
        except Exception as e:
            self.logger.error("memory_search_failed", stage="embed", error=str(e))
            return results

        rows = self.db.query(
            "SELECT content, embedding, type FROM facts ORDER BY id DESC LIMIT ?",
            (self.config.fact_scan_window,),
        )
        scored: list[tuple[float, str, str]] = []
        for row in rows:
            try:
                embedding = json.loads(row["embedding"])
            except json.JSONDecodeError:
                continue
            score = cosine_similarity(query_embedding, embedding)
            if score > self.config.fact_similarity_floor:
                scored.append((score, self.cipher.decrypt(row["content"]), row["type"]))

        scored.sort(key=lambda item: item[0], reverse=True)
        for _, content, fact_type in scored[:limit]:
            results.append(f"{FACT_TAGS.get(fact_type, '[FACT]')} {content}")

        try:
            matches = await asyncio.to_thread(
                self.vector_index.query, query_embedding, self.config.vector_top_k
            )
        except Exception as e:
            self.logger.error("memory_search_failed", stage="vector_index", error=str(e))
            return results

        for match in matches:
            if match.score <= self.config.vector_similarity_floor:
                continue
            meta = match.metadata
            if meta.get("type") == FactType.FILE_CHUNK.value:
                results.append(f"[FILE: {meta.get('file_path')}] {meta.get('content', '')}")
            else:
                results.append(f"[CHAT] {meta.get('role', 'unknown')}: {meta.get('content', '')}")
        return results

    def get_strategic_lessons(self, limit: int | None = None) -> list[str]:
        """Newest strategic lessons and user preferences."""
        limit = limit or self.config.strategic_lesson_limit
        rows = self.db.query(
            "SELECT content FROM facts WHERE type IN (?, ?) ORDER BY created_at DESC, id DESC LIMIT ?",
            (FactType.STRATEGIC_LESSON.value, FactType.USER_PREFERENCE.value, limit),
        )
        return [self.cipher.decrypt(r["content"]) for r in rows]

    async def consolidate_facts(self) -> ConsolidationReport:
        """
        Merge redundant chat facts and drop contradicted ones.

        Only ids that were offered to the model are touched.
        """
        report = ConsolidationReport()
        facts = self.list_facts(FactType.CHAT_FACT)
        if len(facts) < self.config.consolidation_min_facts or self.llm is None:
            return report

        fact_list = "\n".join(f"[ID: {f.id}] {f.content}" for f in facts)
        response = await self.llm.send(CONSOLIDATE_PROMPT.format(facts=fact_list))
        operations = parse_json_reply(response.text)
        if not isinstance(operations, list) or not operations:
            self.logger.info("consolidation_noop")
            return report

        known_ids = {f.id for f in facts}
        for op in operations:
            if not isinstance(op, dict):
                continue
            if op.get("mergeIds"):
                ids = [i for i in op["mergeIds"] if i in known_ids]
                if op.get("newFact"):
                    await self.store_fact(op["newFact"])
                    report.created += 1
                report.deleted += self.delete_facts(ids)
                known_ids.difference_update(ids)
            elif op.get("deleteIds"):
                ids = [i for i in op["deleteIds"] if i in known_ids]
                report.deleted += self.delete_facts(ids)
                known_ids.difference_update(ids)
            else:
                continue
            report.operations += 1

        self.logger.info(
            "consolidation_complete",
            operations=report.operations,
            created=report.created,
            deleted=report.deleted,
        )
        return report

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def log_usage(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int | None = None,
    ) -> UsageRecord | None:
        prompt_tokens = prompt_tokens or 0
        completion_tokens = completion_tokens or 0
        total_tokens = total_tokens or (prompt_tokens + completion_tokens)
        cost = estimate_cost_usd(model, prompt_tokens, completion_tokens)
        timestamp = now_ms()

        try:
            usage_id = self.db.execute(
                "INSERT INTO usage (model, prompt_tokens, completion_tokens, total_tokens, cost_usd, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (model, prompt_tokens, completion_tokens, total_tokens, f"{cost:.6f}", timestamp),
            )
        except PersistenceError as e:
            self.logger.error("usage_log_failed", model=model, error=str(e))
            return None

        self.logger.info("usage_logged", model=model, total_tokens=total_tokens, cost_usd=round(cost, 6))
        return UsageRecord(
            id=usage_id,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cost_usd=cost,
            timestamp=timestamp,
        )

    def usage_totals_since(self, since_ms: int) -> UsageTotals:
        row = self.db.query_one(
            "SELECT SUM(prompt_tokens) AS p, SUM(completion_tokens) AS c, "
            "SUM(CAST(cost_usd AS REAL)) AS cost FROM usage WHERE timestamp >= ?",
            (since_ms,),
        )
        if row is None:
            return UsageTotals()
        return UsageTotals(
            prompt_tokens=row["p"] or 0,
            completion_tokens=row["c"] or 0,
            cost_usd=row["cost"] or 0.0,
        )

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def _media_indexed(self, digest: str) -> bool:
        row = self.db.query_one(
            "SELECT id FROM facts WHERE type = ? AND json_extract(metadata, '$.hash') = ? LIMIT 1",
            (FactType.MEDIA_CONTEXT.value, digest),
        )
        return row is not None

    async def index_media(self, parts: list[MessagePart], role: Role | str) -> int:
        """
        Describe each new attachment and store the description as a fact.

        Attachments already indexed (same SHA-256) are skipped.

        Returns:
            Number of attachments indexed
        """
        role = Role(role)
        indexed = 0
        for part in parts:
            digest = media_hash(part)
            if digest is None or part.inline_data is None:
                continue
            if self._media_indexed(digest):
                self.logger.info("media_already_indexed", hash=digest[:8])
                continue
            if self.llm is None:
                continue

            mime_type = part.inline_data.mime_type
            try:
                response = await self.llm.send(
                    [MessagePart(text=MEDIA_PROMPT.format(mime_type=mime_type)), part]
                )
                description = response.text.strip()
                fact = await self.store_fact(
                    description,
                    type=FactType.MEDIA_CONTEXT,
                    metadata={"hash": digest, "mime_type": mime_type},
                )
                await asyncio.to_thread(
                    self.vector_index.upsert,
                    f"media_{digest}",
                    fact.embedding,
                    {
                        "type": "media_memory",
                        "role": role.value,
                        "content": description,
                        "hash": digest,
                        "timestamp": now_ms(),
                    },
                )
            except Exception as e:
                self.logger.error("media_indexing_failed", hash=digest[:8], error=str(e))
                continue

            indexed += 1
            self.logger.info("media_indexed", hash=digest[:8], preview=description[:50])
        return indexed
