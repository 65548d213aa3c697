"""
Context Assembler: relevant facts, recent history and the running summary
for one turn, rendered into the system prompt.
"""

from pydantic import BaseModel, Field

from ..memory.multimodal import payload_text
from ..memory.store import MemoryStore
from ..models.contracts import ChatMessage
from ..models.enums import Role


class AgentContext(BaseModel):
    """Memory snapshot used to build one system prompt."""

    relevant_facts: list[str] = Field(default_factory=list)
    recent_history: list[ChatMessage] = Field(default_factory=list)
    summary: str | None = None


class ContextAssembler:
    """
    Example:
        assembler = ContextAssembler(memory)
        context = await assembler.get_context("what did I say about Lisbon?")
        prompt_block = assembler.format_context(context)
    """

    def __init__(self, memory: MemoryStore, history_limit: int = 5):
        self.memory = memory
        self.history_limit = history_limit

    async def get_context(self, user_text: str, history_limit: int | None = None) -> AgentContext:
        limit = history_limit or self.history_limit
        facts = await self.memory.search_relevant_facts(user_text) if user_text.strip() else []
        # the summary is rendered on its own line, so drop the history's summary entry
        history = [m for m in self.memory.get_recent_context(limit) if m.role != Role.SYSTEM]
        summary = self.memory.get_latest_summary()
        return AgentContext(
            relevant_facts=facts,
            recent_history=history,
            summary=summary.content if summary else None,
        )

    @staticmethod
    def format_context(context: AgentContext) -> str:
        history_text = "\n".join(f"{m.role.value}: {payload_text(m.content or '')}" for m in context.recent_history)
        facts_text = ""
        if context.relevant_facts:
            facts_text = "\nRelevant Memories:\n" + "\n".join(f"- {f}" for f in context.relevant_facts)
        summary_text = f"\n[Context Summary]: {context.summary}" if context.summary else ""
        return f"HISTORY:\n{history_text}\n{summary_text}\n{facts_text}"
