"""
Reflector: turns finished work and user feedback into long-term facts.
"""

from ..exceptions import ClawError
from ..llm.router import ProviderRouter
from ..memory.store import MemoryStore
from ..models.enums import FactType, WorkflowStatus
from ..utils.logging import get_logger
from .persistence import Database

REFLECTION_PROMPT = """You are a Meta-Cognitive Analyst.
Analyze the following completed workflow and extract "Strategic Lessons".

Workflow Name: {name}
Full Result:
{result}

Extract the following in a concise summary:
1. SUCCESSFUL PATTERNS: What tool sequences or agent hand-offs worked well?
2. USER PREFERENCES: What did we learn about how the user wants things done?
3. OPTIMIZATION: How can we do this faster or better next time?

Format each lesson as a single, stand-alone "Fact" that can be stored in long-term memory.
Separate lessons with '---'."""

PREFERENCE_PROMPT = """Analyze the following user input for communication preferences or procedural instructions.
User Input: "{input}"

If this input contains a preference (e.g., "Keep it short", "Use more data", "I don't like emojis"), extract it as a stand-alone fact.
If it is just data (e.g., "The URL is example.com"), ignore it.

Return ONLY the extracted preference as a string, or "NONE"."""

MIN_LESSON_LENGTH = 20
MIN_PREFERENCE_INPUT = 10
MIN_PREFERENCE_LENGTH = 5


class Reflector:
    def __init__(self, db: Database, router: ProviderRouter, memory: MemoryStore):
        self.db = db
        self.router = router
        self.memory = memory
        self.logger = get_logger(__name__)

    async def reflect(self, workflow_id: int) -> int:
        """
        Store strategic lessons from a completed workflow.

        Returns:
            Number of lessons stored (0 for unknown or unfinished workflows)
        """
        row = self.db.query_one("SELECT name, status, result FROM workflows WHERE id = ?", (workflow_id,))
        if row is None or row["status"] != WorkflowStatus.COMPLETED.value:
            return 0

        try:
            response = await self.router.send(REFLECTION_PROMPT.format(name=row["name"], result=row["result"] or ""))
        except ClawError as e:
            self.logger.error("reflection_failed", workflow_id=workflow_id, error=e.message)
            return 0

        stored = 0
        for lesson in response.text.split("---"):
            cleaned = lesson.strip()
            if len(cleaned) <= MIN_LESSON_LENGTH:
                continue
            await self.memory.store_fact(
                cleaned,
                type=FactType.STRATEGIC_LESSON,
                metadata={"workflow_id": workflow_id, "workflow_name": row["name"]},
            )
            stored += 1
            self.logger.info("lesson_learned", workflow_id=workflow_id, preview=cleaned[:50])

        self.logger.info("reflection_complete", workflow_id=workflow_id, lessons=stored)
        return stored

    async def learn_preference(self, text: str) -> str | None:
        """Extract and store a user preference from feedback, if there is one."""
        if len(text) < MIN_PREFERENCE_INPUT:
            return None

        try:
            response = await self.router.send(PREFERENCE_PROMPT.format(input=text))
        except ClawError as e:
            self.logger.error("preference_learning_failed", error=e.message)
            return None

        preference = response.text.strip()
        if preference == "NONE" or len(preference) <= MIN_PREFERENCE_LENGTH:
            return None

        await self.memory.store_fact(preference, type=FactType.USER_PREFERENCE)
        self.logger.info("preference_learned", preview=preference[:50])
        return preference
