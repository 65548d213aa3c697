"""
Proactive monitoring: unexpressed intents and process health.
"""

from ..exceptions import ClawError
from ..llm.router import ProviderRouter
from ..memory.store import MemoryStore
from ..utils.logging import get_logger
from .config import ClawConfig
from .status import rss_mb
from .swarm import SwarmManager

INTENT_PROMPT = """Analyze this message from a user: "{text}"
Is the user expressing a new project idea, a curious thought, or a potential task they haven't explicitly asked to start yet?
If YES and the idea is substantial, return "INTENT: [one sentence summary of the idea]".
If NO, return "NONE"."""

RESEARCH_TASK = """Analyze this idea found in {source}: "{snippet}".
Gather 3-5 high-signal findings or a brief implementation plan.
Do NOT notify the user yet."""

MIN_INTENT_INPUT = 10


class ProactiveMonitor:
    def __init__(
        self,
        router: ProviderRouter,
        swarm: SwarmManager,
        memory: MemoryStore,
        config: ClawConfig,
    ):
        self.router = router
        self.swarm = swarm
        self.memory = memory
        self.config = config
        self.logger = get_logger(__name__)

    async def detect_intent(self, text: str) -> str | None:
        """
        Ask whether ``text`` hides an idea worth researching, and research it.

        Returns:
            The detected intent, or None
        """
        if not text or len(text) < MIN_INTENT_INPUT:
            return None

        try:
            response = await self.router.send(INTENT_PROMPT.format(text=text))
        except ClawError as e:
            self.logger.warning("intent_detection_failed", error=e.message)
            return None

        reply = response.text.strip()
        if not reply.startswith("INTENT:"):
            return None

        intent = reply[len("INTENT:"):].strip()
        self.logger.info("intent_detected", intent=intent[:100])
        await self.trigger_background_research("Conversation Intent", intent)
        return intent

    async def trigger_background_research(self, source: str, snippet: str) -> bool:
        """Run a quiet researcher sub-agent unless the topic is already known."""
        if any(snippet in lesson for lesson in self.memory.get_strategic_lessons()):
            self.logger.debug("background_research_skipped", source=source)
            return False

        findings = await self.swarm.spawn_sub_agent(
            RESEARCH_TASK.format(source=source, snippet=snippet), "researcher"
        )
        self.logger.info("background_research_completed", source=source, preview=findings[:50])
        return True

    async def check_system_health(self) -> str | None:
        """Alert text when resident memory is over the configured limit."""
        usage = rss_mb()
        if usage > self.config.health_rss_limit_mb:
            self.logger.warning("memory_pressure", rss_mb=round(usage, 1), limit_mb=self.config.health_rss_limit_mb)
            return (
                f"SYSTEM ALERT: Physical Memory (RSS) is at {usage:.1f} MB. "
                "I recommend optimization or a restart."
            )
        return None
