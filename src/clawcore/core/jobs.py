"""
Scheduled job entry points.

Each job re-enters the agent loop or the memory store with a synthesized
prompt, logs a system message with the outcome, hands the text to the
notifier when one is set, and returns it. Failures are logged and the job
returns None; an external scheduler decides when jobs run.
"""

from collections.abc import Awaitable, Callable
from pathlib import Path

from ..memory.multimodal import payload_text
from ..memory.store import MemoryStore
from ..models.enums import Role
from ..utils.logging import get_logger
from .agent import AgentLoop
from .config import ClawConfig
from .proactive import ProactiveMonitor

Notifier = Callable[[str], Awaitable[None]]

NO_TASK_LIST = "No task list found."
MAX_PROMPT_CHARS = 40_000
SUMMARIZE_BATCH = 20

DAILY_BRIEFING_PROMPT = """You are the user's Chief of Staff. Prepare a high-density "Morning Situational Report" for the user.

HISTORY/FACTS:
{summary}
{history}

CURRENT TASK LIST:
{tasks}

INSTRUCTIONS:
1. **Today's Priorities**: Identify the top 3 uncompleted tasks.
2. **Workspace Status**: Briefly summarize where we left off based on history.
3. **Personal Touch**: Acknowledge any reported user stressors or preferences from memory.
4. **Call to Action**: One specific question to kickstart the day.

STYLE: Professional, concise, proactive. Use Markdown formatting."""

EVENING_RECAP_PROMPT = """It is evening. Prepare a "Daily Recap" for the user.

RECENT ACTIVITY:
{history}

INSTRUCTIONS:
1. **Accomplishments**: List the key things we did today.
2. **Unfinished Business**: What was started but not finished?
3. **Tomorrow's Outlook**: Briefly mention what should be the first priority tomorrow.

Keep it warm but professional. Use Markdown."""

RECOMMENDATION_PROMPT = """You are a high-agency proactive partner.
Review the user's current task list and recent conversation.

TASK LIST:
{tasks}

RECENT CONTEXT:
{summary}
{history}

INSTRUCTIONS:
1. Identify ONE uncompleted task that seems high-priority or where the user might be stuck.
2. Propose a SPECIFIC action you can take right now to help move it forward.
3. If the user hasn't talked for a while, keep it low-pressure. If they are active, be bold.

Response Style: Concise, punchy, helpful. Use Markdown. Start with "**Smart Recommendation**"."""


class ScheduledJobs:
    """
    Example:
        jobs = ScheduledJobs(agent, memory, proactive, config, notifier=send_to_chat)
        await jobs.run_daily_briefing()
    """

    JOB_NAMES: tuple[str, ...] = (
        "run_daily_briefing",
        "run_evening_recap",
        "consolidate_memory",
        "run_fact_consolidation",
        "run_smart_recommendations",
        "check_system_health",
    )

    def __init__(
        self,
        agent: AgentLoop,
        memory: MemoryStore,
        proactive: ProactiveMonitor,
        config: ClawConfig,
        notifier: Notifier | None = None,
    ):
        self.agent = agent
        self.memory = memory
        self.proactive = proactive
        self.config = config
        self.notifier = notifier
        self.logger = get_logger(__name__)

    async def run(self, name: str) -> str | None:
        """Run a job by name."""
        if name not in self.JOB_NAMES:
            raise ValueError(f"Unknown job '{name}'. Available: {', '.join(self.JOB_NAMES)}")
        return await getattr(self, name)()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _task_list(self) -> str:
        path: Path | None = self.config.task_list_path
        if path is None or not path.exists():
            return NO_TASK_LIST
        return path.read_text(encoding="utf-8")

    def _history(self, limit: int) -> str:
        return "\n".join(
            f"{m.role.value}: {payload_text(m.content or '')}"
            for m in self.memory.get_recent_context(limit)
            if m.role != Role.SYSTEM
        )

    def _summary(self, label: str) -> str:
        summary = self.memory.get_latest_summary()
        return f"[{label}]: {summary.content}" if summary else ""

    async def _finish(self, job: str, log_prefix: str, text: str, heading: str | None = None) -> str:
        await self.memory.log_message(Role.SYSTEM, f"{log_prefix}: {text[:100]}...")
        if self.notifier is not None:
            await self.notifier(f"{heading}\n\n{text}" if heading else text)
        self.logger.info("job_completed", job=job, length=len(text))
        return text

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def run_daily_briefing(self) -> str | None:
        try:
            prompt = DAILY_BRIEFING_PROMPT.format(
                summary=self._summary("LATEST SUMMARY"),
                history=self._history(5),
                tasks=self._task_list(),
            )
            result = await self.agent.run(prompt)
            return await self._finish(
                "daily_briefing", "DAILY BRIEFING GENERATED", result.text, "**Morning Situational Report**"
            )
        except Exception as e:
            self.logger.error("job_failed", job="daily_briefing", error=str(e))
            return None

    async def run_evening_recap(self) -> str | None:
        try:
            prompt = EVENING_RECAP_PROMPT.format(history=self._history(15))
            if len(prompt) > MAX_PROMPT_CHARS:
                prompt = prompt[:MAX_PROMPT_CHARS] + "... [TRUNCATED DUE TO LENGTH]"
            result = await self.agent.run(prompt)
            return await self._finish("evening_recap", "EVENING RECAP GENERATED", result.text, "**Evening Recap**")
        except Exception as e:
            self.logger.error("job_failed", job="evening_recap", error=str(e))
            return None

    async def run_smart_recommendations(self) -> str | None:
        try:
            prompt = RECOMMENDATION_PROMPT.format(
                tasks=self._task_list(),
                summary=self._summary("PREV SUMMARY"),
                history=self._history(10),
            )
            result = await self.agent.run(prompt)
            return await self._finish("smart_recommendations", "SMART RECOMMENDATION", result.text)
        except Exception as e:
            self.logger.error("job_failed", job="smart_recommendations", error=str(e))
            return None

    async def consolidate_memory(self) -> str | None:
        try:
            summary = await self.memory.summarize_history(SUMMARIZE_BATCH)
            if summary is None:
                self.logger.info("job_skipped", job="consolidate_memory", reason="nothing_to_summarize")
                return None
            return await self._finish("consolidate_memory", "MEMORY SUMMARIZED", summary.content)
        except Exception as e:
            self.logger.error("job_failed", job="consolidate_memory", error=str(e))
            return None

    async def run_fact_consolidation(self) -> str | None:
        try:
            report = await self.memory.consolidate_facts()
            if report.operations == 0:
                return None
            text = (
                f"Fact consolidation applied {report.operations} operations "
                f"({report.created} created, {report.deleted} deleted)."
            )
            return await self._finish("fact_consolidation", "FACT CONSOLIDATION", text)
        except Exception as e:
            self.logger.error("job_failed", job="fact_consolidation", error=str(e))
            return None

    async def check_system_health(self) -> str | None:
        try:
            alert = await self.proactive.check_system_health()
            if alert is None:
                return None
            return await self._finish("system_health", "HEALTH ALERT", alert)
        except Exception as e:
            self.logger.error("job_failed", job="system_health", error=str(e))
            return None
