"""
Sub-agent spawner.

A sub-agent is an ``AgentLoop`` running one delegated task under a role
trait, with the collaborative blackboard and its delegation depth in the
system prompt. Depth is bounded by ``config.max_delegation_depth``.
"""

from ..exceptions import ProviderChainExhaustedError, RecursionBudgetExceededError
from ..llm.router import ProviderRouter
from ..memory.store import MemoryStore
from ..models.enums import Role
from ..tools.registry import ToolRegistry
from ..utils.background import BackgroundTasks
from ..utils.logging import get_logger
from .act import ToolExecutor
from .agent import AgentLoop
from .config import ClawConfig
from .traits import get_trait

# tools that would start a nested workflow from inside a workflow step
SUB_AGENT_EXCLUDED_TOOLS = frozenset({"run_workflow", "resume_workflow"})


def build_sub_agent_prompt(trait_prompt: str, task: str, blackboard: str | None, depth: int) -> str:
    context_info = f"\n\nCOLLABORATIVE BLACKBOARD (Previous Findings):\n{blackboard}" if blackboard else ""
    depth_info = f"\n(Delegation Depth: {depth})" if depth > 0 else ""
    return (
        f"{trait_prompt}{context_info}{depth_info}\n\nTASK: {task}\n\n"
        "Your goal is to complete this specific task and return the final finding or output. "
        "Do not engage in conversational filler."
    )


class SwarmManager:
    """
    Example:
        swarm = SwarmManager(router, executor, registry, memory, config, background)
        findings = await swarm.spawn_sub_agent("Compare three CRM tools", "researcher")
    """

    def __init__(
        self,
        router: ProviderRouter,
        executor: ToolExecutor,
        registry: ToolRegistry,
        memory: MemoryStore | None,
        config: ClawConfig,
        background: BackgroundTasks | None = None,
    ):
        self.router = router
        self.executor = executor
        self.registry = registry
        self.memory = memory
        self.config = config
        self.background = background or BackgroundTasks()
        self.logger = get_logger(__name__)

    def check_budget(self, depth: int) -> None:
        """
        Raises:
            RecursionBudgetExceededError: When an agent at ``depth`` may not delegate further
        """
        if depth >= self.config.max_delegation_depth:
            raise RecursionBudgetExceededError(depth, self.config.max_delegation_depth)

    async def spawn_sub_agent(
        self,
        task: str,
        role: str,
        blackboard: str | None = None,
        depth: int = 0,
    ) -> str:
        """
        Run ``task`` in a sub-agent one level below the caller.

        Args:
            task: Task description for the sub-agent
            role: Trait id; unknown ids fall back to the generalist
            blackboard: Findings accumulated by earlier agents
            depth: Delegation depth of the calling agent

        Returns:
            The sub-agent's final text, or an ``Error: ...`` line when the
            provider chain failed

        Raises:
            RecursionBudgetExceededError: When the caller is already at the depth limit
        """
        self.check_budget(depth)
        trait = get_trait(role)
        sub_depth = depth + 1
        self.logger.info("sub_agent_spawned", trait=trait.id, depth=sub_depth, task=task[:50])

        loop = AgentLoop(
            self.router,
            self.executor,
            self.registry,
            self.memory,
            self.config,
            background=self.background,
            depth=sub_depth,
            excluded_tools=SUB_AGENT_EXCLUDED_TOOLS,
        )
        system_prompt = build_sub_agent_prompt(trait.system_prompt, task, blackboard, sub_depth)

        try:
            result = await loop.execute(task, system_prompt, role=trait.id)
        except ProviderChainExhaustedError as e:
            self.logger.error("sub_agent_failed", trait=trait.id, depth=sub_depth, error=e.message)
            return f"Error: Sub-agent execution failed: {e.message}"

        if self.memory is not None:
            self.background.spawn(
                self.memory.log_message(Role.SYSTEM, f"Sub-agent ({trait.name}) completed task: {task[:50]}..."),
                name="log_sub_agent",
            )
        return result.text
