"""
Core tools every agent gets: delegation, workflows and the clock.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from ..exceptions import RecursionBudgetExceededError
from ..utils.background import BackgroundTasks
from .registry import ToolContext, ToolRegistry

if TYPE_CHECKING:
    from ..core.reflector import Reflector
    from ..core.swarm import SwarmManager
    from ..core.workflows import WorkflowEngine

DEPTH_EXHAUSTED_REPLY = "ERROR: Maximum delegation depth reached. Please consolidate and return what you have."

TRAIT_IDS = ["generalist", "researcher", "coder", "seo"]


def register_core_tools(
    registry: ToolRegistry,
    swarm: "SwarmManager",
    workflows: "WorkflowEngine",
    reflector: "Reflector | None" = None,
    background: BackgroundTasks | None = None,
) -> ToolRegistry:
    """Register delegate_task, run_workflow, resume_workflow and get_current_time."""
    background = background or BackgroundTasks()

    @registry.register(
        "delegate_task",
        "Delegates a complex sub-task to a specialized sub-agent (e.g., researcher, coder, seo). "
        "Use this when you need deep work on a specific topic while you continue managing the main conversation.",
        {
            "type": "object",
            "properties": {
                "task": {"type": "string", "description": "The specific task or prompt for the sub-agent."},
                "trait": {"type": "string", "enum": TRAIT_IDS, "description": "The role/trait of the sub-agent."},
                "instructions": {"type": "string", "description": "Optional special instructions for the sub-agent."},
            },
            "required": ["task", "trait"],
        },
        accepts_context=True,
        timed=False,
    )
    async def delegate_task(task: str, trait: str, instructions: str | None = None, *, context: ToolContext) -> str:
        if instructions:
            task = f"{task}\n\nSPECIAL INSTRUCTIONS FROM PARENT AGENT:\n{instructions}"
        try:
            result = await swarm.spawn_sub_agent(task, trait, depth=context.depth)
        except RecursionBudgetExceededError:
            return DEPTH_EXHAUSTED_REPLY
        return f"### Sub-Agent ({trait}) Output (Recursive Depth: {context.depth + 1}):\n{result}"

    @registry.register(
        "run_workflow",
        "Decomposes a complex request into a multi-step plan and executes it step-by-step using specialized agents. "
        "Use this for major projects (e.g., 'Build a full landing page', 'Run a deep SEO audit').",
        {
            "type": "object",
            "properties": {
                "request": {"type": "string", "description": "The high-level user request to decompose."},
            },
            "required": ["request"],
        },
        timed=False,
    )
    async def run_workflow(request: str) -> str:
        workflow = await workflows.create_plan(request)
        return await workflows.run_to_completion(workflow.id)

    @registry.register(
        "resume_workflow",
        "Resumes a blocked workflow with the provided user input. "
        "Use this when a workflow is PAUSED and waiting for information.",
        {
            "type": "object",
            "properties": {
                "workflow_id": {"type": "integer", "description": "The ID of the workflow to resume."},
                "input": {"type": "string", "description": "The information provided by the user."},
            },
            "required": ["workflow_id", "input"],
        },
        timed=False,
    )
    async def resume_workflow(workflow_id: int, input: str) -> str:
        if reflector is not None:
            background.spawn(reflector.learn_preference(input), name="learn_preference")
        return await workflows.resume(int(workflow_id), input)

    @registry.register("get_current_time", "Get the current time and date.")
    def get_current_time() -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    return registry
