"""
Workflow Engine: plan, execute step by step, review, block and resume.

A workflow is a persisted plan of role-specialized steps. Each step runs in a
sub-agent whose blackboard is the accumulated result of earlier steps. A
reviewer pass may send the step back exactly once. A step that asks the user
for input blocks the workflow until it is resumed.
"""

import asyncio
import json
import sqlite3
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ..exceptions import (
    ClawError,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowPlanError,
    WorkflowStepError,
)
from ..llm.router import ProviderRouter
from ..memory.store import MemoryStore
from ..models.contracts import StepOutcome, Workflow, WorkflowStep
from ..models.enums import StepOutcomeKind, WorkflowStatus
from ..utils.background import BackgroundTasks
from ..utils.logging import ComponentLogger, get_logger
from ..utils.text import parse_json_reply
from .persistence import Database, now_ms
from .swarm import SwarmManager

if TYPE_CHECKING:
    from .reflector import Reflector

REQUEST_INPUT_MARKER = "REQUEST_USER_INPUT:"
WAITING_MARKER = "WAITING_FOR_USER:"
FIX_MARKER = "FIX:"
COMPLETED_TEXT = "Workflow completed."

PLANNING_PROMPT = """You are a Project Manager. Decompose the following user request into a multi-step plan for specialized agents.
User Request: {task}
{best_practices}

Available Traits:
- researcher: Deep web research and fact-finding.
- coder: Writing, debugging, and refactoring code.
- seo: Domain audits, keyword research, and link building.
- generalist: Default assistant for summaries and formatting.

Return a JSON object:
{{
  "name": "Project Name",
  "steps": [
    {{ "id": 1, "description": "Specific task for this step", "trait": "researcher", "dependencies": [] }}
  ]
}}

DO NOT include any filler text. Only valid JSON."""

REVIEW_PROMPT = """You are a Quality Assurance Reviewer.
Analyze the following result from a sub-agent ({role}) for the task: "{description}"

SUB-AGENT RESULT:
{result}

Is this result sufficient, accurate, and complete based on the task description?
If YES, return "VALID".
If NO, return "FIX: [specific instructions for the sub-agent on how to improve]"."""


def _parse_plan(raw: str) -> tuple[str, list[WorkflowStep]]:
    try:
        plan = parse_json_reply(raw)
    except ValueError as e:
        raise WorkflowPlanError(f"Planner returned invalid JSON: {e}", raw_plan=raw) from e

    if not isinstance(plan, dict) or not isinstance(plan.get("steps"), list):
        raise WorkflowPlanError("Plan must be an object with a 'steps' list", raw_plan=raw)

    steps = []
    for index, item in enumerate(plan["steps"]):
        if not isinstance(item, dict) or not item.get("description"):
            raise WorkflowPlanError(f"Step {index + 1} has no description", raw_plan=raw)
        try:
            steps.append(
                WorkflowStep(
                    id=item.get("id", index + 1),
                    description=item["description"],
                    role=item.get("role") or item.get("trait") or "generalist",
                    dependencies=item.get("dependencies") or [],
                )
            )
        except ValidationError as e:
            raise WorkflowPlanError(f"Step {index + 1} is malformed: {e}", raw_plan=raw) from e

    return str(plan.get("name") or "Untitled Workflow"), steps


class WorkflowEngine:
    """
    Example:
        engine = WorkflowEngine(db, router, swarm, memory, background=tasks)
        workflow = await engine.create_plan("Audit example.com for SEO")
        report = await engine.run_to_completion(workflow.id)
    """

    def __init__(
        self,
        db: Database,
        router: ProviderRouter,
        swarm: SwarmManager,
        memory: MemoryStore | None = None,
        reflector: "Reflector | None" = None,
        background: BackgroundTasks | None = None,
        rich_output: bool = False,
    ):
        self.db = db
        self.router = router
        self.swarm = swarm
        self.memory = memory
        self.reflector = reflector
        self.background = background or BackgroundTasks()
        self.logger = get_logger(__name__)
        self.component_logger = ComponentLogger("workflow_engine", rich_output=rich_output)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_workflow(row: sqlite3.Row) -> Workflow:
        return Workflow(
            id=row["id"],
            name=row["name"],
            status=WorkflowStatus(row["status"]),
            plan=[WorkflowStep(**step) for step in json.loads(row["plan"] or "[]")],
            current_step=row["current_step"] or 0,
            result=row["result"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get(self, workflow_id: int) -> Workflow:
        """
        Raises:
            WorkflowNotFoundError: Unknown id
        """
        row = self.db.query_one("SELECT * FROM workflows WHERE id = ?", (workflow_id,))
        if row is None:
            raise WorkflowNotFoundError(workflow_id)
        return self._row_to_workflow(row)

    def list_workflows(self, status: WorkflowStatus | None = None) -> list[Workflow]:
        if status is None:
            rows = self.db.query("SELECT * FROM workflows ORDER BY id")
        else:
            rows = self.db.query("SELECT * FROM workflows WHERE status = ? ORDER BY id", (status.value,))
        return [self._row_to_workflow(r) for r in rows]

    def _update(self, workflow_id: int, **fields: Any) -> None:
        fields["updated_at"] = now_ms()
        if isinstance(fields.get("status"), WorkflowStatus):
            fields["status"] = fields["status"].value
        assignments = ", ".join(f"{column} = ?" for column in fields)
        self.db.execute(
            f"UPDATE workflows SET {assignments} WHERE id = ?",
            (*fields.values(), workflow_id),
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def create_plan(self, task: str) -> Workflow:
        """
        Decompose ``task`` into a persisted plan in status ``planned``.

        Raises:
            WorkflowPlanError: The planner reply is not a usable plan
        """
        lessons = self.memory.get_strategic_lessons() if self.memory is not None else []
        best_practices = ""
        if lessons:
            best_practices = "\nGleaned Best Practices & Preferences:\n- " + "\n- ".join(lessons)

        response = await self.router.send(PLANNING_PROMPT.format(task=task, best_practices=best_practices))
        name, steps = _parse_plan(response.text)

        timestamp = now_ms()
        workflow_id = self.db.execute(
            "INSERT INTO workflows (name, status, plan, current_step, result, created_at, updated_at) "
            "VALUES (?, ?, ?, 0, '', ?, ?)",
            (
                name,
                WorkflowStatus.PLANNED.value,
                json.dumps([step.model_dump() for step in steps]),
                timestamp,
                timestamp,
            ),
        )
        self.logger.info("workflow_planned", workflow_id=workflow_id, name=name, steps=len(steps))
        return self.get(workflow_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_next_step(self, workflow_id: int, user_input: str | None = None) -> StepOutcome:
        """
        Run the current step of a workflow.

        Raises:
            WorkflowNotFoundError: Unknown id
            WorkflowError: The workflow already failed
            WorkflowStepError: The step raised; the workflow is now ``failed``

        Cancellation while a step runs also leaves the workflow ``failed``.
        """
        workflow = self.get(workflow_id)

        if workflow.status == WorkflowStatus.COMPLETED:
            return StepOutcome(kind=StepOutcomeKind.WORKFLOW_COMPLETED, text=COMPLETED_TEXT)
        if workflow.status == WorkflowStatus.FAILED:
            raise WorkflowError(
                f"Workflow {workflow_id} has failed and cannot continue",
                details={"workflow_id": workflow_id, "current_step": workflow.current_step},
            )

        if workflow.is_exhausted:
            self._update(workflow_id, status=WorkflowStatus.COMPLETED)
            self.logger.info("workflow_completed", workflow_id=workflow_id, steps=len(workflow.plan))
            if self.reflector is not None:
                self.background.spawn(self.reflector.reflect(workflow_id), name="reflect_workflow")
            return StepOutcome(kind=StepOutcomeKind.WORKFLOW_COMPLETED, text=COMPLETED_TEXT)

        index = workflow.current_step
        step = workflow.plan[index]
        self._update(workflow_id, status=WorkflowStatus.ACTIVE)
        started = self.component_logger.log_operation_start(
            "workflow_step", {"workflow_id": workflow_id, "step": index + 1, "role": step.role}
        )

        try:
            result = await self._run_step(step, workflow.result, user_input)
        except asyncio.CancelledError:
            self._update(workflow_id, status=WorkflowStatus.FAILED)
            self.logger.warning("workflow_step_cancelled", workflow_id=workflow_id, step=index + 1)
            raise
        except Exception as e:
            self._update(workflow_id, status=WorkflowStatus.FAILED)
            self.component_logger.log_operation_error(
                "workflow_step", e, {"workflow_id": workflow_id, "step": index + 1}
            )
            message = e.message if isinstance(e, ClawError) else str(e)
            raise WorkflowStepError(
                f"Step {index + 1} of workflow {workflow_id} failed: {message}",
                workflow_id=workflow_id,
                step_index=index,
            ) from e

        if result.startswith(REQUEST_INPUT_MARKER):
            question = result[len(REQUEST_INPUT_MARKER):].strip()
            self._update(
                workflow_id,
                status=WorkflowStatus.BLOCKED,
                result=f"{workflow.result}\n\n### Step {index + 1} (BLOCKED): {step.role}\nQuestion: {question}",
            )
            self.logger.info("workflow_blocked", workflow_id=workflow_id, step=index + 1)
            return StepOutcome(
                kind=StepOutcomeKind.BLOCKED,
                text=f"{WAITING_MARKER} {question}",
                question=question,
            )

        self._update(
            workflow_id,
            status=WorkflowStatus.ACTIVE,
            current_step=index + 1,
            result=f"{workflow.result}\n\n### Step {index + 1}: {step.role}\n{result}",
        )
        self.component_logger.log_operation_complete(
            "workflow_step", started, {"workflow_id": workflow_id, "step": index + 1}
        )
        return StepOutcome(kind=StepOutcomeKind.STEP_COMPLETED, text=result)

    async def _run_step(self, step: WorkflowStep, blackboard: str, user_input: str | None) -> str:
        task = step.description
        if user_input:
            task = f"{task}\n\nUSER PROVIDED INPUT: {user_input}"

        result = await self.swarm.spawn_sub_agent(task, step.role, blackboard)
        if result.startswith(REQUEST_INPUT_MARKER):
            return result

        review = await self.router.send(
            REVIEW_PROMPT.format(role=step.role, description=step.description, result=result)
        )
        verdict = review.text.strip()
        if not verdict.startswith(FIX_MARKER):
            return result

        feedback = verdict[len(FIX_MARKER):].strip()
        self.logger.info("workflow_course_correction", role=step.role, feedback=feedback[:100])
        retry_task = (
            f"{task}\n\nFEEDBACK FROM REVIEWER: {feedback}\n"
            "PLEASE FIX YOUR PREVIOUS RESPONSE AND PROVIDE A HIGHER QUALITY RESULT."
        )
        return await self.swarm.spawn_sub_agent(retry_task, step.role, blackboard)

    async def run_to_completion(self, workflow_id: int, user_input: str | None = None) -> str:
        """
        Drive steps until the workflow completes or blocks.

        ``user_input`` is only passed to the first step executed.

        Returns:
            Markdown report of the run
        """
        return await self._drive(workflow_id, user_input, resumed=False)

    async def resume(self, workflow_id: int, user_input: str) -> str:
        """
        Re-run the blocked step with ``user_input``, then keep going.

        Raises:
            WorkflowError: The workflow is not blocked
        """
        workflow = self.get(workflow_id)
        if workflow.status != WorkflowStatus.BLOCKED:
            raise WorkflowError(
                f"Workflow {workflow_id} is {workflow.status.value}, not blocked",
                details={"workflow_id": workflow_id, "status": workflow.status.value},
            )
        return await self._drive(workflow_id, user_input, resumed=True)

    async def _drive(self, workflow_id: int, user_input: str | None, resumed: bool) -> str:
        verb = "Resuming" if resumed else "Starting"
        lines = [f"{verb} Workflow #{workflow_id}..."]
        pending_input = user_input

        while True:
            outcome = await self.execute_next_step(workflow_id, pending_input)
            pending_input = None

            if outcome.kind == StepOutcomeKind.BLOCKED:
                if resumed:
                    return (
                        f"### Workflow Paused Again (ID: {workflow_id})\n\n"
                        f"I need even more information:\n\n**{outcome.question}**\n\n"
                        "Please reply again to continue."
                    )
                return (
                    f"### Workflow Paused (ID: {workflow_id})\n\n"
                    f"I need more information to proceed with the next step:\n\n**{outcome.question}**\n\n"
                    "Please reply to this message to provide the details and I will resume the workflow."
                )
            if outcome.kind == StepOutcomeKind.WORKFLOW_COMPLETED:
                break
            label = "Step Resumed & Finished" if resumed else "Step Finished"
            lines.append(f"{label}: {outcome.text[:100]}...")

        title = "### Workflow Resumed & Completed!" if resumed else "### Workflow Completed!"
        return title + "\n" + "\n".join(lines)
