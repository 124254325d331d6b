"""Declarative multi-step workflows built from agents."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from taskforge.agents.base import Agent
from taskforge.schemas.agents import AgentContext, AgentResult
from taskforge.services.orchestrator import invoke_agent

logger = logging.getLogger(__name__)

StepCondition = Callable[[Any, AgentContext], bool]
GroupMerge = Callable[[Dict[str, Any], AgentContext], Any]


@dataclass
class WorkflowStep:
    """
    One named step wrapping a single agent.

    ``input`` is either a constant or ``fn(previous_output, context)``.
    Consecutive steps flagged ``parallel`` run as one concurrent group; any
    member may carry ``merge`` to reduce the group's outputs
    (``{step_id: data}``) into the next step's input.
    """

    id: str
    name: str
    agent: Agent
    input: Any = None
    condition: Optional[StepCondition] = None
    parallel: bool = False
    merge: Optional[GroupMerge] = None

    def resolve_input(self, current_input: Any, context: AgentContext) -> Any:
        if self.input is None:
            return current_input
        if callable(self.input):
            return self.input(current_input, context)
        return self.input


@dataclass
class WorkflowDefinition:
    """Ordered steps making up a workflow."""

    id: str
    name: str
    steps: List[WorkflowStep]
    description: Optional[str] = None


@dataclass
class WorkflowResult:
    """Outcome of a workflow run with every recorded step result."""

    success: bool
    step_results: Dict[str, AgentResult] = field(default_factory=dict)
    final_result: Optional[AgentResult] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Steps whose condition was false
    skipped_steps: List[str] = field(default_factory=list)


class WorkflowEngine:
    """Executes workflow definitions step group by step group."""

    def execute_workflow(
        self,
        workflow: WorkflowDefinition,
        initial_input: Any,
        context: AgentContext,
    ) -> WorkflowResult:
        """
        Execute a workflow definition.

        Args:
            workflow: Definition to run
            initial_input: Input of the first step group
            context: Base context; each step sees it stamped with
                ``workflow_id`` and ``step_id``

        Returns:
            WorkflowResult; on failure it holds the step results so far and
            an error naming the failing step(s)
        """
        started = time.perf_counter()
        step_results: Dict[str, AgentResult] = {}
        skipped_steps: List[str] = []
        current_input = initial_input
        steps_executed = 0

        def finish(success: bool, error: Optional[str] = None) -> WorkflowResult:
            final_result = None
            if success and workflow.steps:
                final_result = step_results.get(workflow.steps[-1].id)
            return WorkflowResult(
                success=success,
                step_results=step_results,
                final_result=final_result,
                error=error,
                skipped_steps=skipped_steps,
                metadata={
                    "workflow_id": workflow.id,
                    "execution_time": round((time.perf_counter() - started) * 1000, 3),
                    "steps_executed": steps_executed,
                },
            )

        logger.info(f"Workflow {workflow.id} started ({len(workflow.steps)} steps)")

        try:
            for group in self.group_steps(workflow.steps):
                if len(group) == 1:
                    step = group[0]
                    result, skipped = self._run_step(workflow, step, current_input, context)
                    step_results[step.id] = result
                    if skipped:
                        skipped_steps.append(step.id)
                        continue

                    steps_executed += 1
                    if not result.success:
                        logger.warning(f"Workflow {workflow.id} step {step.id} failed: {result.error.message}")
                        return finish(False, f"Step {step.name} failed: {result.error.message}")

                    current_input = result.data
                    continue

                with ThreadPoolExecutor(max_workers=len(group), thread_name_prefix="step") as pool:
                    futures = [
                        pool.submit(self._run_step, workflow, step, current_input, context)
                        for step in group
                    ]
                    outcomes = [future.result() for future in futures]

                group_results = [result for result, _ in outcomes]
                executed = []
                for step, (result, skipped) in zip(group, outcomes):
                    step_results[step.id] = result
                    if skipped:
                        skipped_steps.append(step.id)
                    else:
                        executed.append((step, result))
                        steps_executed += 1

                failed_ids = [step.id for step, result in zip(group, group_results) if not result.success]
                if failed_ids:
                    logger.warning(f"Workflow {workflow.id} parallel steps failed: {failed_ids}")
                    return finish(False, f"Parallel steps failed: {', '.join(failed_ids)}")

                current_input = self._group_output(group, executed, current_input, context)

        except Exception as e:
            logger.error(f"Workflow {workflow.id} aborted: {e}", exc_info=True)
            return finish(False, str(e))

        logger.info(f"Workflow {workflow.id} completed ({steps_executed} steps executed)")
        return finish(True)

    def _run_step(
        self,
        workflow: WorkflowDefinition,
        step: WorkflowStep,
        current_input: Any,
        context: AgentContext,
    ) -> Tuple[AgentResult, bool]:
        """Run one step. The flag is True when its condition skipped it."""
        if step.condition is not None and not step.condition(current_input, context):
            logger.debug(f"Workflow {workflow.id} step {step.id} skipped")
            return AgentResult.skipped(), True

        step_input = step.resolve_input(current_input, context)
        step_context = context.derive(workflow_id=workflow.id, step_id=step.id)
        return invoke_agent(step.agent, step_input, step_context), False

    def _group_output(
        self,
        group: Sequence[WorkflowStep],
        executed: Sequence[Tuple[WorkflowStep, AgentResult]],
        current_input: Any,
        context: AgentContext,
    ) -> Any:
        """Input handed to the group after a parallel group succeeds."""
        if not executed:
            return current_input

        merge = next((step.merge for step in group if step.merge is not None), None)
        if merge is not None:
            return merge({step.id: result.data for step, result in executed}, context)

        if len(executed) > 1:
            discarded = [step.id for step, _ in executed[1:]]
            logger.debug(f"Parallel group without merge, outputs of {discarded} not forwarded")
        return executed[0][1].data

    @staticmethod
    def group_steps(steps: Sequence[WorkflowStep]) -> List[List[WorkflowStep]]:
        """Split steps into runs of consecutive parallel steps and singletons."""
        groups: List[List[WorkflowStep]] = []
        current: List[WorkflowStep] = []

        for step in steps:
            if step.parallel:
                current.append(step)
                continue
            if current:
                groups.append(current)
                current = []
            groups.append([step])

        if current:
            groups.append(current)
        return groups

    def create_linear_workflow(
        self,
        id: str,
        name: str,
        agents: Sequence[Agent],
        description: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Create a simple linear workflow, one step per agent."""
        return WorkflowDefinition(
            id=id,
            name=name,
            description=description,
            steps=[
                WorkflowStep(id=f"step-{index}", name=agent.name, agent=agent)
                for index, agent in enumerate(agents)
            ],
        )
