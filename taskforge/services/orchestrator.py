"""Agent combinators: chaining, fan-out, conditional, fallback and backoff retry."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence

from tenacity import RetryCallState, Retrying, stop_after_attempt, wait_exponential

from taskforge.agents.base import Agent
from taskforge.schemas.agents import AgentContext, AgentError, AgentErrorCode, AgentResult

logger = logging.getLogger(__name__)

InputTransformer = Callable[[Any, int], Any]


def invoke_agent(agent: Agent, payload: Any, context: AgentContext) -> AgentResult:
    """Call ``agent.process``, turning a stray exception into a failed result."""
    try:
        return agent.process(payload, context)
    except Exception as e:
        logger.error(f"Agent {agent.name} raised instead of returning a result: {e}", exc_info=True)
        return AgentResult.fail(
            AgentError.from_exception(e, agent_name=agent.name),
            agent_name=agent.name,
            agent_version=agent.version,
        )


def chain_agents(
    agents: Sequence[Agent],
    initial_input: Any,
    context: AgentContext,
    transformers: Optional[Sequence[Optional[InputTransformer]]] = None,
) -> AgentResult:
    """
    Run agents in order, feeding each output into the next agent.

    Args:
        agents: Agents to run left to right
        initial_input: Input of the first agent
        context: Shared invocation context
        transformers: Optional per-index ``fn(previous_output, index)``
            applied before agent ``index`` runs

    Returns:
        The last agent's result, or the first failure annotated with
        ``failed_agent`` and ``agent_index``; later agents are not invoked.
    """
    current_input = initial_input
    last_result = None

    for index, agent in enumerate(agents):
        if transformers and index < len(transformers) and transformers[index] is not None:
            current_input = transformers[index](current_input, index)

        result = invoke_agent(agent, current_input, context)

        if not result.success:
            logger.warning(f"Chain stopped at agent {agent.name} (index {index}): {result.error.message}")
            return result.with_metadata(failed_agent=agent.name, agent_index=index)

        last_result = result
        current_input = result.data

    if last_result is None:
        return AgentResult.fail(
            AgentError(code=AgentErrorCode.PROCESSING_ERROR, message="No agents processed"),
        )
    return last_result


def run_agents_in_parallel(
    agents: Sequence[Agent],
    payload: Any,
    context: AgentContext,
) -> List[AgentResult]:
    """
    Run all agents concurrently on the same input.

    Every call is submitted before any result is collected; results come back
    aligned with ``agents`` whatever their completion order or outcome.
    """
    if not agents:
        return []

    with ThreadPoolExecutor(max_workers=len(agents), thread_name_prefix="agent") as pool:
        futures = [pool.submit(invoke_agent, agent, payload, context) for agent in agents]
        return [future.result() for future in futures]


def run_conditional_agent(
    condition: bool,
    agent: Agent,
    payload: Any,
    context: AgentContext,
) -> AgentResult:
    """Run the agent only when ``condition`` holds, else return a skipped success."""
    if not condition:
        return AgentResult.skipped()
    return invoke_agent(agent, payload, context)


def run_first_successful(
    agents: Sequence[Agent],
    payload: Any,
    context: AgentContext,
) -> AgentResult:
    """Try agents in order and return the first success (fallback pattern)."""
    last_failure = None

    for index, agent in enumerate(agents):
        result = invoke_agent(agent, payload, context)
        if result.success:
            if index > 0:
                logger.info(f"Fallback agent {agent.name} succeeded after {index} failure(s)")
            return result.with_metadata(fallback_used=index > 0)
        last_failure = result

    if last_failure is None:
        return AgentResult.fail(
            AgentError(code=AgentErrorCode.PROCESSING_ERROR, message="All agents failed"),
        )
    return last_failure


def retry_agent(
    agent: Agent,
    payload: Any,
    context: AgentContext,
    max_retries: int = 3,
    initial_delay_ms: float = 1000,
    sleep: Callable[[float], None] = time.sleep,
) -> AgentResult:
    """
    Run an agent, retrying failures with exponential backoff.

    The wait before retry ``n`` (zero-based) is ``initial_delay_ms * 2**n``,
    without jitter. Retrying stops as soon as ``agent.should_retry`` declines
    or ``max_retries`` retries have been spent.

    Args:
        agent: Agent to run
        payload: Agent input, identical for every attempt
        context: Invocation context
        max_retries: Retries allowed after the first attempt
        initial_delay_ms: Delay before the first retry
        sleep: Sleep function (seconds), injectable for tests

    Returns:
        The final result with ``retries`` (retries consumed) and ``attempts``
        stamped into metadata
    """
    attempts = 0

    def attempt() -> AgentResult:
        nonlocal attempts
        attempts += 1
        return invoke_agent(agent, payload, context)

    def should_retry(retry_state: RetryCallState) -> bool:
        result = retry_state.outcome.result()
        if result.success:
            return False
        attempt_index = retry_state.attempt_number - 1
        if attempt_index >= max_retries:
            # Budget spent; the stop condition ends the loop
            return True
        return agent.should_retry(payload, result.error, attempt_index)

    def log_retry(retry_state: RetryCallState) -> None:
        result = retry_state.outcome.result()
        logger.warning(
            f"Agent {agent.name} attempt {retry_state.attempt_number} failed "
            f"({result.error.code.value}: {result.error.message}), "
            f"retrying in {retry_state.next_action.sleep:.3f}s"
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay_ms / 1000),
        retry=should_retry,
        before_sleep=log_retry,
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        sleep=sleep,
    )
    result = retrying(attempt)

    return result.with_metadata(retries=attempts - 1, attempts=attempts)
