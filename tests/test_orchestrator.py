"""Tests for agent combinators."""

import threading

import pytest
from fakes import BarrierAgent, FailingAgent, FlakyAgent, FnAgent, RaisingAgent

from taskforge.schemas.agents import AgentErrorCode
from taskforge.services.orchestrator import (
    chain_agents,
    invoke_agent,
    retry_agent,
    run_agents_in_parallel,
    run_conditional_agent,
    run_first_successful,
)


def test_chain_feeds_outputs_forward(context):
    """Each agent receives the previous agent's output."""
    add_one = FnAgent("add-one", lambda x: x + 1)
    double = FnAgent("double", lambda x: x * 2)

    result = chain_agents([add_one, double], 3, context)

    assert result.success
    assert result.data == 8
    assert double.inputs == [4]


def test_chain_transformers(context):
    """Transformers reshape the input before the agent at their index."""
    seen = []
    add_one = FnAgent("add-one", lambda x: x + 1)
    record = FnAgent("record", lambda x: x)

    def scale(previous, index):
        seen.append((previous, index))
        return previous * 10

    result = chain_agents([add_one, record], 1, context, transformers=[None, scale])

    assert result.data == 20
    assert seen == [(2, 1)]


def test_chain_stops_at_first_failure(context):
    """A failing agent short-circuits the chain."""
    first = FnAgent("A", lambda x: x + 1)
    broken = FailingAgent("B", "bad data")
    never = FnAgent("C")

    result = chain_agents([first, broken, never], 0, context)

    assert not result.success
    assert result.metadata["failed_agent"] == "B"
    assert result.metadata["agent_index"] == 1
    assert result.error.message == "bad data"
    assert never.count == 0


def test_chain_empty(context):
    """Test chaining no agents."""
    result = chain_agents([], "input", context)

    assert not result.success
    assert result.error.code == AgentErrorCode.PROCESSING_ERROR
    assert result.error.message == "No agents processed"


def test_parallel_preserves_order(context):
    """Results line up with the agent list, failures included."""
    agents = [
        FnAgent("one", lambda x: x + 1),
        FailingAgent("two"),
        FnAgent("three", lambda x: x + 3),
    ]

    results = run_agents_in_parallel(agents, 10, context)

    assert [r.success for r in results] == [True, False, True]
    assert results[0].data == 11
    assert results[2].data == 13
    assert all(agent.inputs == [10] for agent in agents)


def test_parallel_runs_concurrently(context):
    """All agents are in flight at the same time."""
    barrier = threading.Barrier(3)
    agents = [BarrierAgent(f"agent-{i}", barrier) for i in range(3)]

    results = run_agents_in_parallel(agents, None, context)

    assert [r.data for r in results] == ["agent-0", "agent-1", "agent-2"]


def test_parallel_empty(context):
    assert run_agents_in_parallel([], 1, context) == []


def test_contract_breaking_agent_is_contained(context):
    """An agent raising out of process still yields a failed result."""
    results = run_agents_in_parallel([RaisingAgent(), FnAgent("fine")], "x", context)

    assert not results[0].success
    assert results[0].error.agent_name == "raising"
    assert results[0].error.message == "kaboom"
    assert results[1].data == "x"


def test_conditional(context):
    """A false condition skips the agent entirely."""
    agent = FnAgent("maybe", lambda x: x * 2)

    skipped = run_conditional_agent(False, agent, 2, context)
    assert skipped.success
    assert skipped.data is None
    assert skipped.metadata["skipped"] is True
    assert agent.count == 0

    ran = run_conditional_agent(True, agent, 2, context)
    assert ran.data == 4
    assert agent.count == 1


def test_first_successful_falls_back(context):
    """Agents are tried in order until one succeeds."""
    primary = FailingAgent("primary")
    secondary = FailingAgent("secondary")
    tertiary = FnAgent("tertiary", lambda x: "fallback")
    unused = FnAgent("unused")

    result = run_first_successful([primary, secondary, tertiary, unused], "x", context)

    assert result.data == "fallback"
    assert result.metadata["fallback_used"] is True
    assert unused.count == 0


def test_first_successful_primary(context):
    result = run_first_successful([FnAgent("primary"), FailingAgent("backup")], "x", context)

    assert result.metadata["fallback_used"] is False


def test_first_successful_all_fail(context):
    """The last failure is returned when every agent fails."""
    result = run_first_successful([FailingAgent("a", "first"), FailingAgent("b", "second")], "x", context)

    assert not result.success
    assert result.error.message == "second"

    empty = run_first_successful([], "x", context)
    assert empty.error.message == "All agents failed"


def test_retry_exhausts_budget(context, no_sleep):
    """Transient failures are retried with exponential backoff."""
    agent = FailingAgent("flaky", "network unreachable")

    result = retry_agent(agent, {"q": 1}, context, max_retries=2, initial_delay_ms=10, sleep=no_sleep)

    assert not result.success
    assert agent.count == 3
    assert agent.inputs == [{"q": 1}] * 3
    assert no_sleep.delays == [pytest.approx(0.01), pytest.approx(0.02)]
    assert result.metadata["retries"] == 2
    assert result.metadata["attempts"] == 3


def test_retry_stops_on_permanent_failure(context, no_sleep):
    """Failures the agent declines to retry end the loop at once."""
    agent = FailingAgent("strict", "invalid prompt")

    result = retry_agent(agent, "x", context, max_retries=5, sleep=no_sleep)

    assert agent.count == 1
    assert no_sleep.delays == []
    assert result.metadata["retries"] == 0


def test_retry_recovers(context, no_sleep):
    """Test a success after transient failures."""
    agent = FlakyAgent("flaky", failures=2, result="done")

    result = retry_agent(agent, "x", context, max_retries=3, initial_delay_ms=100, sleep=no_sleep)

    assert result.success
    assert result.data == "done"
    assert result.metadata["retries"] == 2
    assert no_sleep.delays == [pytest.approx(0.1), pytest.approx(0.2)]


def test_retry_honours_agent_policy(context, no_sleep):
    """A custom should_retry caps attempts below the budget."""

    class OneRetry(FailingAgent):
        def should_retry(self, payload, error, attempt):
            return attempt < 1

    agent = OneRetry("once", "timeout")
    result = retry_agent(agent, "x", context, max_retries=5, sleep=no_sleep)

    assert agent.count == 2
    assert result.metadata["attempts"] == 2


def test_retry_without_budget(context, no_sleep):
    agent = FailingAgent("single", "timeout")

    result = retry_agent(agent, "x", context, max_retries=0, sleep=no_sleep)

    assert agent.count == 1
    assert result.metadata["retries"] == 0


def test_every_combinator_keeps_envelope(context, no_sleep):
    """Success and error are mutually exclusive on every combinator output."""
    ok = FnAgent("ok")
    bad = FailingAgent("bad")

    results = [
        invoke_agent(RaisingAgent(), 1, context),
        chain_agents([ok, bad], 1, context),
        chain_agents([ok, ok], 1, context),
        run_conditional_agent(False, ok, 1, context),
        run_first_successful([bad, ok], 1, context),
        run_first_successful([bad], 1, context),
        retry_agent(bad, 1, context, max_retries=1, sleep=no_sleep),
        *run_agents_in_parallel([ok, bad], 1, context),
    ]

    for result in results:
        assert result.success == (result.error is None)
        if not result.success:
            assert result.data is None
