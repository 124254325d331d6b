"""Tests for the background worker."""

import threading

import pytest
from fakes import FailingAgent, FlakyAgent, FnAgent

from taskforge.agents.echo import EchoAgent
from taskforge.agents.function import FunctionAgent
from taskforge.agents.registry import JobRegistry
from taskforge.schemas.agents import AgentResult
from taskforge.schemas.job import JobStatus
from taskforge.services.workflow import WorkflowEngine
from taskforge.worker import Worker, start_workers


@pytest.fixture
def registry():
    return JobRegistry().register_agent("echo", EchoAgent())


@pytest.fixture
def make_worker(job_queue, registry, tracker, no_sleep):
    def factory(**kwargs):
        options = {
            "job_queue": job_queue,
            "registry": registry,
            "tracker": tracker,
            "poll_interval": 0.01,
            "inline_retries": 0,
            "sleep": no_sleep,
            "worker_id": "w-test",
        }
        options.update(kwargs)
        return Worker(**options)

    return factory


def test_run_once_completes_job(job_queue, tracker, make_worker):
    """A claimed job runs through its agent and completes."""
    job_id = job_queue.create_job("echo", {"message": "hi"}, "user-1")

    assert make_worker().run_once()

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.completed_at is not None
    assert tracker.get_metrics("echo").successful_executions == 1


def test_run_once_idle(make_worker):
    assert not make_worker().run_once()


def test_transient_failure_is_retried_by_queue(job_queue, registry, tracker, make_worker):
    """Failed attempts go back to pending until the budget runs out."""
    registry.register_agent("fetch", FailingAgent("fetch", "network unreachable"))
    job_id = job_queue.create_job("fetch", {}, "user-1", max_retries=1)
    worker = make_worker()

    worker.run_once()
    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 1

    worker.run_once()
    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_message == "network unreachable"
    assert tracker.get_metrics("fetch").failed_executions == 2


def test_validation_failure_is_terminal(job_queue, make_worker):
    """Errors that retrying cannot fix fail the job at once."""
    job_id = job_queue.create_job("echo", ["not", "an", "object"], "user-1", max_retries=3)

    make_worker().run_once()

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 0
    assert job.error_message == "payload must be an object"


def test_unknown_job_type(job_queue, make_worker):
    """Jobs without a handler fail without retrying."""
    job_id = job_queue.create_job("nope", {}, "user-1")

    make_worker().run_once()

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_message == "Unknown job type: nope"


def test_context_built_from_job(job_queue, registry, make_worker):
    """Agents receive a context describing the job attempt."""
    agent = FnAgent("inspect")
    registry.register_agent("inspect", agent)
    job_id = job_queue.create_job("inspect", {"project_id": "proj-9"}, "user-7")

    make_worker().run_once()

    context = agent.contexts[0]
    assert context.owner_id == "user-7"
    assert context.project_id == "proj-9"
    assert context.job_id == str(job_id)
    assert context.metadata == {"job_type": "inspect", "attempt": 1, "worker_id": "w-test"}


def test_workflow_job(job_queue, registry, tracker, make_worker):
    """Job types can be backed by workflows."""
    workflow = WorkflowEngine().create_linear_workflow(
        "pipeline",
        "Pipeline",
        [
            FunctionAgent("extract", lambda payload, ctx: payload["text"]),
            FunctionAgent("shout", lambda text, ctx: text.upper()),
        ],
    )
    registry.register_workflow("pipeline", workflow)
    job_id = job_queue.create_job("pipeline", {"text": "hello"}, "user-1")

    make_worker().run_once()

    assert job_queue.get_job(job_id).status == JobStatus.COMPLETED
    assert tracker.get_metrics("extract").total_executions == 1
    assert tracker.get_metrics("shout").total_executions == 1


def test_failed_workflow_job(job_queue, registry, make_worker):
    workflow = WorkflowEngine().create_linear_workflow("broken", "Broken", [FailingAgent("explode", "boom")])
    registry.register_workflow("broken", workflow)
    job_id = job_queue.create_job("broken", {}, "user-1", max_retries=0)

    make_worker().run_once()

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_message == "Step explode failed: boom"


def test_credit_check_refusal(job_queue, registry, tracker, make_worker):
    """Jobs whose owner lacks credits fail before the agent runs."""
    agent = FnAgent("costly", credits=5)
    registry.register_agent("costly", agent)
    job_id = job_queue.create_job("costly", {}, "user-1", max_retries=3)

    make_worker(credit_check=lambda owner_id, credits: False).run_once()

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 0
    assert "Insufficient credits" in job.error_message
    assert agent.count == 0
    assert tracker.get_metrics("costly").failed_executions == 1


def test_inline_retries(job_queue, registry, make_worker, no_sleep):
    """Inline retries absorb transient failures within one attempt."""
    agent = FlakyAgent("flaky", failures=1)
    registry.register_agent("flaky", agent)
    job_id = job_queue.create_job("flaky", {}, "user-1")

    make_worker(inline_retries=2, retry_delay_ms=50).run_once()

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.retry_count == 0
    assert agent.count == 2
    assert no_sleep.delays == [pytest.approx(0.05)]


def test_execution_log_persisted(job_queue, execution_store, make_worker):
    """Executions are written to the execution log store."""
    job_queue.create_job("echo", {"a": 1}, "user-1")

    make_worker(execution_store=execution_store).run_once()

    metrics = execution_store.get_agent_metrics("echo", owner_id="user-1")
    assert metrics.total_executions == 1
    assert metrics.successful_executions == 1


def test_wait_for_database(make_worker):
    assert make_worker().wait_for_database(max_wait=1)


def test_start_workers_drains_queue(job_queue, registry, tracker):
    """Several worker threads process the queue until stopped."""
    job_ids = [job_queue.create_job("echo", {"n": n}, "user-1") for n in range(6)]
    stop_event = threading.Event()

    threads = start_workers(
        2,
        stop_event,
        worker_factory=lambda: Worker(job_queue=job_queue, registry=registry, tracker=tracker, poll_interval=0.01),
    )
    try:
        for job_id in job_ids:
            job = job_queue.wait_for_job_completion(job_id, timeout_s=15, poll_interval_s=0.05)
            assert job.status == JobStatus.COMPLETED
    finally:
        stop_event.set()
        for thread in threads:
            thread.join(timeout=5)

    assert not any(thread.is_alive() for thread in threads)
    assert tracker.get_metrics("echo").total_executions == 6


def test_credit_check_covers_workflows(job_queue, registry, tracker, make_worker):
    """Workflow jobs are priced as the sum of their steps before running."""
    first = FnAgent("first", credits=2)
    second = FnAgent("second", credits=3)
    workflow = WorkflowEngine().create_linear_workflow("priced", "Priced", [first, second])
    registry.register_workflow("priced", workflow)
    job_id = job_queue.create_job("priced", {}, "user-1")
    requested = []

    def credit_check(owner_id, credits):
        requested.append((owner_id, credits))
        return False

    make_worker(credit_check=credit_check).run_once()

    job = job_queue.get_job(job_id)
    assert requested == [("user-1", 5)]
    assert job.status == JobStatus.FAILED
    assert "Insufficient credits" in job.error_message
    assert first.count == 0 and second.count == 0
    assert tracker.get_metrics("priced").failed_executions == 1


def test_workflow_step_returning_skipped_is_recorded(job_queue, registry, tracker, make_worker):
    """Steps that ran are recorded even when their agent reports a skip."""

    class Idle(FnAgent):
        def process(self, payload, context):
            self.record(payload, context)
            return AgentResult.skipped(reason="nothing new")

    workflow = WorkflowEngine().create_linear_workflow(
        "idle-then-skip",
        "Idle",
        [Idle("idle"), FnAgent("gated")],
    )
    workflow.steps[1].condition = lambda value, ctx: False
    registry.register_workflow("idle", workflow)
    job_id = job_queue.create_job("idle", {}, "user-1")

    make_worker().run_once()

    assert job_queue.get_job(job_id).status == JobStatus.COMPLETED
    assert tracker.get_metrics("idle").total_executions == 1
    assert tracker.get_metrics("gated") is None
