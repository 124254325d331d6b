"""Background worker: claims jobs and dispatches them to agents or workflows."""

import logging
import threading
import time
import uuid
from typing import Any, Callable, List, Optional

import sqlalchemy
from sqlalchemy.exc import SQLAlchemyError

from taskforge.agents.registry import JobRegistry, RegisteredHandler, UnknownJobTypeError, build_default_registry
from taskforge.config import settings
from taskforge.schemas.agents import AgentContext, AgentError, AgentErrorCode, AgentResult
from taskforge.schemas.job import JobRead
from taskforge.services.job_queue import JobQueue
from taskforge.services.monitoring import (
    AgentPerformanceTracker,
    ExecutionLogStore,
    MetricsSink,
    log_agent_execution,
)
from taskforge.services.orchestrator import invoke_agent, retry_agent
from taskforge.services.workflow import WorkflowEngine

logger = logging.getLogger(__name__)

# Pre-flight quota hook: (owner_id, credits_required) -> allowed
CreditCheck = Callable[[str, float], bool]


class Worker:
    """Polls the job queue and runs each claimed job to a terminal or retry state."""

    def __init__(
        self,
        job_queue: Optional[JobQueue] = None,
        registry: Optional[JobRegistry] = None,
        tracker: Optional[MetricsSink] = None,
        execution_store: Optional[ExecutionLogStore] = None,
        credit_check: Optional[CreditCheck] = None,
        poll_interval: Optional[float] = None,
        inline_retries: Optional[int] = None,
        retry_delay_ms: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        worker_id: Optional[str] = None,
    ):
        """Initialize worker."""
        self.job_queue = job_queue or JobQueue()
        self.registry = registry if registry is not None else build_default_registry()
        self.tracker = tracker if tracker is not None else AgentPerformanceTracker()
        self.execution_store = execution_store
        self.credit_check = credit_check
        self.poll_interval = settings.WORKER_POLL_INTERVAL if poll_interval is None else poll_interval
        self.inline_retries = settings.AGENT_INLINE_RETRIES if inline_retries is None else inline_retries
        self.retry_delay_ms = settings.AGENT_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms
        self.sleep = sleep
        self.worker_id = worker_id or f"w-{uuid.uuid4().hex[:8]}"
        self.engine = WorkflowEngine()

    def run(self, stop_event: Optional[threading.Event] = None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        logger.info(f"Worker {self.worker_id} started - waiting for database to be ready...")
        self.wait_for_database(stop_event=stop_event)

        while True:
            if stop_event and stop_event.is_set():
                logger.info(f"Worker {self.worker_id} stop signal received")
                break

            try:
                if not self.run_once():
                    self._idle(stop_event)

            except KeyboardInterrupt:
                logger.info(f"Worker {self.worker_id} shutting down")
                break
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                self._idle(stop_event)

    def wait_for_database(self, max_wait: float = 60, stop_event: Optional[threading.Event] = None) -> bool:
        """Block until the job table is queryable or ``max_wait`` runs out."""
        waited = 0
        while waited < max_wait:
            if stop_event and stop_event.is_set():
                return False
            try:
                with self.job_queue.session_factory() as db:
                    db.execute(sqlalchemy.text("SELECT 1 FROM job_queue LIMIT 1"))
                logger.info("Database is ready, starting worker loop")
                return True
            except SQLAlchemyError as e:
                if "no such table" in str(e) or "does not exist" in str(e):
                    logger.info(f"Waiting for migrations to complete... ({waited}s)")
                else:
                    logger.error(f"Database error: {e}")
                self.sleep(2)
                waited += 2

        logger.error(f"Database not ready after {max_wait} seconds, starting anyway...")
        return False

    def run_once(self) -> bool:
        """Claim and process at most one job. Returns False when the queue is idle."""
        job = self.job_queue.get_next_job()
        if job is None:
            return False
        self.process_job(job)
        return True

    def process_job(self, job: JobRead) -> Optional[AgentResult]:
        """
        Run one claimed job and record its outcome in the queue.

        Failures are routed through ``mark_failed``; the queue decides between
        retry and terminal failure. Errors that retrying cannot fix fail the
        job at once.
        """
        logger.info(f"Processing job {job.id} (type: {job.job_type})")
        self.job_queue.mark_processing(job.id)

        try:
            handler = self.registry.resolve(job.job_type)
        except UnknownJobTypeError as e:
            logger.error(f"Job {job.id} failed: {e}")
            self.job_queue.mark_failed(job.id, str(e), retryable=False)
            return None

        context = self.build_context(job)

        try:
            refusal = self._check_credits(handler, job, context)
            if refusal is not None:
                result = refusal
            elif handler.agent is not None:
                result = self._run_agent(handler, job.payload, context)
            else:
                result = self._run_workflow(handler, job.payload, context)
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", exc_info=True)
            self.job_queue.mark_failed(job.id, str(e) or e.__class__.__name__)
            return None

        if result.success:
            self.job_queue.mark_completed(job.id)
        else:
            self.job_queue.mark_failed(job.id, result.error.message, retryable=not result.error.never_retry)
        return result

    def build_context(self, job: JobRead) -> AgentContext:
        """Fresh context for one processing attempt of a job."""
        project_id = job.payload.get("project_id") if isinstance(job.payload, dict) else None
        return AgentContext(
            owner_id=job.owner_id,
            project_id=str(project_id) if project_id is not None else None,
            job_id=str(job.id),
            metadata={
                "job_type": job.job_type,
                "attempt": job.retry_count + 1,
                "worker_id": self.worker_id,
            },
        )

    def _check_credits(
        self,
        handler: RegisteredHandler,
        job: JobRead,
        context: AgentContext,
    ) -> Optional[AgentResult]:
        if self.credit_check is None:
            return None

        credits = handler.credits_required(job.payload)
        if credits <= 0 or self.credit_check(job.owner_id, credits):
            return None

        result = AgentResult.fail(
            AgentError(
                code=AgentErrorCode.INSUFFICIENT_CREDITS,
                message=f"Insufficient credits: {credits} required",
                agent_name=handler.name,
                retryable=False,
                status_code=402,
            ),
            agent_name=handler.name,
            agent_version=handler.version,
            credits_required=credits,
        )
        self._record(handler.name, handler.version, result, context)
        return result

    def _run_agent(self, handler: RegisteredHandler, payload: Any, context: AgentContext) -> AgentResult:
        agent = handler.agent
        if self.inline_retries > 0:
            result = retry_agent(
                agent,
                payload,
                context,
                max_retries=self.inline_retries,
                initial_delay_ms=self.retry_delay_ms,
                sleep=self.sleep,
            )
        else:
            result = invoke_agent(agent, payload, context)

        self._record(agent.name, agent.version, result, context)
        return result

    def _run_workflow(self, handler: RegisteredHandler, payload: Any, context: AgentContext) -> AgentResult:
        workflow = handler.workflow
        outcome = self.engine.execute_workflow(workflow, payload, context)

        for step in workflow.steps:
            step_result = outcome.step_results.get(step.id)
            if step_result is None or step.id in outcome.skipped_steps:
                continue
            self._record(
                step.agent.name,
                step.agent.version,
                step_result,
                context.derive(workflow_id=workflow.id, step_id=step.id),
            )

        if outcome.success:
            data = outcome.final_result.data if outcome.final_result is not None else None
            return AgentResult.ok(data, **outcome.metadata)

        failed = [
            result.error
            for result in outcome.step_results.values()
            if not result.success and result.error is not None
        ]
        never_retry = bool(failed) and all(error.never_retry for error in failed)
        return AgentResult.fail(
            AgentError(
                code=failed[0].code if failed else AgentErrorCode.PROCESSING_ERROR,
                message=outcome.error or "Workflow failed",
                agent_name=workflow.id,
                retryable=not never_retry,
            ),
            **outcome.metadata,
        )

    def _record(self, agent_name: str, agent_version: str, result: AgentResult, context: AgentContext) -> None:
        try:
            self.tracker.record_execution(agent_name, result)
        except Exception as e:
            logger.error(f"Failed to record metrics for {agent_name}: {e}")
        log_agent_execution(agent_name, agent_version, result, context, store=self.execution_store)

    def _idle(self, stop_event: Optional[threading.Event]) -> None:
        if stop_event is not None:
            stop_event.wait(self.poll_interval)
        else:
            self.sleep(self.poll_interval)


def start_workers(
    count: int,
    stop_event: threading.Event,
    worker_factory: Callable[[], Worker] = Worker,
) -> List[threading.Thread]:
    """Start ``count`` poller threads sharing one stop event."""
    threads = []
    for index in range(count):
        worker = worker_factory()
        thread = threading.Thread(
            target=worker.run,
            kwargs={"stop_event": stop_event},
            name=f"taskforge-worker-{index}",
            daemon=True,
        )
        thread.start()
        threads.append(thread)
    logger.info(f"Started {count} worker thread(s)")
    return threads


def main():
    """Entry point for standalone workers."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    stop_event = threading.Event()
    tracker = AgentPerformanceTracker()
    store = ExecutionLogStore() if settings.PERSIST_EXECUTION_LOGS else None
    threads = start_workers(
        settings.WORKER_COUNT,
        stop_event,
        worker_factory=lambda: Worker(tracker=tracker, execution_store=store),
    )

    try:
        while any(thread.is_alive() for thread in threads):
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping workers")
        stop_event.set()
        for thread in threads:
            thread.join(timeout=30)


if __name__ == "__main__":
    main()
