"""FastAPI application entry point."""

import logging
import os
import threading
from typing import Optional

import sqlalchemy
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskforge.config import settings
from taskforge.routes import jobs, metrics
from taskforge.services.job_queue import JobQueue
from taskforge.services.monitoring import AgentPerformanceTracker, ExecutionLogStore
from taskforge.worker import Worker, start_workers

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def run_migrations(job_queue: JobQueue) -> None:
    """Upgrade the schema unless the job table already exists."""
    try:
        with job_queue.session_factory() as db:
            table_exists = sqlalchemy.inspect(db.get_bind()).has_table("job_queue")

        if table_exists:
            logger.info("Database tables already exist, skipping migrations")
            return

        logger.info("Running database migrations...")
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Startup database check/migration error: {e}")
        logger.info("Continuing startup - assuming database is ready")


def create_app(
    job_queue: Optional[JobQueue] = None,
    tracker: Optional[AgentPerformanceTracker] = None,
    execution_store: Optional[ExecutionLogStore] = None,
    start_worker: bool = True,
) -> FastAPI:
    """Build the API with its queue, tracker and optional background workers."""
    app = FastAPI(
        title="Taskforge",
        description="Durable job queue and agent orchestration engine",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router)
    app.include_router(metrics.router)

    app.state.job_queue = job_queue or JobQueue()
    app.state.tracker = tracker or AgentPerformanceTracker()
    app.state.execution_store = execution_store or ExecutionLogStore(app.state.job_queue.session_factory)
    app.state.worker_threads = []
    app.state.worker_stop_event = threading.Event()

    @app.on_event("startup")
    def startup_event():
        """Run migrations and start the background workers."""
        if not start_worker:
            return

        logger.info("Starting application...")
        run_migrations(app.state.job_queue)

        store = app.state.execution_store if settings.PERSIST_EXECUTION_LOGS else None
        app.state.worker_threads = start_workers(
            settings.WORKER_COUNT,
            app.state.worker_stop_event,
            worker_factory=lambda: Worker(
                job_queue=app.state.job_queue,
                tracker=app.state.tracker,
                execution_store=store,
            ),
        )

    @app.on_event("shutdown")
    def shutdown_event():
        """Stop the background workers when the app shuts down."""
        logger.info("Shutting down application...")
        app.state.worker_stop_event.set()

        for thread in app.state.worker_threads:
            if thread.is_alive():
                thread.join(timeout=10)
        if app.state.worker_threads:
            logger.info("Background worker threads stopped")

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
