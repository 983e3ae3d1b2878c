"""Run generated tests, synchronously or as polled background jobs.

Jobs live in process memory, so the server runs with a single worker.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from spec_companion.database import SessionLocal
from spec_companion.errors import NotFoundError, OrchestrationError, ValidationError
from spec_companion.models import (
    AppSettings,
    BatchState,
    ExecuteTestsRequest,
    ExecutionJobStatus,
    Project,
    TestProgress,
    TestResult,
)
from spec_companion.services.database_service import DatabaseService
from spec_companion.services.execution_orchestrator import ExecutionBatch
from spec_companion.services.test_runner import SubprocessTestRunner, TestJob

logger = logging.getLogger(__name__)

MAX_FINISHED_JOBS = 50


@dataclass
class ExecutionJob:
    """A background execution batch and everything it has reported so far."""

    job_id: str
    project_id: str
    batch: ExecutionBatch | None = None
    state: BatchState = BatchState.PENDING
    events: list[TestProgress] = field(default_factory=list)
    results: list[TestResult] = field(default_factory=list)
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def finished(self) -> bool:
        return self.state in (BatchState.COMPLETED, BatchState.ERRORED)

    def add_event(self, progress: TestProgress):
        with self._lock:
            self.events.append(progress)

    def finish(self, state: BatchState, results: list[TestResult] | None = None, error: str | None = None):
        with self._lock:
            self.state = state
            self.results = results or []
            self.error = error

    def status(self, since_event_index: int = 0) -> ExecutionJobStatus:
        """Snapshot for polling; only events after ``since_event_index`` are included."""
        with self._lock:
            batch = self.batch
            return ExecutionJobStatus(
                job_id=self.job_id,
                project_id=self.project_id,
                state=self.state,
                cancelled=batch.cancelled if batch else False,
                total=batch.total if batch else 0,
                completed=batch.completed if batch else 0,
                events=list(self.events[max(since_event_index, 0):]),
                event_count=len(self.events),
                results=list(self.results),
                error=self.error,
            )


_jobs: dict[str, ExecutionJob] = {}
_jobs_lock = threading.Lock()


def get_job(job_id: str) -> ExecutionJob:
    with _jobs_lock:
        job = _jobs.get(job_id)
    if job is None:
        raise NotFoundError("Execution job", job_id)
    return job


def _register_job(job: ExecutionJob):
    with _jobs_lock:
        finished = sorted((j for j in _jobs.values() if j.finished), key=lambda j: j.created_at)
        for old in finished[: max(0, len(finished) - MAX_FINISHED_JOBS + 1)]:
            del _jobs[old.job_id]
        _jobs[job.job_id] = job


def clear_jobs():
    with _jobs_lock:
        _jobs.clear()


class ExecutionService:
    def __init__(
        self,
        db_service: DatabaseService,
        settings: AppSettings,
        runner_factory: Callable[..., object] | None = None,
    ):
        self.db_service = db_service
        self.settings = settings
        self.runner_factory = runner_factory or SubprocessTestRunner

    def _load_jobs(self, project_id: str, request: ExecuteTestsRequest) -> tuple[Project, list[TestJob]]:
        if not request.test_ids:
            raise ValidationError("No tests selected")
        project = self.db_service.require_project(project_id)
        tests = self.db_service.get_project_tests(project_id, request.test_ids)
        jobs = [TestJob(test_id=t.id, framework=t.framework, code=t.code, file_path=t.file_path) for t in tests]
        return project, jobs

    def _make_batch(self, project: Project, jobs: list[TestJob], on_progress=None, on_result=None) -> ExecutionBatch:
        runner = self.runner_factory(project.codebase_path, timeout=self.settings.test_timeout_seconds)
        return ExecutionBatch(
            jobs,
            runner,
            max_workers=self.settings.max_parallel_tests,
            on_progress=on_progress,
            on_result=on_result,
        )

    def execute_tests(self, project_id: str, request: ExecuteTestsRequest) -> list[TestResult]:
        """Run the selected tests to completion and store their results.

        Raises:
            ValidationError: on an empty selection.
            NotFoundError: if the project or any test is unknown.
            OrchestrationError: if the batch aborts; nothing is stored.
        """
        project, jobs = self._load_jobs(project_id, request)
        batch = self._make_batch(
            project, jobs, on_result=lambda result: self.db_service.add_test_result(result, commit=False)
        )
        try:
            results = batch.run()
        except OrchestrationError:
            self.db_service.db.rollback()
            raise
        self.db_service.db.commit()
        self.db_service.touch_project(project_id)
        return results

    def start_execution_job(
        self,
        project_id: str,
        request: ExecuteTestsRequest,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> ExecutionJobStatus:
        """Validate the selection, then run it in a background thread.

        The thread stores results through its own session.
        """
        project, jobs = self._load_jobs(project_id, request)
        job = ExecutionJob(job_id=str(uuid.uuid4()), project_id=project_id)

        def run_execution_background():
            thread_db = session_factory()
            try:
                thread_db_service = DatabaseService(thread_db)
                job.batch.on_result = lambda result: thread_db_service.add_test_result(result, commit=False)
                try:
                    results = job.batch.run()
                except OrchestrationError as e:
                    thread_db.rollback()
                    logger.error("Execution job %s aborted: %s", job.job_id, e.detail)
                    job.finish(BatchState.ERRORED, error=e.detail)
                    return
                thread_db.commit()
                job.finish(BatchState.COMPLETED, results=results)
                logger.info("Execution job %s finished with %d results", job.job_id, len(results))
                thread_db_service.touch_project(project_id)
            except Exception as e:
                logger.exception("Execution job %s failed: %s", job.job_id, e)
                thread_db.rollback()
                job.finish(BatchState.ERRORED, error=str(e))
            finally:
                thread_db.close()

        job.batch = self._make_batch(project, jobs, on_progress=job.add_event)
        job.state = BatchState.RUNNING
        _register_job(job)

        thread = threading.Thread(target=run_execution_background, name=f"execution-{job.job_id[:8]}", daemon=True)
        thread.start()
        logger.info("Started execution job %s for %d tests", job.job_id, len(jobs))
        return job.status()

    @staticmethod
    def get_job_status(job_id: str, since_event_index: int = 0) -> ExecutionJobStatus:
        return get_job(job_id).status(since_event_index)

    @staticmethod
    def cancel_job(job_id: str) -> ExecutionJobStatus:
        job = get_job(job_id)
        if job.batch is not None and not job.finished:
            job.batch.cancel()
        return job.status()
