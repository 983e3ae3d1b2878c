"""Generate tests for a project's requirements and save them to disk.

Generation runs either inside the request or as a cancellable background job
polled through ``get_job_status``. Jobs live in process memory, like
execution jobs.
"""

import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from spec_companion.database import SessionLocal, utcnow
from spec_companion.errors import NotFoundError, ValidationError
from spec_companion.models import (
    AppSettings,
    BatchState,
    Framework,
    GeneratedTest,
    GenerateTestsRequest,
    GenerateTestsResponse,
    GenerationFailure,
    GenerationJobStatus,
    GenerationMode,
    Project,
    Requirement,
)
from spec_companion.services import test_generator
from spec_companion.services.codebase_scanner import CodeSymbol, scan_codebase
from spec_companion.services.database_service import DatabaseService
from spec_companion.services.llm_generator import GenerationProvider

logger = logging.getLogger(__name__)

MAX_FINISHED_JOBS = 50


def load_project_context(codebase_path: str, exclusions: list[str]) -> list[CodeSymbol]:
    """Codebase symbols for prompts and import hints; empty when scanning fails."""
    try:
        return scan_codebase(codebase_path, exclusions)
    except Exception as e:
        logger.warning("Codebase scan of %s failed, generating without context: %s", codebase_path, e)
        return []


@dataclass
class GenerationJob:
    """A background generation run and the outcomes it has produced so far."""

    job_id: str
    project_id: str
    total: int
    state: BatchState = BatchState.PENDING
    completed: int = 0
    cancel_event: threading.Event = field(default_factory=threading.Event)
    response: GenerateTestsResponse | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def finished(self) -> bool:
        return self.state in (BatchState.COMPLETED, BatchState.ERRORED)

    def record_outcome(self, outcome: test_generator.GenerationOutcome):
        with self._lock:
            self.completed += 1

    def finish(self, state: BatchState, response: GenerateTestsResponse | None = None, error: str | None = None):
        with self._lock:
            self.state = state
            self.response = response
            self.error = error

    def status(self) -> GenerationJobStatus:
        with self._lock:
            return GenerationJobStatus(
                job_id=self.job_id,
                project_id=self.project_id,
                state=self.state,
                cancelled=self.cancel_event.is_set(),
                total=self.total,
                completed=self.completed,
                tests=list(self.response.tests) if self.response else [],
                failures=list(self.response.failures) if self.response else [],
                error=self.error,
            )


_jobs: dict[str, GenerationJob] = {}
_jobs_lock = threading.Lock()


def get_job(job_id: str) -> GenerationJob:
    with _jobs_lock:
        job = _jobs.get(job_id)
    if job is None:
        raise NotFoundError("Generation job", job_id)
    return job


def _register_job(job: GenerationJob):
    with _jobs_lock:
        finished = sorted((j for j in _jobs.values() if j.finished), key=lambda j: j.created_at)
        for old in finished[: max(0, len(finished) - MAX_FINISHED_JOBS + 1)]:
            del _jobs[old.job_id]
        _jobs[job.job_id] = job


def clear_jobs():
    with _jobs_lock:
        _jobs.clear()


class GenerationService:
    def __init__(self, db_service: DatabaseService, settings: AppSettings, provider: GenerationProvider | None = None):
        self.db_service = db_service
        self.settings = settings
        self.provider = provider

    def _prepare(
        self, project_id: str, request: GenerateTestsRequest
    ) -> tuple[Project, list[Requirement], Framework, GenerationMode]:
        if not request.requirement_ids:
            raise ValidationError("No requirements selected")
        project = self.db_service.require_project(project_id)
        requirements = self.db_service.get_project_requirements(project_id, request.requirement_ids)

        framework = request.framework or self.settings.default_framework
        mode = request.mode or self.settings.default_mode
        if mode == GenerationMode.LLM and self.provider is None and not self.settings.api_key:
            raise ValidationError("LLM mode requires an API key in settings")
        return project, requirements, framework, mode

    def _generate_and_store(
        self,
        db_service: DatabaseService,
        project: Project,
        requirements: list[Requirement],
        framework: Framework,
        mode: GenerationMode,
        cancel: threading.Event | None = None,
        on_outcome: Callable[[test_generator.GenerationOutcome], None] | None = None,
    ) -> GenerateTestsResponse:
        symbols = load_project_context(project.codebase_path, self.settings.scan_exclusions)

        outcomes = test_generator.generate(
            requirements,
            framework,
            mode,
            self.settings,
            symbols=symbols,
            provider=self.provider,
            cancel=cancel,
            on_outcome=on_outcome,
        )

        tests: list[GeneratedTest] = []
        failures: list[GenerationFailure] = []
        for outcome in outcomes:
            if outcome.ok:
                tests.append(
                    GeneratedTest(
                        id=str(uuid.uuid4()),
                        requirement_id=outcome.requirement_id,
                        framework=framework,
                        code=outcome.code,
                        generation_mode=mode,
                        created_at=utcnow(),
                    )
                )
            else:
                failures.append(GenerationFailure(requirement_id=outcome.requirement_id, error=outcome.error))

        if tests:
            db_service.add_generated_tests(tests)
        db_service.touch_project(project.id)
        logger.info(
            "Generated %d %s tests (%s) for project %s, %d failures",
            len(tests), framework, mode, project.id, len(failures),
        )
        return GenerateTestsResponse(tests=tests, failures=failures)

    def generate_tests(self, project_id: str, request: GenerateTestsRequest) -> GenerateTestsResponse:
        """Generate one test per requested requirement and store the successes.

        Raises:
            ValidationError: on an empty selection, or LLM mode without an API key.
            NotFoundError: if the project or any requirement is unknown.
        """
        project, requirements, framework, mode = self._prepare(project_id, request)
        return self._generate_and_store(self.db_service, project, requirements, framework, mode)

    def start_generation_job(
        self,
        project_id: str,
        request: GenerateTestsRequest,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> GenerationJobStatus:
        """Validate the selection, then generate in a background thread.

        Cancelled requirements are reported in ``failures`` with
        ``CANCELLED_ERROR``; tests generated before the cancel are stored.
        """
        project, requirements, framework, mode = self._prepare(project_id, request)
        job = GenerationJob(job_id=str(uuid.uuid4()), project_id=project_id, total=len(requirements))

        def run_generation_background():
            thread_db = session_factory()
            try:
                response = self._generate_and_store(
                    DatabaseService(thread_db),
                    project,
                    requirements,
                    framework,
                    mode,
                    cancel=job.cancel_event,
                    on_outcome=job.record_outcome,
                )
                job.finish(BatchState.COMPLETED, response=response)
                logger.info("Generation job %s finished with %d tests", job.job_id, len(response.tests))
            except Exception as e:
                logger.exception("Generation job %s failed: %s", job.job_id, e)
                thread_db.rollback()
                job.finish(BatchState.ERRORED, error=getattr(e, "detail", str(e)))
            finally:
                thread_db.close()

        job.state = BatchState.RUNNING
        _register_job(job)

        thread = threading.Thread(target=run_generation_background, name=f"generation-{job.job_id[:8]}", daemon=True)
        thread.start()
        logger.info("Started generation job %s for %d requirements", job.job_id, len(requirements))
        return job.status()

    @staticmethod
    def get_job_status(job_id: str) -> GenerationJobStatus:
        return get_job(job_id).status()

    @staticmethod
    def cancel_job(job_id: str) -> GenerationJobStatus:
        job = get_job(job_id)
        if not job.finished:
            job.cancel_event.set()
        return job.status()

    def save_test_to_disk(self, test_id: str, path: str) -> GeneratedTest:
        """Write a generated test's code to ``path`` and remember the location.

        Relative paths are resolved against the project's codebase.
        """
        if not path or not path.strip():
            raise ValidationError("Path must not be empty")
        test = self.db_service.get_generated_test(test_id)
        if test is None:
            raise NotFoundError("Generated test", test_id)

        target = os.path.expanduser(path.strip())
        if not os.path.isabs(target):
            codebase_path = self.db_service.get_codebase_path_for_test(test_id)
            if codebase_path is None:
                raise NotFoundError("Generated test", test_id)
            target = os.path.join(codebase_path, target)
        target = os.path.abspath(target)

        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "w") as f:
                f.write(test.code)
        except OSError as e:
            raise ValidationError(f"Could not write {target}: {e}") from e

        logger.info("Saved test %s to %s", test_id, target)
        return self.db_service.set_test_file_path(test_id, target)
