import threading
import time
from unittest.mock import MagicMock

import pytest

from spec_companion.errors import NotFoundError, OrchestrationError, ValidationError
from spec_companion.models import AppSettings, BatchState, ExecuteTestsRequest, Project, TestStatus
from spec_companion.services import execution_service
from spec_companion.services.execution_service import ExecutionService
from spec_companion.services.test_runner import ExecutionOutcome


@pytest.fixture(autouse=True)
def _clear_jobs():
    execution_service.clear_jobs()
    yield
    execution_service.clear_jobs()


class FakeDBService:
    def __init__(self, tests):
        self.tests = {t.id: t for t in tests}
        self.db = MagicMock(name="db_session")
        self.stored = []
        self.touched = []

    def require_project(self, project_id):
        if project_id != "p1":
            raise NotFoundError("Project", project_id)
        return Project(id="p1", name="Shop", codebase_path="/code/shop")

    def get_project_tests(self, project_id, test_ids):
        missing = [tid for tid in test_ids if tid not in self.tests]
        if missing:
            raise NotFoundError("Generated test", ", ".join(missing))
        return [self.tests[tid] for tid in test_ids]

    def touch_project(self, project_id):
        self.touched.append(project_id)

    def add_test_result(self, result, commit=True):
        self.stored.append(result)
        return result


class FakeRunner:
    instances = []

    def __init__(self, working_dir, timeout=None, gate=None, broken=False):
        self.working_dir = working_dir
        self.timeout = timeout
        self.gate = gate
        self.broken = broken
        FakeRunner.instances.append(self)

    def prepare(self):
        if self.broken:
            raise OSError("no temp dir")

    def run(self, job):
        if self.gate is not None:
            self.gate.wait(5)
        status = TestStatus.FAILED if "assert False" in job.code else TestStatus.PASSED
        return ExecutionOutcome(status=status, execution_time_ms=2)


@pytest.fixture()
def db_service(make_generated_test):
    return FakeDBService(
        [
            make_generated_test(test_id="t1"),
            make_generated_test(test_id="t2", code="def test_x():\n    assert False\n"),
            make_generated_test(test_id="t3"),
        ]
    )


def _wait_until_finished(job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = ExecutionService.get_job_status(job_id)
        if status.state in (BatchState.COMPLETED, BatchState.ERRORED):
            return status
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


@pytest.mark.unit
def test_execute_tests_stores_results_and_commits(db_service, settings):
    service = ExecutionService(db_service, settings, runner_factory=FakeRunner)

    results = service.execute_tests("p1", ExecuteTestsRequest(test_ids=["t1", "t2"]))

    assert {r.generated_test_id: r.status for r in results} == {"t1": TestStatus.PASSED, "t2": TestStatus.FAILED}
    assert db_service.stored == results
    db_service.db.commit.assert_called_once()
    assert FakeRunner.instances[-1].working_dir == "/code/shop"
    assert FakeRunner.instances[-1].timeout == settings.test_timeout_seconds
    assert db_service.touched == ["p1"]


@pytest.mark.unit
def test_execute_tests_rolls_back_when_batch_aborts(db_service, settings):
    service = ExecutionService(db_service, settings, runner_factory=lambda path, timeout: FakeRunner(path, broken=True))

    with pytest.raises(OrchestrationError):
        service.execute_tests("p1", ExecuteTestsRequest(test_ids=["t1"]))
    db_service.db.rollback.assert_called_once()
    db_service.db.commit.assert_not_called()
    assert db_service.touched == []


@pytest.mark.unit
def test_empty_selection_is_rejected(db_service, settings):
    service = ExecutionService(db_service, settings, runner_factory=FakeRunner)

    with pytest.raises(ValidationError, match="No tests selected"):
        service.execute_tests("p1", ExecuteTestsRequest(test_ids=[]))
    with pytest.raises(ValidationError):
        service.start_execution_job("p1", ExecuteTestsRequest(test_ids=[]))


@pytest.mark.unit
def test_unknown_test_is_rejected_before_running(db_service, settings):
    service = ExecutionService(db_service, settings, runner_factory=FakeRunner)

    with pytest.raises(NotFoundError, match="t9"):
        service.start_execution_job("p1", ExecuteTestsRequest(test_ids=["t1", "t9"]))


@pytest.mark.unit
def test_background_job_can_be_polled(db_service, settings):
    session = MagicMock(name="thread_session")
    service = ExecutionService(db_service, settings, runner_factory=FakeRunner)

    started = service.start_execution_job(
        "p1", ExecuteTestsRequest(test_ids=["t1", "t2", "t3"]), session_factory=lambda: session
    )
    assert started.state == BatchState.RUNNING
    assert started.total == 3

    final = _wait_until_finished(started.job_id)

    assert final.state == BatchState.COMPLETED
    assert final.completed == 3
    assert len(final.results) == 3
    assert final.event_count == 5
    assert final.events[-1].completed == 3
    session.commit.assert_called()
    session.close.assert_called_once()
    assert session.add.call_count == 3

    tail = ExecutionService.get_job_status(started.job_id, since_event_index=3)
    assert len(tail.events) == 2
    assert tail.event_count == 5


@pytest.mark.unit
def test_cancel_running_job(db_service):
    gate = threading.Event()
    settings = AppSettings(max_parallel_tests=1)
    service = ExecutionService(
        db_service, settings, runner_factory=lambda path, timeout: FakeRunner(path, timeout, gate=gate)
    )

    started = service.start_execution_job(
        "p1", ExecuteTestsRequest(test_ids=["t1", "t2", "t3"]), session_factory=lambda: MagicMock()
    )
    cancelled = ExecutionService.cancel_job(started.job_id)
    gate.set()
    final = _wait_until_finished(started.job_id)

    assert cancelled.cancelled is True
    assert final.state == BatchState.COMPLETED
    assert final.cancelled is True
    assert len(final.results) < 3


@pytest.mark.unit
def test_aborted_job_reports_error(db_service, settings):
    session = MagicMock(name="thread_session")
    service = ExecutionService(db_service, settings, runner_factory=lambda path, timeout: FakeRunner(path, broken=True))

    started = service.start_execution_job("p1", ExecuteTestsRequest(test_ids=["t1"]), session_factory=lambda: session)
    final = _wait_until_finished(started.job_id)

    assert final.state == BatchState.ERRORED
    assert "no temp dir" in final.error
    assert final.results == []
    session.rollback.assert_called_once()
    session.commit.assert_not_called()


@pytest.mark.unit
def test_unknown_job():
    with pytest.raises(NotFoundError):
        ExecutionService.get_job_status("nope")
    with pytest.raises(NotFoundError):
        ExecutionService.cancel_job("nope")


@pytest.mark.unit
def test_finished_jobs_are_evicted(monkeypatch):
    monkeypatch.setattr(execution_service, "MAX_FINISHED_JOBS", 2)
    for i in range(4):
        job = execution_service.ExecutionJob(job_id=f"j{i}", project_id="p1", created_at=float(i))
        job.finish(BatchState.COMPLETED)
        execution_service._register_job(job)

    with pytest.raises(NotFoundError):
        execution_service.get_job("j0")
    assert execution_service.get_job("j3").state == BatchState.COMPLETED
