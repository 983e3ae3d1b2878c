"""Concurrent execution of a batch of generated tests.

Workers pull tests from a queue and run them through a runner. Every
finished test travels over a bounded event queue to the sink, which is the
thread that called ``ExecutionBatch.run()``. The sink is the only place that
builds TestResults, counts progress and invokes callbacks, so persistence
done in ``on_result`` happens from a single thread.
"""

import logging
import queue
import threading
import uuid
from typing import Callable

from spec_companion.database import utcnow
from spec_companion.errors import ExecutionFault, OrchestrationError
from spec_companion.models import BatchState, ProgressStatus, TestProgress, TestResult, TestStatus
from spec_companion.services.test_runner import ExecutionOutcome, TestJob

logger = logging.getLogger(__name__)

EVENT_QUEUE_SIZE = 64

_RESULT = "result"
_FAULT = "fault"
_DONE = "done"


class ExecutionBatch:
    """One run over a fixed list of tests.

    States move ``pending -> running -> completed | errored``. A cancelled
    batch ends ``completed`` with ``cancelled`` set: tests already running
    finish and are recorded, queued tests are never dispatched.
    """

    def __init__(
        self,
        jobs: list[TestJob],
        runner,
        max_workers: int = 4,
        on_progress: Callable[[TestProgress], None] | None = None,
        on_result: Callable[[TestResult], None] | None = None,
    ):
        self.jobs = list(jobs)
        self.runner = runner
        self.max_workers = max(1, max_workers)
        self.on_progress = on_progress
        self.on_result = on_result
        self.state = BatchState.PENDING
        self.completed = 0
        self._cancel = threading.Event()

    @property
    def total(self) -> int:
        return len(self.jobs)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self):
        """Request cancellation; checked by workers between tests."""
        if not self._cancel.is_set():
            logger.info("Cancellation requested for batch of %d tests", self.total)
        self._cancel.set()

    def run(self) -> list[TestResult]:
        """Run the batch to completion (or cancellation) and return its results.

        Raises:
            OrchestrationError: if setup, a worker or a callback fails. The
                batch ends ``errored`` and its partial results are discarded.
        """
        if self.state != BatchState.PENDING:
            raise OrchestrationError(f"Batch already {self.state}")
        self.state = BatchState.RUNNING

        try:
            prepare = getattr(self.runner, "prepare", None)
            if prepare is not None:
                prepare()
            self._emit(ProgressStatus.RUNNING)
        except Exception as e:
            self._fail(e)

        work: queue.Queue = queue.Queue()
        for job in self.jobs:
            work.put(job)
        events: queue.Queue = queue.Queue(maxsize=EVENT_QUEUE_SIZE)

        worker_count = min(self.max_workers, self.total)
        workers = [
            threading.Thread(target=self._worker, args=(work, events), name=f"test-worker-{i}", daemon=True)
            for i in range(worker_count)
        ]
        for worker in workers:
            worker.start()

        results: list[TestResult] = []
        fault: BaseException | None = None
        running = worker_count
        while running:
            kind, payload = events.get()
            if kind == _DONE:
                running -= 1
            elif kind == _FAULT:
                fault = fault or payload
                self._cancel.set()
            elif kind == _RESULT and fault is None:
                try:
                    results.append(self._record(*payload))
                except Exception as e:
                    logger.exception("Result handling failed, aborting batch")
                    fault = e
                    self._cancel.set()

        for worker in workers:
            worker.join()

        if fault is not None:
            self._fail(fault)

        self.state = BatchState.COMPLETED
        try:
            self._emit(ProgressStatus.COMPLETED)
        except Exception as e:
            self._fail(e)

        logger.info(
            "Batch finished: %d/%d tests run%s",
            len(results), self.total, " (cancelled)" if self.cancelled else "",
        )
        return results

    def _worker(self, work: queue.Queue, events: queue.Queue):
        try:
            while not self._cancel.is_set():
                try:
                    job = work.get_nowait()
                except queue.Empty:
                    return
                outcome = self._run_one(job)
                events.put((_RESULT, (job, outcome)))
        except Exception as e:
            logger.exception("Test worker crashed")
            events.put((_FAULT, e))
        finally:
            events.put((_DONE, None))

    def _run_one(self, job: TestJob) -> ExecutionOutcome:
        try:
            return self.runner.run(job)
        except ExecutionFault as e:
            logger.warning("Could not launch test %s: %s", job.test_id, e.detail)
            return ExecutionOutcome(status=TestStatus.ERROR, stderr=e.detail)
        except Exception as e:
            logger.exception("Runner crashed on test %s", job.test_id)
            return ExecutionOutcome(status=TestStatus.ERROR, stderr=f"Runner crashed: {e}")

    def _record(self, job: TestJob, outcome: ExecutionOutcome) -> TestResult:
        result = TestResult(
            id=str(uuid.uuid4()),
            generated_test_id=job.test_id,
            status=outcome.status,
            execution_time_ms=outcome.execution_time_ms,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            executed_at=utcnow(),
        )
        if self.on_result is not None:
            self.on_result(result)
        self.completed += 1
        self._emit(ProgressStatus.RUNNING, current_test=job.test_id)
        return result

    def _emit(self, status: ProgressStatus, current_test: str = ""):
        if self.on_progress is None:
            return
        self.on_progress(
            TestProgress(total=self.total, completed=self.completed, current_test=current_test, status=status)
        )

    def _fail(self, error: BaseException):
        self.state = BatchState.ERRORED
        try:
            self._emit(ProgressStatus.ERROR)
        except Exception:
            logger.exception("Progress callback failed while reporting batch error")
        if isinstance(error, OrchestrationError):
            raise error
        raise OrchestrationError(f"Test execution aborted: {error}") from error
