import subprocess
import sys

import pytest

from spec_companion.errors import ExecutionFault, ValidationError
from spec_companion.models import Framework, TestStatus
from spec_companion.services import test_runner
from spec_companion.services.test_runner import SubprocessTestRunner, TestJob, classify_jest, classify_pytest


@pytest.mark.unit
@pytest.mark.parametrize(
    "returncode,output,expected",
    [
        (0, "1 passed in 0.01s", TestStatus.PASSED),
        (0, "1 skipped in 0.01s", TestStatus.SKIPPED),
        (0, "1 passed, 1 skipped", TestStatus.PASSED),
        (1, "1 failed", TestStatus.FAILED),
        (5, "no tests ran", TestStatus.SKIPPED),
        (2, "interrupted", TestStatus.ERROR),
        (4, "usage error", TestStatus.ERROR),
    ],
)
def test_classify_pytest(returncode, output, expected):
    assert classify_pytest(returncode, output) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "returncode,expected",
    [(0, TestStatus.PASSED), (1, TestStatus.FAILED), (127, TestStatus.ERROR)],
)
def test_classify_jest(returncode, expected):
    assert classify_jest(returncode, "Tests: 1 total") == expected


@pytest.mark.unit
def test_classify_jest_treats_no_tests_found_as_error():
    output = "No tests found, exiting with code 1\nRun with `--passWithNoTests` to exit with code 0"
    assert classify_jest(1, output) == TestStatus.ERROR


@pytest.mark.unit
def test_prepare_rejects_missing_codebase(tmp_path):
    runner = SubprocessTestRunner(str(tmp_path / "missing"), temp_dir=tmp_path / "tmp")
    with pytest.raises(ValidationError):
        runner.prepare()


@pytest.mark.unit
def test_command_per_framework(tmp_path):
    runner = SubprocessTestRunner(str(tmp_path))

    assert runner.command(Framework.PYTEST, "t.py")[1:4] == ["-m", "pytest", "t.py"]
    assert runner.command(Framework.JEST, "t.test.js")[1:3] == ["jest", "t.test.js"]


@pytest.mark.unit
def test_run_writes_temp_file_and_removes_it(tmp_path, monkeypatch):
    temp_dir = tmp_path / "tmp"
    runner = SubprocessTestRunner(str(tmp_path), timeout=30, temp_dir=temp_dir)
    runner.prepare()
    seen = {}

    def fake_command(framework, test_file, root_dir=None):
        with open(test_file) as f:
            seen["code"] = f.read()
        seen["path"] = test_file
        return [sys.executable, "-c", "print('1 passed')"]

    monkeypatch.setattr(runner, "command", fake_command)
    outcome = runner.run(TestJob(test_id="abc-1", framework=Framework.PYTEST, code="def test_x(): pass\n"))

    assert outcome.status == TestStatus.PASSED
    assert "1 passed" in outcome.stdout
    assert seen["code"] == "def test_x(): pass\n"
    assert seen["path"].endswith("test_abc_1.py")
    assert list(temp_dir.iterdir()) == []


@pytest.mark.unit
def test_run_uses_saved_file_path(tmp_path, monkeypatch):
    saved = tmp_path / "test_saved.py"
    saved.write_text("def test_saved(): pass\n")
    runner = SubprocessTestRunner(str(tmp_path), temp_dir=tmp_path / "tmp")
    calls = []

    def fake_command(framework, test_file, root_dir=None):
        calls.append(test_file)
        return [sys.executable, "-c", "import sys; print('1 failed'); sys.exit(1)"]

    monkeypatch.setattr(runner, "command", fake_command)
    outcome = runner.run(TestJob(test_id="t", framework=Framework.PYTEST, code="", file_path=str(saved)))

    assert calls == [str(saved)]
    assert outcome.status == TestStatus.FAILED
    assert saved.exists()


@pytest.mark.unit
def test_run_times_out_with_note(tmp_path, monkeypatch):
    runner = SubprocessTestRunner(str(tmp_path), timeout=0.5, temp_dir=tmp_path / "tmp")
    runner.prepare()
    monkeypatch.setattr(
        runner, "command", lambda framework, test_file, root_dir=None: [sys.executable, "-c", "import time; print('started', flush=True); time.sleep(30)"]
    )

    outcome = runner.run(TestJob(test_id="slow", framework=Framework.PYTEST, code="def test_slow(): pass\n"))

    assert outcome.status == TestStatus.ERROR
    assert "timed out after 0.5s" in outcome.stderr
    assert outcome.execution_time_ms < 10_000


@pytest.mark.unit
def test_run_raises_execution_fault_when_runner_missing(tmp_path, monkeypatch):
    runner = SubprocessTestRunner(str(tmp_path), temp_dir=tmp_path / "tmp")
    runner.prepare()
    monkeypatch.setattr(runner, "command", lambda framework, test_file, root_dir=None: ["definitely-not-a-real-binary-xyz"])

    with pytest.raises(ExecutionFault):
        runner.run(TestJob(test_id="t", framework=Framework.JEST, code="test('x', () => {});"))


@pytest.mark.unit
def test_to_text_decodes_bytes():
    assert test_runner._to_text(b"caf\xc3\xa9") == "café"
    assert test_runner._to_text(None) == ""


@pytest.mark.unit
def test_jest_command_sets_root_dir_only_when_given(tmp_path):
    runner = SubprocessTestRunner(str(tmp_path))

    assert "--rootDir" not in runner.command(Framework.JEST, "t.test.js")
    assert runner.command(Framework.JEST, "t.test.js", root_dir="/tmp/x")[-2:] == ["--rootDir", "/tmp/x"]
    assert "--rootDir" not in runner.command(Framework.PYTEST, "t.py", root_dir="/tmp/x")


@pytest.mark.unit
def test_unsaved_jest_test_runs_with_temp_dir_as_root(tmp_path, monkeypatch):
    temp_dir = tmp_path / "tmp"
    runner = SubprocessTestRunner(str(tmp_path), temp_dir=temp_dir)
    runner.prepare()
    roots = []

    def fake_command(framework, test_file, root_dir=None):
        roots.append(root_dir)
        return [sys.executable, "-c", "print('Tests: 1 passed, 1 total')"]

    monkeypatch.setattr(runner, "command", fake_command)
    saved = tmp_path / "saved.test.js"
    saved.write_text("test('x', () => {});")

    runner.run(TestJob(test_id="t1", framework=Framework.JEST, code="test('x', () => {});"))
    runner.run(TestJob(test_id="t2", framework=Framework.JEST, code="", file_path=str(saved)))

    assert roots == [str(temp_dir), None]
