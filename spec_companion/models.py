"""Data models for the spec companion application."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class RequirementType(StrEnum):
    FUNCTIONAL = "functional"
    NON_FUNCTIONAL = "non_functional"
    CONSTRAINT = "constraint"


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Framework(StrEnum):
    """Test framework a generated test targets."""

    JEST = "jest"
    PYTEST = "pytest"


class GenerationMode(StrEnum):
    TEMPLATE = "template"  # Deterministic skeleton, no external I/O
    LLM = "llm"  # Provider-backed generation


class TestStatus(StrEnum):
    __test__ = False  # Not a pytest test class

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class MismatchType(StrEnum):
    """Why a requirement is not covered."""

    NOT_IMPLEMENTED = "not_implemented"  # Tests exist but none produced evidence
    TEST_FAILING = "test_failing"  # No test passes and at least one fails
    NO_TEST_GENERATED = "no_test_generated"  # No tests at all
    PARTIAL_COVERAGE = "partial_coverage"  # Some tests pass, others fail or never ran


class BatchState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"


class ProgressStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class ExportFormat(StrEnum):
    JSON = "json"
    HTML = "html"
    CSV = "csv"


# Project Models
class ProjectCreate(BaseModel):
    name: str
    codebase_path: str


class Project(BaseModel):
    id: str
    name: str
    codebase_path: str
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class ProjectWithStats(Project):
    spec_count: int = 0
    coverage_percent: float | None = None  # From the most recent report
    last_run_at: datetime | None = None  # generated_at of the most recent report


class ValidatePathRequest(BaseModel):
    path: str


# Spec Models
class SpecUpload(BaseModel):
    filename: str
    content: str


class Spec(BaseModel):
    id: str
    project_id: str
    filename: str
    content: str
    parsed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class Requirement(BaseModel):
    id: str
    spec_id: str
    position: int = 0  # Extraction order within the spec
    section: str
    description: str
    req_type: RequirementType = RequirementType.FUNCTIONAL
    priority: Priority = Priority.MEDIUM


class ParsedSpec(BaseModel):
    spec: Spec
    requirements: list[Requirement] = Field(default_factory=list)


# Test generation models
class GenerateTestsRequest(BaseModel):
    requirement_ids: list[str]
    framework: Framework | None = None  # Falls back to settings.default_framework
    mode: GenerationMode | None = None  # Falls back to settings.default_mode


class GeneratedTest(BaseModel):
    __test__ = False

    id: str
    requirement_id: str
    framework: Framework
    code: str
    generation_mode: GenerationMode
    file_path: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class GenerationFailure(BaseModel):
    requirement_id: str
    error: str


class GenerateTestsResponse(BaseModel):
    tests: list[GeneratedTest] = Field(default_factory=list)
    failures: list[GenerationFailure] = Field(default_factory=list)


class GenerationJobStatus(BaseModel):
    job_id: str
    project_id: str
    state: BatchState
    cancelled: bool = False
    total: int = 0
    completed: int = 0
    tests: list[GeneratedTest] = Field(default_factory=list)
    failures: list[GenerationFailure] = Field(default_factory=list)
    error: str | None = None


class SaveTestRequest(BaseModel):
    path: str


# Execution models
class ExecuteTestsRequest(BaseModel):
    test_ids: list[str]


class TestResult(BaseModel):
    __test__ = False

    id: str
    generated_test_id: str
    status: TestStatus
    execution_time_ms: int = 0
    stdout: str = ""
    stderr: str = ""
    executed_at: datetime = Field(default_factory=datetime.now)


class TestProgress(BaseModel):
    """Event emitted on the test-progress stream."""

    __test__ = False

    total: int
    completed: int
    current_test: str = ""
    status: ProgressStatus = ProgressStatus.RUNNING


class ExecutionJobStatus(BaseModel):
    job_id: str
    project_id: str
    state: BatchState
    cancelled: bool = False
    total: int = 0
    completed: int = 0
    events: list[TestProgress] = Field(default_factory=list)
    event_count: int = 0
    results: list[TestResult] = Field(default_factory=list)
    error: str | None = None


# Report models
class AlignmentReport(BaseModel):
    id: str
    project_id: str
    coverage_percent: float = 0.0
    total_requirements: int = 0
    covered_requirements: int = 0
    generated_at: datetime = Field(default_factory=datetime.now)


class Mismatch(BaseModel):
    id: str
    report_id: str
    requirement_id: str
    spec_section: str
    code_element: str | None = None
    mismatch_type: MismatchType
    details: str = ""


class AlignmentReportWithMismatches(AlignmentReport):
    mismatches: list[Mismatch] = Field(default_factory=list)


# Settings
class AppSettings(BaseModel):
    """User settings passed explicitly into generation and execution."""

    api_key: str = ""
    default_framework: Framework = Framework.JEST
    default_mode: GenerationMode = GenerationMode.TEMPLATE
    scan_exclusions: list[str] = Field(default_factory=list)
    llm_base_url: str = "https://api.anthropic.com/v1/"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_timeout_seconds: float = Field(default=90.0, gt=0)
    llm_max_attempts: int = Field(default=3, ge=1)
    llm_backoff_seconds: float = Field(default=1.0, ge=0)
    llm_max_workers: int = Field(default=4, ge=1)
    test_timeout_seconds: float = Field(default=120.0, gt=0)
    max_parallel_tests: int = Field(default=4, ge=1)


# Git models
class RepoInfo(BaseModel):
    branch: str
    commit_hash: str
    commit_message: str = ""
    is_dirty: bool = False


class ChangedFile(BaseModel):
    path: str
    status: str  # added, modified, deleted, renamed
