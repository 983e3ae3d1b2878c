"""Test generation and execution API endpoints."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from spec_companion.database import SessionLocal, get_db
from spec_companion.errors import NotFoundError
from spec_companion.models import (
  AppSettings,
  ExecuteTestsRequest,
  ExecutionJobStatus,
  GeneratedTest,
  GenerateTestsRequest,
  GenerateTestsResponse,
  GenerationJobStatus,
  SaveTestRequest,
  TestResult,
)
from spec_companion.services.database_service import DatabaseService
from spec_companion.services.execution_service import ExecutionService
from spec_companion.services.generation_service import GenerationService
from spec_companion.services.test_runner import SubprocessTestRunner
from spec_companion.utils.config import load_settings


def get_database_service(db: Session = Depends(get_db)) -> DatabaseService:
  """Get database service instance."""
  return DatabaseService(db)


def get_settings() -> AppSettings:
  """Current user settings from the settings file."""
  return load_settings()


def get_runner_factory():
  """Runner used for test execution."""
  return SubprocessTestRunner


def get_session_factory():
  """Session factory for background jobs."""
  return SessionLocal


def get_generation_provider():
  """LLM provider override; None builds one from the settings."""
  return None


router = APIRouter()


# Generation
@router.post('/projects/{project_id}/tests/generate', response_model=GenerateTestsResponse)
def generate_tests(
  project_id: str,
  request: GenerateTestsRequest,
  db_service=Depends(get_database_service),
  settings: AppSettings = Depends(get_settings),
  provider=Depends(get_generation_provider),
):
  """Generate one test per requirement and wait for all of them.

  Requirements whose generation failed are reported in ``failures`` and the
  rest are stored.
  """
  return GenerationService(db_service, settings, provider).generate_tests(project_id, request)


@router.post('/projects/{project_id}/generations', response_model=GenerationJobStatus)
async def start_generation(
  project_id: str,
  request: GenerateTestsRequest,
  db_service=Depends(get_database_service),
  settings: AppSettings = Depends(get_settings),
  provider=Depends(get_generation_provider),
  session_factory=Depends(get_session_factory),
):
  """Start a background generation job. Poll /generations/{job_id} for progress."""
  service = GenerationService(db_service, settings, provider)
  return service.start_generation_job(project_id, request, session_factory=session_factory)


@router.get('/generations/{job_id}', response_model=GenerationJobStatus)
async def get_generation(job_id: str):
  return GenerationService.get_job_status(job_id)


@router.post('/generations/{job_id}/cancel', response_model=GenerationJobStatus)
async def cancel_generation(job_id: str):
  """Request cancellation; requirements not yet generated are reported as cancelled."""
  return GenerationService.cancel_job(job_id)


@router.get('/requirements/{requirement_id}/tests', response_model=List[GeneratedTest])
async def get_generated_tests(requirement_id: str, db_service=Depends(get_database_service)):
  if not db_service.get_requirement(requirement_id):
    raise NotFoundError('Requirement', requirement_id)
  return db_service.get_generated_tests_for_requirement(requirement_id)


@router.get('/projects/{project_id}/tests', response_model=List[GeneratedTest])
async def get_all_generated_tests(project_id: str, db_service=Depends(get_database_service)):
  db_service.require_project(project_id)
  return db_service.get_generated_tests_for_project(project_id)


@router.post('/tests/{test_id}/save', response_model=GeneratedTest)
async def save_test_to_disk(
  test_id: str,
  request: SaveTestRequest,
  db_service=Depends(get_database_service),
  settings: AppSettings = Depends(get_settings),
):
  """Write a test file; relative paths land inside the project's codebase."""
  return GenerationService(db_service, settings).save_test_to_disk(test_id, request.path)


# Execution
@router.post('/projects/{project_id}/tests/execute', response_model=List[TestResult])
def execute_tests(
  project_id: str,
  request: ExecuteTestsRequest,
  db_service=Depends(get_database_service),
  settings: AppSettings = Depends(get_settings),
  runner_factory=Depends(get_runner_factory),
):
  """Run the selected tests and wait for all results."""
  return ExecutionService(db_service, settings, runner_factory).execute_tests(project_id, request)


@router.post('/projects/{project_id}/executions', response_model=ExecutionJobStatus)
async def start_execution(
  project_id: str,
  request: ExecuteTestsRequest,
  db_service=Depends(get_database_service),
  settings: AppSettings = Depends(get_settings),
  runner_factory=Depends(get_runner_factory),
  session_factory=Depends(get_session_factory),
):
  """Start a background execution job. Poll /executions/{job_id} for progress."""
  service = ExecutionService(db_service, settings, runner_factory)
  return service.start_execution_job(project_id, request, session_factory=session_factory)


@router.get('/executions/{job_id}', response_model=ExecutionJobStatus)
async def get_execution(job_id: str, since_event_index: int = 0):
  """Job state, results, and progress events after ``since_event_index``."""
  return ExecutionService.get_job_status(job_id, since_event_index)


@router.post('/executions/{job_id}/cancel', response_model=ExecutionJobStatus)
async def cancel_execution(job_id: str):
  """Request cancellation; running tests finish, queued tests are skipped."""
  return ExecutionService.cancel_job(job_id)


# Results
@router.get('/projects/{project_id}/results', response_model=List[TestResult])
async def get_test_results(project_id: str, db_service=Depends(get_database_service)):
  db_service.require_project(project_id)
  return db_service.get_test_results_for_project(project_id)


@router.get('/results/{result_id}', response_model=TestResult)
async def get_test_result(result_id: str, db_service=Depends(get_database_service)):
  result = db_service.get_test_result(result_id)
  if not result:
    raise NotFoundError('Test result', result_id)
  return result
