"""Project API endpoints."""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from spec_companion.database import get_db
from spec_companion.errors import NotFoundError, ValidationError
from spec_companion.models import (
  ChangedFile,
  Project,
  ProjectCreate,
  ProjectWithStats,
  RepoInfo,
  ValidatePathRequest,
)
from spec_companion.services import git_service
from spec_companion.services.database_service import DatabaseService
from spec_companion.services.spec_service import SpecService, canonical_directory

logger = logging.getLogger(__name__)


def get_database_service(db: Session = Depends(get_db)) -> DatabaseService:
  """Get database service instance."""
  return DatabaseService(db)


router = APIRouter()


@router.post('/', response_model=Project)
async def create_project(data: ProjectCreate, db_service=Depends(get_database_service)):
  """Create a project rooted at an existing codebase directory."""
  return SpecService(db_service).create_project(data)


@router.get('/', response_model=List[ProjectWithStats])
async def list_projects(db_service=Depends(get_database_service)):
  """List projects with spec counts and latest coverage."""
  return db_service.list_projects()


@router.post('/validate-path')
async def validate_path(request: ValidatePathRequest) -> dict[str, Any]:
  """Check that a path is an existing directory and return its canonical form."""
  try:
    return {'valid': True, 'path': canonical_directory(request.path), 'error': None}
  except ValidationError as e:
    return {'valid': False, 'path': None, 'error': e.detail}


@router.get('/{project_id}', response_model=ProjectWithStats)
async def get_project(project_id: str, db_service=Depends(get_database_service)):
  project = db_service.get_project(project_id)
  if not project:
    raise NotFoundError('Project', project_id)
  return project


@router.delete('/{project_id}')
async def delete_project(project_id: str, db_service=Depends(get_database_service)):
  """Delete a project with its specs, tests, results and reports."""
  if not db_service.delete_project(project_id):
    raise NotFoundError('Project', project_id)
  return {'message': 'Project deleted successfully'}


@router.get('/{project_id}/git', response_model=RepoInfo)
async def get_git_info(project_id: str, db_service=Depends(get_database_service)):
  """Branch and head commit of the project's codebase."""
  project = db_service.require_project(project_id)
  return git_service.get_repo_info(project.codebase_path)


@router.get('/{project_id}/git/changes', response_model=List[ChangedFile])
async def get_git_changes(
  project_id: str, since_commit: Optional[str] = None, db_service=Depends(get_database_service)
):
  """Files changed since a commit, or uncommitted changes when none is given."""
  project = db_service.require_project(project_id)
  return git_service.get_changed_files(project.codebase_path, since_commit)
