"""Spec document API endpoints."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from spec_companion.database import get_db
from spec_companion.errors import NotFoundError
from spec_companion.models import ParsedSpec, Spec, SpecUpload
from spec_companion.services.database_service import DatabaseService
from spec_companion.services.spec_service import SpecService


def get_database_service(db: Session = Depends(get_db)) -> DatabaseService:
  """Get database service instance."""
  return DatabaseService(db)


router = APIRouter()


@router.post('/projects/{project_id}/specs', response_model=ParsedSpec)
async def upload_spec(project_id: str, upload: SpecUpload, db_service=Depends(get_database_service)):
  """Store a spec document and extract its requirements."""
  return SpecService(db_service).upload_spec(project_id, upload)


@router.get('/projects/{project_id}/specs', response_model=List[Spec])
async def list_specs(project_id: str, db_service=Depends(get_database_service)):
  db_service.require_project(project_id)
  return db_service.list_specs(project_id)


@router.get('/specs/{spec_id}', response_model=ParsedSpec)
async def get_spec(spec_id: str, db_service=Depends(get_database_service)):
  """Get a spec with its requirements in document order."""
  parsed = db_service.get_spec(spec_id)
  if not parsed:
    raise NotFoundError('Spec', spec_id)
  return parsed


@router.delete('/specs/{spec_id}')
async def delete_spec(spec_id: str, db_service=Depends(get_database_service)):
  if not db_service.delete_spec(spec_id):
    raise NotFoundError('Spec', spec_id)
  return {'message': 'Spec deleted successfully'}


@router.post('/specs/{spec_id}/reparse', response_model=ParsedSpec)
async def reparse_spec(spec_id: str, db_service=Depends(get_database_service)):
  """Re-extract requirements; previous requirements and their tests are removed."""
  return SpecService(db_service).reparse_spec(spec_id)
