"""Alignment report API endpoints."""

from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from spec_companion.database import get_db
from spec_companion.errors import NotFoundError
from spec_companion.models import AlignmentReport, AlignmentReportWithMismatches
from spec_companion.services import alignment, report_exporter
from spec_companion.services.database_service import DatabaseService


def get_database_service(db: Session = Depends(get_db)) -> DatabaseService:
  """Get database service instance."""
  return DatabaseService(db)


router = APIRouter()


@router.post('/projects/{project_id}/reports', response_model=AlignmentReportWithMismatches)
async def generate_alignment_report(project_id: str, db_service=Depends(get_database_service)):
  """Compute coverage from the latest test results and store a new report."""
  return alignment.analyze(db_service, project_id)


@router.get('/projects/{project_id}/reports', response_model=List[AlignmentReport])
async def list_reports(project_id: str, db_service=Depends(get_database_service)):
  db_service.require_project(project_id)
  return db_service.list_reports(project_id)


@router.get('/reports/{report_id}', response_model=AlignmentReportWithMismatches)
async def get_alignment_report(report_id: str, db_service=Depends(get_database_service)):
  report = db_service.get_report(report_id)
  if not report:
    raise NotFoundError('Report', report_id)
  return report


@router.get('/reports/{report_id}/export')
async def export_report(report_id: str, format: str = 'json', db_service=Depends(get_database_service)):
  """Export a report as json, csv or html."""
  export_format = report_exporter.parse_format(format)
  report = db_service.get_report(report_id)
  if not report:
    raise NotFoundError('Report', report_id)

  content = report_exporter.export_report(report, export_format)
  filename = f'alignment-report-{report_id[:8]}.{export_format.value}'
  return Response(
    content=content,
    media_type=report_exporter.MEDIA_TYPES[export_format],
    headers={'Content-Disposition': f'attachment; filename="{filename}"'},
  )
