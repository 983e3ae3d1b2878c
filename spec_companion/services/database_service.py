"""Database service layer for spec companion operations."""

import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from spec_companion.database import (
  AlignmentReportDB,
  GeneratedTestDB,
  MismatchDB,
  ProjectDB,
  RequirementDB,
  SpecDB,
  TestResultDB,
  utcnow,
)
from spec_companion.errors import NotFoundError
from spec_companion.models import (
  AlignmentReport,
  AlignmentReportWithMismatches,
  GeneratedTest,
  Mismatch,
  ParsedSpec,
  Project,
  ProjectWithStats,
  Requirement,
  Spec,
  TestResult,
  TestStatus,
)
from spec_companion.services.spec_parser import ExtractedRequirement

logger = logging.getLogger(__name__)


class DatabaseService:
  """Service layer for database operations."""

  def __init__(self, db: Session):
    self.db = db

  # Project operations
  def create_project(self, name: str, codebase_path: str) -> Project:
    """Create a new project in the database."""
    db_project = ProjectDB(id=str(uuid.uuid4()), name=name, codebase_path=codebase_path)
    self.db.add(db_project)
    self.db.commit()
    self.db.refresh(db_project)
    logger.info('Created project %s (%s)', db_project.id, name)
    return self._project_from_db(db_project)

  def get_project(self, project_id: str) -> Optional[ProjectWithStats]:
    """Get a project with its spec count and latest report stats."""
    db_project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
    if not db_project:
      return None
    return self._project_with_stats(db_project)

  def require_project(self, project_id: str) -> Project:
    """Get a project or raise NotFoundError."""
    db_project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
    if not db_project:
      raise NotFoundError('Project', project_id)
    return self._project_from_db(db_project)

  def list_projects(self) -> List[ProjectWithStats]:
    """List all projects, most recently updated first."""
    db_projects = self.db.query(ProjectDB).order_by(ProjectDB.updated_at.desc()).all()
    return [self._project_with_stats(p) for p in db_projects]

  def delete_project(self, project_id: str) -> bool:
    """Delete a project and everything under it."""
    db_project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
    if not db_project:
      return False
    self.db.delete(db_project)
    self.db.commit()
    logger.info('Deleted project %s', project_id)
    return True

  def touch_project(self, project_id: str):
    """Bump updated_at so listings show recently used projects first."""
    db_project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
    if db_project:
      db_project.updated_at = utcnow()
      self.db.commit()

  # Spec operations
  def create_spec(
    self, project_id: str, filename: str, content: str, requirements: List[ExtractedRequirement]
  ) -> ParsedSpec:
    """Store a spec and its extracted requirements in one transaction."""
    db_spec = SpecDB(
      id=str(uuid.uuid4()),
      project_id=project_id,
      filename=filename,
      content=content,
      parsed_at=utcnow(),
    )
    self.db.add(db_spec)
    self._add_requirements(db_spec.id, requirements)
    self.db.commit()
    self.db.refresh(db_spec)
    return self._parsed_spec_from_db(db_spec)

  def get_spec(self, spec_id: str) -> Optional[ParsedSpec]:
    """Get a spec with its requirements in extraction order."""
    db_spec = self.db.query(SpecDB).filter(SpecDB.id == spec_id).first()
    if not db_spec:
      return None
    return self._parsed_spec_from_db(db_spec)

  def list_specs(self, project_id: str) -> List[Spec]:
    """List specs for a project, newest first."""
    db_specs = self.db.query(SpecDB).filter(SpecDB.project_id == project_id).order_by(SpecDB.created_at.desc()).all()
    return [self._spec_from_db(s) for s in db_specs]

  def delete_spec(self, spec_id: str) -> bool:
    """Delete a spec; its requirements, tests and results cascade."""
    db_spec = self.db.query(SpecDB).filter(SpecDB.id == spec_id).first()
    if not db_spec:
      return False
    self.db.delete(db_spec)
    self.db.commit()
    return True

  def replace_requirements(self, spec_id: str, requirements: List[ExtractedRequirement]) -> ParsedSpec:
    """Swap a spec's requirement set for a freshly extracted one.

    Old requirements are deleted together with their generated tests and
    results. Existing reports keep their mismatches.
    """
    db_spec = self.db.query(SpecDB).filter(SpecDB.id == spec_id).first()
    if not db_spec:
      raise NotFoundError('Spec', spec_id)

    for db_requirement in list(db_spec.requirements):
      self.db.delete(db_requirement)
    self.db.flush()

    self._add_requirements(spec_id, requirements)
    db_spec.parsed_at = utcnow()
    self.db.commit()
    self.db.refresh(db_spec)
    return self._parsed_spec_from_db(db_spec)

  def _add_requirements(self, spec_id: str, requirements: List[ExtractedRequirement]):
    for position, extracted in enumerate(requirements):
      self.db.add(
        RequirementDB(
          id=str(uuid.uuid4()),
          spec_id=spec_id,
          position=position,
          section=extracted.section,
          description=extracted.description,
          req_type=extracted.req_type.value,
          priority=extracted.priority.value,
        )
      )

  # Requirement operations
  def get_requirements_for_project(self, project_id: str) -> List[Requirement]:
    """All requirements across a project's specs, in spec then extraction order."""
    rows = (
      self.db.query(RequirementDB)
      .join(SpecDB, RequirementDB.spec_id == SpecDB.id)
      .filter(SpecDB.project_id == project_id)
      .order_by(SpecDB.created_at, SpecDB.id, RequirementDB.position)
      .all()
    )
    return [self._requirement_from_db(r) for r in rows]

  def get_project_requirements(self, project_id: str, requirement_ids: List[str]) -> List[Requirement]:
    """Requirements by id, in the requested order; each must belong to the project."""
    rows = (
      self.db.query(RequirementDB)
      .join(SpecDB, RequirementDB.spec_id == SpecDB.id)
      .filter(SpecDB.project_id == project_id, RequirementDB.id.in_(requirement_ids))
      .all()
    )
    by_id = {r.id: r for r in rows}
    missing = [rid for rid in requirement_ids if rid not in by_id]
    if missing:
      raise NotFoundError('Requirement', ', '.join(missing))
    return [self._requirement_from_db(by_id[rid]) for rid in requirement_ids]

  def get_requirement(self, requirement_id: str) -> Optional[Requirement]:
    db_requirement = self.db.query(RequirementDB).filter(RequirementDB.id == requirement_id).first()
    return self._requirement_from_db(db_requirement) if db_requirement else None

  # Generated test operations
  def add_generated_tests(self, tests: List[GeneratedTest]) -> List[GeneratedTest]:
    """Store generated tests in one transaction."""
    for test in tests:
      self.db.add(
        GeneratedTestDB(
          id=test.id,
          requirement_id=test.requirement_id,
          framework=test.framework.value,
          code=test.code,
          generation_mode=test.generation_mode.value,
          file_path=test.file_path,
          created_at=test.created_at,
        )
      )
    self.db.commit()
    return tests

  def get_generated_test(self, test_id: str) -> Optional[GeneratedTest]:
    db_test = self.db.query(GeneratedTestDB).filter(GeneratedTestDB.id == test_id).first()
    return self._generated_test_from_db(db_test) if db_test else None

  def get_generated_tests_for_requirement(self, requirement_id: str) -> List[GeneratedTest]:
    rows = (
      self.db.query(GeneratedTestDB)
      .filter(GeneratedTestDB.requirement_id == requirement_id)
      .order_by(GeneratedTestDB.created_at.desc())
      .all()
    )
    return [self._generated_test_from_db(t) for t in rows]

  def get_generated_tests_for_project(self, project_id: str) -> List[GeneratedTest]:
    rows = (
      self.db.query(GeneratedTestDB)
      .join(RequirementDB, GeneratedTestDB.requirement_id == RequirementDB.id)
      .join(SpecDB, RequirementDB.spec_id == SpecDB.id)
      .filter(SpecDB.project_id == project_id)
      .order_by(GeneratedTestDB.created_at.desc())
      .all()
    )
    return [self._generated_test_from_db(t) for t in rows]

  def get_project_tests(self, project_id: str, test_ids: List[str]) -> List[GeneratedTest]:
    """Generated tests by id, in the requested order; each must belong to the project."""
    rows = (
      self.db.query(GeneratedTestDB)
      .join(RequirementDB, GeneratedTestDB.requirement_id == RequirementDB.id)
      .join(SpecDB, RequirementDB.spec_id == SpecDB.id)
      .filter(SpecDB.project_id == project_id, GeneratedTestDB.id.in_(test_ids))
      .all()
    )
    by_id = {t.id: t for t in rows}
    missing = [tid for tid in test_ids if tid not in by_id]
    if missing:
      raise NotFoundError('Generated test', ', '.join(missing))
    return [self._generated_test_from_db(by_id[tid]) for tid in test_ids]

  def set_test_file_path(self, test_id: str, file_path: str) -> GeneratedTest:
    db_test = self.db.query(GeneratedTestDB).filter(GeneratedTestDB.id == test_id).first()
    if not db_test:
      raise NotFoundError('Generated test', test_id)
    db_test.file_path = file_path
    self.db.commit()
    return self._generated_test_from_db(db_test)

  def get_codebase_path_for_test(self, test_id: str) -> Optional[str]:
    row = (
      self.db.query(ProjectDB.codebase_path)
      .join(SpecDB, SpecDB.project_id == ProjectDB.id)
      .join(RequirementDB, RequirementDB.spec_id == SpecDB.id)
      .join(GeneratedTestDB, GeneratedTestDB.requirement_id == RequirementDB.id)
      .filter(GeneratedTestDB.id == test_id)
      .first()
    )
    return row[0] if row else None

  # Test result operations
  def add_test_result(self, result: TestResult, commit: bool = True) -> TestResult:
    """Store a test result; with commit=False the caller owns the transaction."""
    self.db.add(
      TestResultDB(
        id=result.id,
        generated_test_id=result.generated_test_id,
        status=result.status.value,
        execution_time_ms=result.execution_time_ms,
        stdout=result.stdout,
        stderr=result.stderr,
        executed_at=result.executed_at,
      )
    )
    if commit:
      self.db.commit()
    else:
      self.db.flush()
    return result

  def get_test_result(self, result_id: str) -> Optional[TestResult]:
    db_result = self.db.query(TestResultDB).filter(TestResultDB.id == result_id).first()
    return self._test_result_from_db(db_result) if db_result else None

  def get_test_results_for_project(self, project_id: str) -> List[TestResult]:
    """All results for a project's tests, newest first."""
    rows = self._project_results_query(project_id).order_by(TestResultDB.executed_at.desc()).all()
    return [self._test_result_from_db(r) for r in rows]

  def get_latest_statuses(self, project_id: str) -> Dict[str, TestStatus]:
    """Latest result status per generated test id (tests never run are absent)."""
    latest: Dict[str, TestStatus] = {}
    rows = self._project_results_query(project_id).order_by(TestResultDB.executed_at.asc()).all()
    for row in rows:
      latest[row.generated_test_id] = TestStatus(row.status)
    return latest

  def _project_results_query(self, project_id: str):
    return (
      self.db.query(TestResultDB)
      .join(GeneratedTestDB, TestResultDB.generated_test_id == GeneratedTestDB.id)
      .join(RequirementDB, GeneratedTestDB.requirement_id == RequirementDB.id)
      .join(SpecDB, RequirementDB.spec_id == SpecDB.id)
      .filter(SpecDB.project_id == project_id)
    )

  # Report operations
  def save_report(self, report: AlignmentReportWithMismatches) -> AlignmentReportWithMismatches:
    """Insert a report and its mismatches in one transaction."""
    try:
      db_report = AlignmentReportDB(
        id=report.id,
        project_id=report.project_id,
        coverage_percent=report.coverage_percent,
        total_requirements=report.total_requirements,
        covered_requirements=report.covered_requirements,
        generated_at=report.generated_at,
      )
      self.db.add(db_report)
      self.db.flush()
      for mismatch in report.mismatches:
        self.db.add(
          MismatchDB(
            id=mismatch.id,
            report_id=report.id,
            requirement_id=mismatch.requirement_id,
            spec_section=mismatch.spec_section,
            code_element=mismatch.code_element,
            mismatch_type=mismatch.mismatch_type.value,
            details=mismatch.details,
          )
        )
      self.db.commit()
    except Exception:
      self.db.rollback()
      raise
    self.db.refresh(db_report)
    return self.get_report(report.id)

  def get_report(self, report_id: str) -> Optional[AlignmentReportWithMismatches]:
    db_report = self.db.query(AlignmentReportDB).filter(AlignmentReportDB.id == report_id).first()
    if not db_report:
      return None
    return AlignmentReportWithMismatches(
      **self._report_from_db(db_report).model_dump(),
      mismatches=[self._mismatch_from_db(m) for m in db_report.mismatches],
    )

  def list_reports(self, project_id: str) -> List[AlignmentReport]:
    """Reports for a project, newest first."""
    rows = (
      self.db.query(AlignmentReportDB)
      .filter(AlignmentReportDB.project_id == project_id)
      .order_by(AlignmentReportDB.generated_at.desc())
      .all()
    )
    return [self._report_from_db(r) for r in rows]

  # Converters
  def _project_from_db(self, db_project: ProjectDB) -> Project:
    return Project(
      id=db_project.id,
      name=db_project.name,
      codebase_path=db_project.codebase_path,
      created_at=db_project.created_at,
      updated_at=db_project.updated_at,
    )

  def _project_with_stats(self, db_project: ProjectDB) -> ProjectWithStats:
    spec_count = self.db.query(func.count(SpecDB.id)).filter(SpecDB.project_id == db_project.id).scalar() or 0
    latest = (
      self.db.query(AlignmentReportDB)
      .filter(AlignmentReportDB.project_id == db_project.id)
      .order_by(AlignmentReportDB.generated_at.desc())
      .first()
    )
    return ProjectWithStats(
      **self._project_from_db(db_project).model_dump(),
      spec_count=spec_count,
      coverage_percent=latest.coverage_percent if latest else None,
      last_run_at=latest.generated_at if latest else None,
    )

  def _spec_from_db(self, db_spec: SpecDB) -> Spec:
    return Spec(
      id=db_spec.id,
      project_id=db_spec.project_id,
      filename=db_spec.filename,
      content=db_spec.content,
      parsed_at=db_spec.parsed_at,
      created_at=db_spec.created_at,
    )

  def _parsed_spec_from_db(self, db_spec: SpecDB) -> ParsedSpec:
    rows = (
      self.db.query(RequirementDB).filter(RequirementDB.spec_id == db_spec.id).order_by(RequirementDB.position).all()
    )
    return ParsedSpec(spec=self._spec_from_db(db_spec), requirements=[self._requirement_from_db(r) for r in rows])

  def _requirement_from_db(self, db_requirement: RequirementDB) -> Requirement:
    return Requirement(
      id=db_requirement.id,
      spec_id=db_requirement.spec_id,
      position=db_requirement.position,
      section=db_requirement.section,
      description=db_requirement.description,
      req_type=db_requirement.req_type,
      priority=db_requirement.priority,
    )

  def _generated_test_from_db(self, db_test: GeneratedTestDB) -> GeneratedTest:
    return GeneratedTest(
      id=db_test.id,
      requirement_id=db_test.requirement_id,
      framework=db_test.framework,
      code=db_test.code,
      generation_mode=db_test.generation_mode,
      file_path=db_test.file_path,
      created_at=db_test.created_at,
    )

  def _test_result_from_db(self, db_result: TestResultDB) -> TestResult:
    return TestResult(
      id=db_result.id,
      generated_test_id=db_result.generated_test_id,
      status=db_result.status,
      execution_time_ms=db_result.execution_time_ms or 0,
      stdout=db_result.stdout or '',
      stderr=db_result.stderr or '',
      executed_at=db_result.executed_at,
    )

  def _report_from_db(self, db_report: AlignmentReportDB) -> AlignmentReport:
    return AlignmentReport(
      id=db_report.id,
      project_id=db_report.project_id,
      coverage_percent=db_report.coverage_percent,
      total_requirements=db_report.total_requirements,
      covered_requirements=db_report.covered_requirements,
      generated_at=db_report.generated_at,
    )

  def _mismatch_from_db(self, db_mismatch: MismatchDB) -> Mismatch:
    return Mismatch(
      id=db_mismatch.id,
      report_id=db_mismatch.report_id,
      requirement_id=db_mismatch.requirement_id,
      spec_section=db_mismatch.spec_section,
      code_element=db_mismatch.code_element,
      mismatch_type=db_mismatch.mismatch_type,
      details=db_mismatch.details or '',
    )
