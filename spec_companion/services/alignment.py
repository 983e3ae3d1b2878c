"""Alignment analysis: how much of a project's spec is covered by passing tests.

For each requirement the latest result of each of its generated tests is
considered (``None`` when a test never ran):

1. no tests                                  -> no_test_generated
2. tests, but none ever ran                  -> not_implemented
3. nothing passed, something failed/errored  -> test_failing
4. nothing passed, only skipped/never ran    -> not_implemented
5. something passed, something failed/errored/never ran -> partial_coverage
6. otherwise                                 -> covered

Covered requirements produce no mismatch; every other requirement produces
exactly one, so mismatches partition the uncovered set. Partial coverage is
not counted as covered.
"""

import logging
import uuid

from spec_companion.database import utcnow
from spec_companion.models import (
    AlignmentReportWithMismatches,
    GeneratedTest,
    Mismatch,
    MismatchType,
    Requirement,
    TestStatus,
)

logger = logging.getLogger(__name__)

FAILING_STATUSES = (TestStatus.FAILED, TestStatus.ERROR)

DETAILS = {
    MismatchType.NO_TEST_GENERATED: "No test has been generated for: {description}",
    MismatchType.NOT_IMPLEMENTED: "No test has produced passing evidence for: {description}",
    MismatchType.TEST_FAILING: "Test(s) failing for: {description}",
    MismatchType.PARTIAL_COVERAGE: "Some tests passing, others failing or not run for: {description}",
}


def classify(statuses: list[TestStatus | None]) -> MismatchType | None:
    """Classify one requirement from the latest status of each of its tests.

    Returns None when the requirement is covered.
    """
    if not statuses:
        return MismatchType.NO_TEST_GENERATED
    if all(status is None for status in statuses):
        return MismatchType.NOT_IMPLEMENTED

    passed = any(status == TestStatus.PASSED for status in statuses)
    failing = any(status in FAILING_STATUSES for status in statuses)

    if not passed:
        return MismatchType.TEST_FAILING if failing else MismatchType.NOT_IMPLEMENTED
    if failing or any(status is None for status in statuses):
        return MismatchType.PARTIAL_COVERAGE
    return None


def coverage_percent(covered: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return covered / total * 100.0


def build_report(
    project_id: str,
    requirements: list[Requirement],
    tests_by_requirement: dict[str, list[GeneratedTest]],
    latest_status: dict[str, TestStatus],
) -> AlignmentReportWithMismatches:
    """Compute a report snapshot from current project state (no I/O)."""
    report_id = str(uuid.uuid4())
    covered = 0
    mismatches: list[Mismatch] = []

    for requirement in requirements:
        tests = tests_by_requirement.get(requirement.id, [])
        mismatch_type = classify([latest_status.get(test.id) for test in tests])
        if mismatch_type is None:
            covered += 1
            continue

        saved_paths = [test.file_path for test in tests if test.file_path]
        mismatches.append(
            Mismatch(
                id=str(uuid.uuid4()),
                report_id=report_id,
                requirement_id=requirement.id,
                spec_section=requirement.section,
                code_element=", ".join(saved_paths) or None,
                mismatch_type=mismatch_type,
                details=DETAILS[mismatch_type].format(description=requirement.description),
            )
        )

    total = len(requirements)
    report = AlignmentReportWithMismatches(
        id=report_id,
        project_id=project_id,
        coverage_percent=coverage_percent(covered, total),
        total_requirements=total,
        covered_requirements=covered,
        generated_at=utcnow(),
        mismatches=mismatches,
    )
    logger.info(
        "Alignment for project %s: %d/%d covered (%.1f%%), %d mismatches",
        project_id, covered, total, report.coverage_percent, len(mismatches),
    )
    return report


def analyze(db_service, project_id: str) -> AlignmentReportWithMismatches:
    """Compute and store a new report for ``project_id``.

    Raises:
        NotFoundError: if the project does not exist.
    """
    db_service.require_project(project_id)
    requirements = db_service.get_requirements_for_project(project_id)
    tests = db_service.get_generated_tests_for_project(project_id)
    latest_status = db_service.get_latest_statuses(project_id)

    tests_by_requirement: dict[str, list[GeneratedTest]] = {}
    for test in tests:
        tests_by_requirement.setdefault(test.requirement_id, []).append(test)

    report = build_report(project_id, requirements, tests_by_requirement, latest_status)
    return db_service.save_report(report)
