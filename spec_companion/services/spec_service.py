"""Project and spec commands: path validation, upload and reparse."""

import logging
import os

from spec_companion.errors import NotFoundError, ValidationError
from spec_companion.models import ParsedSpec, Project, ProjectCreate, SpecUpload
from spec_companion.services import spec_parser
from spec_companion.services.database_service import DatabaseService

logger = logging.getLogger(__name__)


def canonical_directory(path: str) -> str:
    """Resolve ``path`` to an absolute, symlink-free directory path.

    Raises:
        ValidationError: if the path is empty or not an existing directory.
    """
    if not path or not path.strip():
        raise ValidationError("Codebase path must not be empty")
    resolved = os.path.realpath(os.path.expanduser(path.strip()))
    if not os.path.isdir(resolved):
        raise ValidationError(f"Not a directory: {path}")
    return resolved


def sanitize_filename(filename: str) -> str:
    """Keep only the basename, whichever separator the client used."""
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    if name in ("", ".", ".."):
        raise ValidationError("Filename must not be empty")
    return name


class SpecService:
    """Commands that create projects and turn spec documents into requirements."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    def create_project(self, data: ProjectCreate) -> Project:
        name = data.name.strip()
        if not name:
            raise ValidationError("Project name must not be empty")
        return self.db_service.create_project(name, canonical_directory(data.codebase_path))

    def upload_spec(self, project_id: str, upload: SpecUpload) -> ParsedSpec:
        """Store a spec document and its extracted requirements."""
        filename = sanitize_filename(upload.filename)
        if not upload.content or not upload.content.strip():
            raise ValidationError("Spec content must not be empty")
        self.db_service.require_project(project_id)

        requirements = spec_parser.extract(upload.content)
        parsed = self.db_service.create_spec(project_id, filename, upload.content, requirements)
        self.db_service.touch_project(project_id)
        logger.info("Uploaded spec %s (%s): %d requirements", parsed.spec.id, filename, len(requirements))
        return parsed

    def reparse_spec(self, spec_id: str) -> ParsedSpec:
        """Re-extract requirements from the stored content, replacing the old set."""
        existing = self.db_service.get_spec(spec_id)
        if existing is None:
            raise NotFoundError("Spec", spec_id)

        requirements = spec_parser.extract(existing.spec.content)
        parsed = self.db_service.replace_requirements(spec_id, requirements)
        logger.info(
            "Reparsed spec %s: %d -> %d requirements",
            spec_id, len(existing.requirements), len(parsed.requirements),
        )
        return parsed
