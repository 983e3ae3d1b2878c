"""Git repository information for a project's codebase, via the git CLI."""

import logging
import subprocess

from spec_companion.errors import ValidationError
from spec_companion.models import ChangedFile, RepoInfo

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30

NAME_STATUS = {"A": "added", "D": "deleted", "M": "modified", "R": "renamed", "C": "added", "T": "modified"}


def _git(path: str, *args: str) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=path,
            capture_output=True,
            text=True,
            check=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except FileNotFoundError as e:
        raise ValidationError(f"git is not available: {e}") from e
    except NotADirectoryError as e:
        raise ValidationError(f"Not a directory: {path}") from e
    except subprocess.CalledProcessError as e:
        raise ValidationError(f"git {' '.join(args)} failed in {path}: {e.stderr.strip()}") from e
    except subprocess.TimeoutExpired as e:
        raise ValidationError(f"git {' '.join(args)} timed out in {path}") from e
    return result.stdout


def get_repo_info(path: str) -> RepoInfo:
    """Branch, short head commit, subject line and dirty flag.

    Raises:
        ValidationError: if ``path`` is not inside a git work tree or has no commits.
    """
    if _git(path, "rev-parse", "--is-inside-work-tree").strip() != "true":
        raise ValidationError(f"Not a git repository: {path}")

    branch = _git(path, "rev-parse", "--abbrev-ref", "HEAD").strip() or "HEAD"
    commit_hash, _, commit_message = _git(path, "log", "-1", "--format=%H%n%s").partition("\n")
    status = _git(path, "status", "--porcelain")

    return RepoInfo(
        branch=branch,
        commit_hash=commit_hash.strip()[:8],
        commit_message=commit_message.strip(),
        is_dirty=bool(status.strip()),
    )


def get_changed_files(path: str, since_commit: str | None = None) -> list[ChangedFile]:
    """Files changed between ``since_commit`` and HEAD, or in the working tree."""
    if since_commit:
        output = _git(path, "diff", "--name-status", "-M", f"{since_commit}..HEAD")
        changed = []
        for line in output.splitlines():
            parts = line.split("\t")
            if len(parts) < 2:
                continue
            code = parts[0][:1]
            changed.append(ChangedFile(path=parts[-1], status=NAME_STATUS.get(code, "modified")))
        return changed

    changed = []
    for line in _git(path, "status", "--porcelain").splitlines():
        if len(line) < 4:
            continue
        code, file_path = line[:2], line[3:]
        if " -> " in file_path:
            file_path = file_path.split(" -> ", 1)[1]
        if "?" in code or "A" in code:
            status = "added"
        elif "D" in code:
            status = "deleted"
        elif "R" in code:
            status = "renamed"
        else:
            status = "modified"
        changed.append(ChangedFile(path=file_path.strip('"'), status=status))
    logger.debug("Found %d changed files in %s", len(changed), path)
    return changed
