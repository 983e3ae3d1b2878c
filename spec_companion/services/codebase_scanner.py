"""Codebase symbol scanner.

Walks a project's source tree and collects function/class/method names with
line-based patterns. The symbols are used as context when generating tests:
import hints in templates and a symbol list in LLM prompts.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from spec_companion.errors import ValidationError

logger = logging.getLogger(__name__)

IGNORE_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        "target",
        ".next",
        "__pycache__",
        ".venv",
        "venv",
        ".tox",
        "coverage",
        ".nyc_output",
        ".mypy_cache",
        ".pytest_cache",
    }
)
MAX_DEPTH = 12
MAX_FILE_SIZE = 1_024_000  # Generated or bundled files are bigger than this

_IDENT = r"([A-Za-z_$][\w$]*)"

# extension -> list of (pattern, kind); kind "def" is resolved by indentation
SYMBOL_PATTERNS: dict[str, list[tuple[re.Pattern, str]]] = {
    "py": [
        (re.compile(rf"^(\s*)(?:async\s+)?def\s+{_IDENT}"), "def"),
        (re.compile(rf"^(\s*)class\s+{_IDENT}"), "class"),
    ],
    "js": [
        (re.compile(rf"^()(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*{_IDENT}"), "function"),
        (re.compile(rf"^()(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+{_IDENT}"), "class"),
        (
            re.compile(rf"^()(?:export\s+)?(?:const|let)\s+{_IDENT}\s*(?::[^=]+)?=\s*(?:async\s+)?(?:function\b|\([^)]*\)\s*(?::[^=]+)?=>|[A-Za-z_$][\w$]*\s*=>)"),
            "function",
        ),
    ],
    "rs": [
        (re.compile(rf"^()(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+{_IDENT}"), "function"),
        (re.compile(rf"^()(?:pub(?:\([^)]*\))?\s+)?(?:struct|enum|trait)\s+{_IDENT}"), "class"),
        (re.compile(rf"^()impl(?:<[^>]*>)?\s+(?:[\w:]+\s+for\s+)?{_IDENT}"), "class"),
    ],
    "go": [
        (re.compile(rf"^()func\s+(?:\([^)]*\)\s*)?{_IDENT}"), "function"),
        (re.compile(rf"^()type\s+{_IDENT}\s+(?:struct|interface)\b"), "class"),
    ],
    "java": [
        (re.compile(rf"^()(?:(?:public|private|protected|static|final|abstract)\s+)*(?:class|interface|enum|record)\s+{_IDENT}"), "class"),
        (
            re.compile(rf"^()(?:(?:public|private|protected|static|final|synchronized|abstract)\s+)+[\w<>\[\],\s]+?\s+{_IDENT}\s*\("),
            "method",
        ),
    ],
    "rb": [
        (re.compile(rf"^()class\s+{_IDENT}"), "class"),
        (re.compile(rf"^()module\s+{_IDENT}"), "class"),
        (re.compile(r"^()def\s+(?:self\.)?([A-Za-z_]\w*[?!=]?)"), "method"),
    ],
    "cs": [
        (re.compile(rf"^()(?:(?:public|private|protected|internal|static|sealed|abstract|partial)\s+)*(?:class|interface|struct|record)\s+{_IDENT}"), "class"),
        (
            re.compile(rf"^()(?:(?:public|private|protected|internal|static|virtual|override|async)\s+)+[\w<>\[\],?\s]+?\s+{_IDENT}\s*\("),
            "method",
        ),
    ],
}
EXTENSION_LANGUAGES = {
    ".py": "py",
    ".js": "js",
    ".jsx": "js",
    ".ts": "js",
    ".tsx": "js",
    ".rs": "rs",
    ".go": "go",
    ".java": "java",
    ".rb": "rb",
    ".cs": "cs",
}
CONTROL_KEYWORDS = frozenset({"if", "for", "while", "switch", "catch", "return", "new", "else"})


@dataclass(frozen=True)
class CodeSymbol:
    name: str
    kind: str  # function, class, method
    file_path: str  # relative to the codebase root


def scan_codebase(root: str, exclusions: list[str] | None = None) -> list[CodeSymbol]:
    """Collect symbols from every source file under ``root``.

    Raises:
        ValidationError: If ``root`` is not an existing directory.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise ValidationError(f"Invalid codebase path: {root}")

    excluded = IGNORE_DIRS | set(exclusions or [])
    symbols: list[CodeSymbol] = []

    for dirpath, dirnames, filenames in os.walk(root_path):
        current = Path(dirpath)
        depth = len(current.relative_to(root_path).parts)
        # Prune in place so os.walk never descends into ignored trees
        dirnames[:] = sorted(d for d in dirnames if d not in excluded and depth < MAX_DEPTH)

        for filename in sorted(filenames):
            if filename in excluded:
                continue
            language = EXTENSION_LANGUAGES.get(os.path.splitext(filename)[1].lower())
            if language is None:
                continue
            path = current / filename
            try:
                if path.stat().st_size > MAX_FILE_SIZE:
                    continue
                content = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug("Skipping unreadable file %s: %s", path, e)
                continue
            symbols.extend(extract_symbols(content, path.relative_to(root_path).as_posix(), language))

    logger.info("Scanned %s: %d symbols", root, len(symbols))
    return symbols


def extract_symbols(content: str, file_path: str, language: str) -> list[CodeSymbol]:
    patterns = SYMBOL_PATTERNS.get(language, [])
    symbols = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("//", "#", "*", "/*")):
            continue
        for pattern, kind in patterns:
            match = pattern.match(line if language == "py" else stripped)
            if not match:
                continue
            name = match.group(2)
            if name in CONTROL_KEYWORDS:
                continue
            if kind == "def":
                kind = "method" if match.group(1) else "function"
            symbols.append(CodeSymbol(name=name, kind=kind, file_path=file_path))
            break
    return symbols


def find_relevant_symbols(symbols: list[CodeSymbol], text: str, limit: int = 5) -> list[CodeSymbol]:
    """Symbols whose name shares a word with ``text``, best matches first."""
    words = {w for w in re.findall(r"[a-z0-9]+", text.lower()) if len(w) > 2}
    if not words:
        return []

    scored = []
    for index, symbol in enumerate(symbols):
        parts = set(re.findall(r"[a-z0-9]+", re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", symbol.name).lower()))
        score = len(parts & words)
        if score:
            scored.append((-score, index, symbol))
    scored.sort()
    return [symbol for _, _, symbol in scored[:limit]]
