"""Requirement extraction from markdown specification documents.

The extractor walks the document line by line, tracking the heading path,
and pulls candidate requirements from three places:

- list items (always inside a requirement-like section, otherwise only when
  the item itself reads like a requirement),
- paragraph sentences that carry an imperative modal (must, shall, ...),
- table rows that have a description-like column.

Each candidate is cleaned of markdown decoration, tagged with any explicit
marker (``[REQ-001]``, ``[MUST]``) and classified by type and priority with
the keyword rules below. Output order is document order, so the same input
always yields the same sequence.
"""

import logging
import re
from dataclasses import dataclass

from spec_companion.models import Priority, RequirementType

logger = logging.getLogger(__name__)

DEFAULT_SECTION = "General"
SECTION_SEPARATOR = " > "
MIN_TABLE_DESCRIPTION_LENGTH = 10

REQUIREMENT_SECTION_KEYWORDS = (
    "requirement",
    "user stor",
    "feature",
    "functional",
    "specification",
    "capability",
    "constraint",
    "acceptance criteria",
    "use case",
)

ID_MARKER_RE = re.compile(r"^((?:REQ|US|FR|NFR|UC|FEAT)-\d+)\s*:\s*", re.IGNORECASE)
KEYWORD_MARKERS = (
    ("must:", "MUST"),
    ("should:", "SHOULD"),
    ("could:", "COULD"),
    ("won't:", "WONT"),
    ("wont:", "WONT"),
    ("will:", "WILL"),
    ("high:", "HIGH"),
    ("low:", "LOW"),
)

MODAL_RE = re.compile(r"\b(must|shall|should|will)\b|\bis required to\b|\bneeds to\b", re.IGNORECASE)
ACTION_VERBS = (
    "allow",
    "support",
    "provide",
    "enable",
    "display",
    "show",
    "validate",
    "generate",
    "export",
    "import",
    "store",
    "send",
    "notify",
    "prevent",
    "ensure",
    "log",
    "record",
    "track",
    "reject",
)

CONSTRAINT_RE = re.compile(
    r"\b(must not|shall not|should not|cannot|can not|may not|must never|shall never|"
    r"is not allowed|are not allowed|limited to|no more than|at most)\b",
    re.IGNORECASE,
)
CONSTRAINT_TOPIC_RE = re.compile(r"\b(constraints?|limitations?|comply|complian\w*)\b", re.IGNORECASE)
NON_FUNCTIONAL_RE = re.compile(
    r"\b(non[- ]?functional|performance|latency|response times?|throughput|scalab\w*|availability|"
    r"uptime|reliab\w*|security|secure\w*|encrypt\w*|concurrent\w*|load|memory)\b"
    r"|\b(under|within|less than|below|at most)\s+\d+(\.\d+)?\s*(ms|milliseconds?|s|secs?|seconds?|minutes?)\b",
    re.IGNORECASE,
)

HIGH_PRIORITY_RE = re.compile(
    r"\b(critical|high[- ]priority|must[- ]have|mandatory|p0|p1)\b|\*\*must\*\*", re.IGNORECASE
)
LOW_PRIORITY_RE = re.compile(
    r"\b(nice[- ]to[- ]have|optional|low[- ]priority|could|p3|p4)\b", re.IGNORECASE
)

FENCE_RE = re.compile(r"^\s{0,3}(`{3,}|~{3,})")
ATX_HEADING_RE = re.compile(r"^\s{0,3}(#{1,6})(?:\s+(.*?))?\s*#*\s*$")
SETEXT_UNDERLINE_RE = re.compile(r"^\s{0,3}(=+|-+)\s*$")
THEMATIC_BREAK_RE = re.compile(r"^\s{0,3}([-*_])(\s*\1){2,}\s*$")
LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d{1,9}[.)])\s+(.*)$")
CHECKBOX_RE = re.compile(r"^\[[ xX]\]\s+")
TABLE_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?\s*$")
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+(?=\S)")
TABLE_ID_CELL_RE = re.compile(r"^[A-Za-z]{1,5}-?\d+$")


@dataclass(frozen=True)
class ExtractedRequirement:
    """A requirement as found in the document, before it gets an id."""

    section: str
    description: str
    req_type: RequirementType
    priority: Priority


def extract(content: str) -> list[ExtractedRequirement]:
    """Extract requirements from a markdown document.

    Never raises: unexpected parser failures are logged and yield an empty list.
    """
    if not content or not content.strip():
        return []
    try:
        return _DocumentScanner(content).scan()
    except Exception as e:
        logger.warning("Requirement extraction failed, no requirements extracted: %s", e, exc_info=True)
        return []


def is_requirement_section(heading: str) -> bool:
    lower = heading.lower()
    return any(keyword in lower for keyword in REQUIREMENT_SECTION_KEYWORDS)


def looks_like_requirement(text: str) -> bool:
    """Heuristic for list items found outside requirement sections."""
    lower = text.lower().lstrip()
    if lower.startswith(("as a ", "as an ")):
        return True
    if ID_MARKER_RE.match(text):
        return True
    if any(lower.startswith(prefix) for prefix, _ in KEYWORD_MARKERS):
        return True
    if "**shall**" in lower or "**must**" in lower:
        return True
    if MODAL_RE.search(clean_markdown(text)):
        return True
    # Bold lead-ins count only when there is a real sentence behind them
    if text.startswith("**") and len(lower.split()) >= 5:
        return True
    first_word = re.split(r"\W+", clean_markdown(text).lower(), maxsplit=1)[0]
    return first_word in ACTION_VERBS


def clean_markdown(text: str) -> str:
    """Strip inline markdown decoration and collapse whitespace."""
    text = re.sub(r"!?\[([^\]]*)\]\([^)]*\)", r"\1", text)  # links and images
    text = re.sub(r"(\*\*|__)(.+?)\1", r"\2", text)
    text = re.sub(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])", r"\1", text)
    text = re.sub(r"(?<!\w)_(?!\s)(.+?)(?<!\s)_(?!\w)", r"\1", text)
    text = re.sub(r"~~(.+?)~~", r"\1", text)
    text = text.replace("`", "")
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\s+", " ", text).strip()


def extract_marker(text: str) -> tuple[str, str | None]:
    """Split an explicit ID or MoSCoW marker off the front of a description.

    ``"REQ-001: User must log in"`` becomes ``("User must log in", "REQ-001")``.
    """
    match = ID_MARKER_RE.match(text)
    if match:
        return text[match.end():].strip(), match.group(1).upper()

    lower = text.lower()
    for prefix, marker in KEYWORD_MARKERS:
        if lower.startswith(prefix):
            return text[len(prefix):].strip(), marker

    return text, None


def classify_type(section: str, text: str) -> RequirementType:
    """Classify a requirement.

    Negative obligations and compliance topics are constraints. Quality
    attributes (performance, security, timing bounds, ...) are non-functional.
    Everything else is functional. The section path counts as context for the
    topic checks but not for the negative-obligation check.
    """
    if CONSTRAINT_RE.search(text) or CONSTRAINT_TOPIC_RE.search(text) or CONSTRAINT_TOPIC_RE.search(section):
        return RequirementType.CONSTRAINT
    if NON_FUNCTIONAL_RE.search(text) or NON_FUNCTIONAL_RE.search(section):
        return RequirementType.NON_FUNCTIONAL
    return RequirementType.FUNCTIONAL


def classify_priority(text: str, marker: str | None = None) -> Priority:
    if marker in ("MUST", "HIGH") or HIGH_PRIORITY_RE.search(text):
        return Priority.HIGH
    if marker in ("COULD", "WONT", "LOW") or LOW_PRIORITY_RE.search(text):
        return Priority.LOW
    return Priority.MEDIUM


def _table_priority(cell: str) -> Priority:
    lower = cell.strip().lower()
    if lower in ("high", "critical", "must", "must have", "p0", "p1"):
        return Priority.HIGH
    if lower in ("low", "nice to have", "optional", "could", "p3", "p4"):
        return Priority.LOW
    return Priority.MEDIUM


def _table_type(cell: str) -> RequirementType:
    lower = cell.lower()
    if "non-functional" in lower or "non functional" in lower or "performance" in lower or "security" in lower:
        return RequirementType.NON_FUNCTIONAL
    if "constraint" in lower:
        return RequirementType.CONSTRAINT
    return RequirementType.FUNCTIONAL


def _split_table_row(line: str) -> list[str]:
    stripped = line.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|") and not stripped.endswith("\\|"):
        stripped = stripped[:-1]
    return [cell.strip() for cell in re.split(r"(?<!\\)\|", stripped)]


class _DocumentScanner:
    """Single pass over the document lines."""

    def __init__(self, content: str):
        self.lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        self.headings: list[tuple[int, str]] = []
        self.results: list[ExtractedRequirement] = []
        self._seen: set[tuple[str, str]] = set()
        self._paragraph: list[str] = []
        self._list_item: list[str] | None = None
        self._table_headers: list[str] | None = None

    # Heading state
    @property
    def section(self) -> str:
        if not self.headings:
            return DEFAULT_SECTION
        return SECTION_SEPARATOR.join(text for _, text in self.headings)

    @property
    def in_requirement_section(self) -> bool:
        return bool(self.headings) and is_requirement_section(self.headings[-1][1])

    def _push_heading(self, level: int, text: str):
        while self.headings and self.headings[-1][0] >= level:
            self.headings.pop()
        text = clean_markdown(text)
        if text:
            self.headings.append((level, text))

    # Main loop
    def scan(self) -> list[ExtractedRequirement]:
        fence: str | None = None
        i = 0
        while i < len(self.lines):
            line = self.lines[i]
            next_line = self.lines[i + 1] if i + 1 < len(self.lines) else None
            i += 1

            if fence is not None:
                if line.strip().startswith(fence):
                    fence = None
                continue

            # Block quotes are read as their contents
            line = re.sub(r"^\s{0,3}(>\s?)+", "", line)
            stripped = line.strip()

            fence_match = FENCE_RE.match(line)
            if fence_match:
                self._flush_all()
                fence = fence_match.group(1)
                continue

            heading_match = ATX_HEADING_RE.match(line)
            if heading_match:
                self._flush_all()
                self._push_heading(len(heading_match.group(1)), heading_match.group(2) or "")
                continue

            if not stripped:
                self._flush_all()
                continue

            if self._table_headers is not None:
                if "|" in stripped:
                    self._table_row(_split_table_row(stripped))
                    continue
                self._table_headers = None

            if "|" in stripped and next_line is not None and TABLE_SEPARATOR_RE.match(next_line) and "-" in next_line:
                self._flush_all()
                self._table_headers = [clean_markdown(cell) for cell in _split_table_row(stripped)]
                i += 1  # skip the separator row
                continue

            if (
                self._list_item is None
                and next_line is not None
                and SETEXT_UNDERLINE_RE.match(next_line)
                and not LIST_ITEM_RE.match(line)
            ):
                text = " ".join(self._paragraph + [stripped])
                self._paragraph = []
                self._push_heading(1 if next_line.strip().startswith("=") else 2, text)
                i += 1  # skip the underline
                continue

            if THEMATIC_BREAK_RE.match(line):
                self._flush_all()
                continue

            item_match = LIST_ITEM_RE.match(line)
            if item_match:
                self._flush_paragraph()
                self._flush_list_item()
                self._list_item = [item_match.group(1).strip()]
                continue

            if self._list_item is not None:
                # Continuation (indented or lazy) of the current list item
                self._list_item.append(stripped)
            else:
                self._paragraph.append(stripped)

        self._flush_all()
        return self.results

    # Block handlers
    def _flush_all(self):
        self._flush_paragraph()
        self._flush_list_item()
        self._table_headers = None

    def _flush_list_item(self):
        if self._list_item is None:
            return
        raw = " ".join(part for part in self._list_item if part)
        self._list_item = None
        raw = CHECKBOX_RE.sub("", raw).strip()
        if not raw:
            return
        if self.in_requirement_section or looks_like_requirement(raw):
            self._emit(raw)

    def _flush_paragraph(self):
        if not self._paragraph:
            return
        text = " ".join(self._paragraph)
        self._paragraph = []
        for sentence in SENTENCE_SPLIT_RE.split(text):
            sentence = sentence.strip()
            if sentence and MODAL_RE.search(clean_markdown(sentence)):
                self._emit(sentence)

    def _table_row(self, cells: list[str]):
        headers = self._table_headers or []
        if not headers or not any(cells):
            return

        description = None
        priority = None
        req_type = None
        description_column = None
        for index, header in enumerate(headers):
            lower = header.lower()
            if re.fullmatch(r"(req(uirement)?\s*)?(id|#|no\.?)", lower):
                continue
            if description_column is None and any(
                keyword in lower for keyword in ("requirement", "description", "spec", "user story")
            ):
                description_column = index
            elif "priority" in lower and index < len(cells):
                priority = _table_priority(clean_markdown(cells[index]))
            elif ("type" in lower or "category" in lower) and index < len(cells):
                req_type = _table_type(clean_markdown(cells[index]))

        if description_column is not None and description_column < len(cells):
            description = clean_markdown(cells[description_column])
        else:
            for cell in cells:
                cell = clean_markdown(cell)
                if cell and not TABLE_ID_CELL_RE.match(cell):
                    description = cell
                    break

        if not description or len(description) < MIN_TABLE_DESCRIPTION_LENGTH:
            return

        section = self.section
        self._add(
            ExtractedRequirement(
                section=section,
                description=description,
                req_type=req_type or classify_type(section, description),
                priority=priority or classify_priority(description),
            )
        )

    def _emit(self, raw: str):
        text = clean_markdown(raw)
        text, marker = extract_marker(text)
        if not text:
            return
        section = self.section
        description = f"[{marker}] {text}" if marker else text
        self._add(
            ExtractedRequirement(
                section=section,
                description=description,
                req_type=classify_type(section, text),
                priority=classify_priority(raw, marker),
            )
        )

    def _add(self, requirement: ExtractedRequirement):
        key = (requirement.section, requirement.description)
        if key in self._seen:
            return
        self._seen.add(key)
        self.results.append(requirement)
