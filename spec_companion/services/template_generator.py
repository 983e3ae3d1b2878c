"""Deterministic test skeletons for requirements.

Pure functions: the same requirement and symbol list always produce the same
code, and every interpolated string is escaped so the output parses.
"""

import re

from spec_companion.models import Framework, Requirement
from spec_companion.services.codebase_scanner import CodeSymbol, find_relevant_symbols

MAX_IMPORT_HINTS = 5
TEST_NAME_WORDS = 8

MARKER_PREFIX_RE = re.compile(r"^\[[A-Z0-9-]+\]\s*")

ASSERTION_HINTS = (
    (("authenti", "login", "log in", "sign in"), "Verify authentication flow works correctly"),
    (("creat", "add", "register"), "Verify resource is created successfully"),
    (("delet", "remov"), "Verify resource is deleted successfully"),
    (("updat", "edit", "modif"), "Verify resource is updated correctly"),
    (("list", "display", "show", "view"), "Verify data is displayed correctly"),
    (("validat", "check", "reject"), "Verify validation rules are enforced"),
    (("export", "download"), "Verify exported output matches the source data"),
)


def generate(requirement: Requirement, framework: Framework, symbols: list[CodeSymbol] | None = None) -> str:
    """Render a test skeleton for ``requirement`` in the given framework."""
    relevant = find_relevant_symbols(symbols or [], requirement.description, limit=MAX_IMPORT_HINTS)
    if framework == Framework.PYTEST:
        return generate_pytest(requirement, relevant)
    return generate_jest(requirement, relevant)


def generate_jest(requirement: Requirement, relevant: list[CodeSymbol]) -> str:
    lines = _header(requirement, "//")
    if relevant:
        for symbol in relevant:
            module = "./" + re.sub(r"\.(jsx?|tsx?)$", "", symbol.file_path)
            lines.append(f"// import {{ {symbol.name} }} from '{_single_line(module)}';")
        lines.append("")

    lines.append(f"describe('{_escape_js(_innermost(requirement.section))}', () => {{")
    lines.append(f"  it('should {_escape_js(make_test_description(requirement.description))}', () => {{")
    hint = assertion_hint(requirement.description)
    if hint:
        lines.append(f"    // TODO: {hint}")
    lines.extend(
        [
            "    // Arrange",
            "",
            "    // Act",
            "",
            "    // Assert",
            "    expect(true).toBe(true); // TODO: Replace with actual assertion",
            "  });",
            "});",
            "",
        ]
    )
    return "\n".join(lines)


def generate_pytest(requirement: Requirement, relevant: list[CodeSymbol]) -> str:
    lines = _header(requirement, "#")
    if relevant:
        for symbol in relevant:
            module = re.sub(r"\.py$", "", symbol.file_path).replace("/", ".")
            lines.append(f"# from {_single_line(module)} import {symbol.name}")
        lines.append("")

    lines.append(f"class Test{make_class_name(requirement.section)}:")
    lines.append(f"    def {make_python_test_name(requirement.description)}(self):")
    lines.append(f'        """Test: {_escape_py(requirement.description)}"""')
    hint = assertion_hint(requirement.description)
    if hint:
        lines.append(f"        # TODO: {hint}")
    lines.extend(
        [
            "        # Arrange",
            "",
            "        # Act",
            "",
            "        # Assert",
            "        assert True  # TODO: Replace with actual assertion",
            "",
        ]
    )
    return "\n".join(lines)


def make_test_description(description: str) -> str:
    """Turn a requirement sentence into the tail of an ``it('should ...')`` title."""
    lower = _single_line(MARKER_PREFIX_RE.sub("", description)).lower().rstrip(".")
    for prefix in ("the system shall ", "the system must ", "the system should ", "the application shall ", "the application must "):
        if lower.startswith(prefix):
            return lower[len(prefix):]
    if lower.startswith(("as a ", "as an ")):
        for phrase in ("i want to ", "i should be able to ", "i can "):
            index = lower.find(phrase)
            if index >= 0:
                return "allow " + lower[index + len(phrase):]
    return lower


def make_python_test_name(description: str) -> str:
    words = re.findall(r"[a-z0-9]+", MARKER_PREFIX_RE.sub("", description).lower())
    name = "_".join(words[:TEST_NAME_WORDS])
    return f"test_{name}" if name else "test_requirement"


def make_class_name(section: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", _innermost(section))
    name = "".join(word[:1].upper() + word[1:] for word in words)
    if not name:
        return "Requirement"
    if name[0].isdigit():
        return f"Requirement{name}"
    return name


def assertion_hint(description: str) -> str | None:
    lower = description.lower()
    for needles, hint in ASSERTION_HINTS:
        if any(needle in lower for needle in needles):
            return hint
    return None


def _header(requirement: Requirement, comment: str) -> list[str]:
    return [
        f"{comment} Requirement ID: {requirement.id}",
        f"{comment} Requirement: {_single_line(requirement.description)}",
        f"{comment} Section: {_single_line(requirement.section)}",
        f"{comment} Type: {requirement.req_type} | Priority: {requirement.priority}",
        "",
    ]


def _innermost(section: str) -> str:
    return section.split(" > ")[-1]


def _single_line(text: str) -> str:
    return " ".join(text.split())


def _escape_js(text: str) -> str:
    return _single_line(text).replace("\\", "\\\\").replace("'", "\\'")


def _escape_py(text: str) -> str:
    return _single_line(text).replace("\\", "\\\\").replace('"', '\\"')
