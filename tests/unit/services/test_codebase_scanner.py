import pytest

from spec_companion.errors import ValidationError
from spec_companion.services.codebase_scanner import (
    CodeSymbol,
    extract_symbols,
    find_relevant_symbols,
    scan_codebase,
)


@pytest.mark.unit
def test_scan_codebase_collects_symbols_and_skips_ignored_dirs(tmp_path):
    (tmp_path / "app").mkdir()
    (tmp_path / "app" / "auth.py").write_text(
        "class AuthService:\n    def login(self):\n        pass\n\n\ndef hash_password(pw):\n    return pw\n"
    )
    (tmp_path / "web").mkdir()
    (tmp_path / "web" / "api.ts").write_text("export async function fetchUser(id) {}\nexport const saveUser = (u) => u;\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "lib.js").write_text("function hidden() {}\n")
    (tmp_path / "vendor").mkdir()
    (tmp_path / "vendor" / "skip.py").write_text("def vendored():\n    pass\n")

    symbols = scan_codebase(str(tmp_path), exclusions=["vendor"])

    assert CodeSymbol(name="AuthService", kind="class", file_path="app/auth.py") in symbols
    assert CodeSymbol(name="login", kind="method", file_path="app/auth.py") in symbols
    assert CodeSymbol(name="hash_password", kind="function", file_path="app/auth.py") in symbols
    assert CodeSymbol(name="fetchUser", kind="function", file_path="web/api.ts") in symbols
    assert CodeSymbol(name="saveUser", kind="function", file_path="web/api.ts") in symbols
    names = {s.name for s in symbols}
    assert "hidden" not in names
    assert "vendored" not in names


@pytest.mark.unit
def test_scan_codebase_skips_large_files(tmp_path, monkeypatch):
    import spec_companion.services.codebase_scanner as scanner

    monkeypatch.setattr(scanner, "MAX_FILE_SIZE", 10)
    (tmp_path / "big.py").write_text("def too_big():\n    pass\n")

    assert scan_codebase(str(tmp_path)) == []


@pytest.mark.unit
def test_scan_codebase_rejects_missing_directory(tmp_path):
    with pytest.raises(ValidationError):
        scan_codebase(str(tmp_path / "missing"))


@pytest.mark.unit
@pytest.mark.parametrize(
    "language,content,expected",
    [
        ("rs", "pub fn parse_spec() {}\nstruct Parser {}\n", [("parse_spec", "function"), ("Parser", "class")]),
        ("go", "func (s *Server) Start() error {\ntype Config struct {\n", [("Start", "function"), ("Config", "class")]),
        ("java", "public class UserService {\n    public User findUser(String id) {\n", [("UserService", "class"), ("findUser", "method")]),
        ("rb", "class Account\n  def self.open?\n", [("Account", "class"), ("open?", "method")]),
        ("js", "if (x) {\nfunction render() {}\n", [("render", "function")]),
    ],
)
def test_extract_symbols_per_language(language, content, expected):
    symbols = extract_symbols(content, "file", language)
    assert [(s.name, s.kind) for s in symbols] == expected


@pytest.mark.unit
def test_find_relevant_symbols_ranks_by_shared_words():
    symbols = [
        CodeSymbol(name="render_chart", kind="function", file_path="a.py"),
        CodeSymbol(name="resetUserPassword", kind="function", file_path="b.js"),
        CodeSymbol(name="UserService", kind="class", file_path="c.py"),
    ]

    relevant = find_relevant_symbols(symbols, "A user can reset the password", limit=5)

    assert [s.name for s in relevant] == ["resetUserPassword", "UserService"]


@pytest.mark.unit
def test_find_relevant_symbols_respects_limit():
    symbols = [CodeSymbol(name=f"user_{i}", kind="function", file_path="a.py") for i in range(10)]
    assert len(find_relevant_symbols(symbols, "user", limit=3)) == 3
