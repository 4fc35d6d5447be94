# tests/architecture/test_architecture.py
# Architecture tests enforcing layering rules.
# - routers (controllers) must not contain SQL or import DB drivers
# - only the db/models/repositories layers talk to SQLAlchemy
# - pure helpers (codec, ids, validator) stay free of I/O layers

import ast
import pathlib
import re
import pytest  # type: ignore[import-not-found]

REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
PACKAGE = REPO_ROOT / "geostory"

DB_LIBS = {"sqlalchemy", "aiosqlite", "sqlite3"}


def _iter_py_files(root: pathlib.Path):
    for path in root.rglob("*.py"):
        parts = {"venv", ".venv", "node_modules", "__pycache__"}
        if any(part in parts for part in path.parts):
            continue
        yield path


def _collect_imports(py_path: pathlib.Path) -> set[str]:
    """Return set of imported module names (full dotted paths) from file."""
    tree = ast.parse(py_path.read_text(encoding="utf-8"), filename=str(py_path))
    imports: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.add(alias.name)
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                imports.add(node.module)
    return imports


def _top_level(imports: set[str]) -> set[str]:
    return {name.split(".")[0] for name in imports}


def _file_contains_sql(py_path: pathlib.Path) -> bool:
    """Heuristic to detect raw SQL or DB driver usage in controllers."""
    text = py_path.read_text(encoding="utf-8")
    # Raw SQL statements (upper-case, as written in this codebase)
    sql_patterns = [
        r"\bSELECT\b[\s\S]+?\bFROM\b",
        r"\bINSERT\s+INTO\b",
        r"\bDELETE\s+FROM\b",
        r"\bUPDATE\s+\w+\s+SET\b",
        r"\bPRAGMA\b",
    ]
    if any(re.search(p, text) for p in sql_patterns):
        return True
    return bool(_top_level(_collect_imports(py_path)) & DB_LIBS)


# ---------- Tests ----------

@pytest.mark.architecture
def test_routers_do_not_contain_sql():
    offenders = [f for f in _iter_py_files(PACKAGE / "routers") if _file_contains_sql(f)]
    assert not offenders, "Routers must not contain SQL; offending files:\n" + "\n".join(map(str, offenders))


@pytest.mark.architecture
def test_only_storage_layers_import_db_libraries():
    allowed = {PACKAGE / "db", PACKAGE / "models", PACKAGE / "repositories"}
    offenders = []
    for f in _iter_py_files(PACKAGE):
        if any(parent in allowed for parent in f.parents):
            continue
        if _top_level(_collect_imports(f)) & DB_LIBS:
            offenders.append(f)
    assert not offenders, "DB libraries outside storage layers:\n" + "\n".join(map(str, offenders))


@pytest.mark.architecture
@pytest.mark.parametrize("module", ["utils/codec.py", "utils/ids.py", "services/validator.py"])
def test_pure_helpers_do_not_reach_io_layers(module):
    imports = _collect_imports(PACKAGE / module)
    forbidden = ("geostory.db", "geostory.repositories", "geostory.routers", "fastapi")
    bad = sorted(i for i in imports if i.startswith(forbidden))
    assert not bad, f"{module} must stay pure, imports {bad}"
