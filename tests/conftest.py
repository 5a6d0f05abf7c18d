import ast
import sys
import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, Set

import pytest

_ROOT_DIR = Path(__file__).absolute().parent.parent
_PACKAGE_DIR = (_ROOT_DIR / "hostkit").absolute()

_HIT: Dict[Path, Set[int]] = defaultdict(set)
_STATEMENTS: Dict[Path, Set[int]] = {}
_SAVED_TRACERS = (None, None)
_TRACING = False


def _statement_lines(path: Path) -> Set[int]:
    source = path.read_text(encoding="utf-8")
    try:
        tree = ast.parse(source, filename=str(path))
    except SyntaxError:
        return set()
    text_lines = source.splitlines()
    lines: Set[int] = set()
    for node in ast.walk(tree):
        start = getattr(node, "lineno", None)
        if start is None:
            continue
        end = getattr(node, "end_lineno", None) or start
        for lineno in range(start, end + 1):
            if lineno > len(text_lines):
                continue
            stripped = text_lines[lineno - 1].strip()
            if stripped and not stripped.startswith("#"):
                lines.add(lineno)
    return lines


for _path in _PACKAGE_DIR.rglob("*.py"):
    if _path.is_file():
        _STATEMENTS[_path.absolute()] = _statement_lines(_path)


def _tracer(frame, event, arg):
    if event == "line":
        path = Path(frame.f_code.co_filename).absolute()
        if path in _STATEMENTS:
            _HIT[path].add(frame.f_lineno)
    return _tracer


@pytest.fixture(autouse=True)
def _trace_log_in_tmp(tmp_path, monkeypatch):
    from hostkit import executil

    monkeypatch.setattr(executil, "LOG_DIRS", [str(tmp_path / "logs")])
    monkeypatch.setattr(executil, "LOG_PATH", None)


def pytest_sessionstart(session):
    global _SAVED_TRACERS, _TRACING
    if _TRACING:
        return
    _TRACING = True
    _HIT.clear()
    _SAVED_TRACERS = (sys.gettrace(), threading.gettrace())
    sys.settrace(_tracer)
    threading.settrace(_tracer)


def pytest_sessionfinish(session, exitstatus):
    global _TRACING
    if not _TRACING:
        return
    _TRACING = False
    previous, previous_thread = _SAVED_TRACERS
    sys.settrace(previous)
    threading.settrace(previous_thread)
    _report(session)


def _report(session) -> None:
    terminal = session.config.pluginmanager.get_plugin("terminalreporter")
    write_line = terminal.write_line if terminal else print

    header = f"{'Name':<50} {'Stmts':>6} {'Miss':>6} {'Cover':>7}"
    total = covered_total = 0
    rows = []
    for path in sorted(_STATEMENTS):
        statements = _STATEMENTS[path]
        if not statements:
            continue
        missing = sorted(statements - _HIT.get(path, set()))
        covered = len(statements) - len(missing)
        total += len(statements)
        covered_total += covered
        rows.append((path.relative_to(_ROOT_DIR), len(statements), missing, covered / len(statements) * 100.0))
    if not rows:
        return

    write_line("")
    write_line("Coverage summary for 'hostkit':")
    write_line(header)
    write_line("-" * len(header))
    for name, count, missing, pct in rows:
        write_line(f"{str(name):<50} {count:>6} {len(missing):>6} {pct:>6.1f}%")
        if missing:
            more = "..." if len(missing) > 10 else ""
            write_line(f"    Missing: {', '.join(map(str, missing[:10]))}{more}")
    write_line("-" * len(header))
    write_line(f"{'TOTAL':<50} {total:>6} {total - covered_total:>6} {covered_total / total * 100.0:>6.1f}%")
