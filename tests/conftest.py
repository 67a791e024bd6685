import ast
import os
import sys
import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, Set

import pytest

from autounlock import age, executil, zfs

_ROOT_DIR = Path(__file__).absolute().parent.parent
_PACKAGE_DIR = (_ROOT_DIR / "autounlock").absolute()

_EXECUTED: Dict[Path, Set[int]] = defaultdict(set)
_STATEMENTS: Dict[Path, Set[int]] = {}
_PREVIOUS = None


def _statement_lines(path: Path) -> Set[int]:
    source = path.read_text(encoding="utf-8")
    try:
        tree = ast.parse(source, filename=str(path))
    except SyntaxError:
        return set()
    return {node.lineno for node in ast.walk(tree) if isinstance(node, ast.stmt)}


for _file in _PACKAGE_DIR.rglob("*.py"):
    _STATEMENTS[_file.absolute()] = _statement_lines(_file)


def _trace(frame, event, arg):
    if event == "line":
        filename = Path(frame.f_code.co_filename).absolute()
        if filename in _STATEMENTS:
            _EXECUTED[filename].add(frame.f_lineno)
    return _trace


def pytest_sessionstart(session):
    global _PREVIOUS
    _PREVIOUS = sys.gettrace()
    sys.settrace(_trace)
    threading.settrace(_trace)


def pytest_sessionfinish(session, exitstatus):
    sys.settrace(_PREVIOUS)
    threading.settrace(None)
    terminal = session.config.pluginmanager.get_plugin("terminalreporter")
    write_line = terminal.write_line if terminal else print
    total = covered = 0
    write_line("")
    write_line("Coverage summary for 'autounlock':")
    for path in sorted(_STATEMENTS):
        stmts = _STATEMENTS[path]
        if not stmts:
            continue
        hit = len(_EXECUTED.get(path, set()) & stmts)
        total += len(stmts)
        covered += hit
        write_line(f"{str(path.relative_to(_ROOT_DIR)):<40} {len(stmts):>6} {hit / len(stmts) * 100:>6.1f}%")
    if total:
        write_line(f"{'TOTAL':<40} {total:>6} {covered / total * 100:>6.1f}%")


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    log_dir = tmp_path / "logs"
    monkeypatch.setattr(executil, "LOG_DIRS", [str(log_dir)])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    monkeypatch.setattr(executil, "LOG_LEVEL", "TRACE")
    return log_dir


@pytest.fixture
def key_dir(tmp_path, monkeypatch):
    path = tmp_path / "run"
    path.mkdir()
    monkeypatch.setenv("AUTOUNLOCK_KEY_DIR", str(path))
    return path


class DummyResult:
    def __init__(self, rc: int = 0, out: str = "", err: str = "") -> None:
        self.rc = rc
        self.out = out
        self.err = err


class FakeHost:
    """In-memory stand-in for zpool, zfs and age.

    ``wrapped`` maps an encrypted key file to ``(plaintext, identities)``:
    decrypting it succeeds only with one of the listed identities.
    """

    def __init__(self):
        self.imported: Set[str] = set()
        self.exportable: Set[str] = set()
        self.loaded: Set[str] = set()
        self.wrapped: Dict[str, tuple] = {}
        self.pool_keys: Dict[str, bytes] = {}
        self.keystatus_override: Dict[str, DummyResult] = {}
        self.mount_rc = 0
        self.mount_all_rc = 0
        self.list_rc = 0
        self.load_noop: Set[str] = set()
        self.calls: list = []
        self.decrypts: list = []
        self.loads: list = []

    def add_pool(self, name, key_file, identities, imported=True, unlocked=False):
        plaintext = f"key-{name}".encode()
        self.pool_keys[name] = plaintext
        self.wrapped[str(key_file)] = (plaintext, {str(i) for i in identities})
        if imported:
            self.imported.add(name)
        else:
            self.exportable.add(name)
        if unlocked:
            self.loaded.add(name)

    def __call__(self, cmd, check=False, timeout=None, env=None, stdout=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        if cmd[:2] == ["zpool", "list"]:
            out = "".join(f"{name}\n" for name in sorted(self.imported))
            return DummyResult(self.list_rc, out if self.list_rc == 0 else "", "")
        if cmd[:2] == ["zpool", "import"]:
            name = cmd[-1]
            if name in self.exportable:
                self.imported.add(name)
                return DummyResult(0)
            return DummyResult(1, err=f"cannot import '{name}': no such pool available")
        if cmd[:3] == ["zfs", "mount", "-a"]:
            return DummyResult(self.mount_all_rc, err="" if self.mount_all_rc == 0 else "mount failed")
        if cmd[:2] == ["zfs", "mount"]:
            return DummyResult(self.mount_rc, err="" if self.mount_rc == 0 else "filesystem already mounted")
        if cmd[:2] == ["zfs", "get"]:
            name = cmd[-1]
            if name in self.keystatus_override:
                return self.keystatus_override[name]
            return DummyResult(0, "available\n" if name in self.loaded else "unavailable\n")
        if cmd[:2] == ["zfs", "load-key"]:
            name = cmd[-1]
            path = cmd[3][len("file://"):]
            with open(path, "rb") as fh:
                data = fh.read()
            self.loads.append((name, path, oct(os.stat(path).st_mode & 0o777)))
            if data != self.pool_keys.get(name):
                return DummyResult(255, err="Key load error: Incorrect key provided")
            if name not in self.load_noop:
                self.loaded.add(name)
            return DummyResult(0)
        if cmd[:2] == ["age", "--decrypt"]:
            identity, key_file = cmd[3], cmd[4]
            self.decrypts.append((key_file, identity))
            plaintext, allowed = self.wrapped.get(key_file, (None, set()))
            if plaintext is None or identity not in allowed:
                return DummyResult(1, err="age: error: no identity matched any of the recipients")
            os.write(stdout.fileno(), plaintext)
            return DummyResult(0)
        raise AssertionError(f"unexpected command: {cmd}")


@pytest.fixture
def host(monkeypatch, key_dir):
    fake = FakeHost()
    monkeypatch.setattr(zfs, "run", fake)
    monkeypatch.setattr(age, "run", fake)
    return fake


@pytest.fixture
def identity_files(tmp_path):
    ids = []
    for name in ("id1", "id2", "id3"):
        path = tmp_path / "ids" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"AGE-SECRET-KEY-{name.upper()}\n", encoding="utf-8")
        ids.append(str(path))
    return ids


@pytest.fixture
def make_pool(tmp_path):
    from autounlock.model import PoolSpec

    def _make(name, create_key=True, create_dir=True):
        keystore = tmp_path / "mnt" / name / "keystore"
        if create_dir:
            keystore.mkdir(parents=True, exist_ok=True)
        key_file = keystore / f"{name}.age"
        if create_key and create_dir:
            key_file.write_bytes(b"age-encryption.org/v1\n")
        return PoolSpec(name=name, encrypted_key_file=str(key_file))

    return _make
