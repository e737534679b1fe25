"""Fixtures for integration tests using real child processes."""

import os
import socket
import stat
import sys
import time
from collections.abc import Generator
from pathlib import Path
from typing import Protocol

import pytest

FAKE_NODE = """\
import argparse
import os
import signal
import socket
import subprocess
import sys
import time

parser = argparse.ArgumentParser()
parser.add_argument("--fork-url")
parser.add_argument("--fork-block-number")
parser.add_argument("--port", type=int)
args = parser.parse_args()

if "FAKE_NODE_EXIT" in os.environ:
    sys.exit(int(os.environ["FAKE_NODE_EXIT"]))
if "FAKE_NODE_IGNORE_TERM" in os.environ:
    signal.signal(signal.SIGTERM, signal.SIG_IGN)

child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(600)"])
pid_file = os.environ.get("FAKE_NODE_PID_FILE")
if pid_file:
    with open(pid_file + ".tmp", "w") as f:
        f.write(f"{os.getpid()} {child.pid}")
    os.replace(pid_file + ".tmp", pid_file)

time.sleep(float(os.environ.get("FAKE_NODE_DELAY", "0")))
server = socket.create_server(("127.0.0.1", args.port))
print(f"Listening on 127.0.0.1:{args.port}", flush=True)
while True:
    conn, _ = server.accept()
    conn.close()
"""

FAKE_TESTS = """\
import json
import os
import subprocess
import sys
import time

child_pid_file = os.environ.get("FAKE_TESTS_CHILD_PID_FILE")
if child_pid_file:
    child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(600)"])
    with open(child_pid_file, "w") as f:
        f.write(str(child.pid))

record = os.environ.get("FAKE_TESTS_RECORD")
if record:
    with open(record, "w") as f:
        json.dump({"argv": sys.argv[1:], "env": dict(os.environ)}, f)

time.sleep(float(os.environ.get("FAKE_TESTS_SLEEP", "0")))
sys.exit(int(os.environ.get("FAKE_TESTS_EXIT_CODE", "0")))
"""


class PidsFn(Protocol):
    """Protocol for reading the fake node's pids."""

    def __call__(self, timeout: float = 5.0) -> tuple[int, int]:
        """Return the node pid and the pid of its child."""


class GoneFn(Protocol):
    """Protocol for waiting on process exit."""

    def __call__(self, pid: int, timeout: float = 5.0) -> bool:
        """Return True once the process no longer runs."""


def _write_script(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


def _is_running(pid: int) -> bool:
    """Zombies count as gone, only live processes are running."""
    try:
        stat_line = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return False
    return stat_line.rsplit(")", 1)[1].split()[0] != "Z"


@pytest.fixture
def free_port() -> int:
    """Pick a port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def fake_node(tmp_path: Path) -> Path:
    """Executable standing in for anvil: listens on --port, spawns a child."""
    return _write_script(tmp_path / "fake-anvil", FAKE_NODE)


@pytest.fixture
def fake_tests(tmp_path: Path) -> Path:
    """Script standing in for cargo test: records argv and env, then exits."""
    return _write_script(tmp_path / "fake-tests", FAKE_TESTS)


@pytest.fixture
def prebuilt_binary(tmp_path: Path) -> Path:
    """A file standing in for the built node binary."""
    binary = tmp_path / "madara"
    binary.write_text("")
    return binary


@pytest.fixture
def pid_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Make the fake node report its pids to a file."""
    path = tmp_path / "node.pids"
    monkeypatch.setenv("FAKE_NODE_PID_FILE", str(path))
    return path


@pytest.fixture
def node_pids(pid_file: Path) -> PidsFn:
    """Return a function reading the fake node's pids."""

    def _read(timeout: float = 5.0) -> tuple[int, int]:
        deadline = time.monotonic() + timeout
        while not pid_file.exists():
            if time.monotonic() >= deadline:
                raise TimeoutError(f"{pid_file} was never written")
            time.sleep(0.05)
        node, child = pid_file.read_text().split()
        return int(node), int(child)

    return _read


@pytest.fixture
def process_gone() -> GoneFn:
    """Return a function waiting for a process to exit."""

    def _gone(pid: int, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while _is_running(pid):
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)
        return True

    return _gone


@pytest.fixture(autouse=True)
def _reap_stragglers(
    pid_file: Path, process_gone: GoneFn
) -> Generator[None, None, None]:
    """Kill anything a failing test left behind."""
    yield
    if not pid_file.exists():
        return
    for pid in map(int, pid_file.read_text().split()):
        if not process_gone(pid, timeout=0):
            try:
                os.kill(pid, 9)
            except ProcessLookupError:
                pass


@pytest.fixture
def occupied_port(free_port: int) -> Generator[int, None, None]:
    """A port some other process already listens on."""
    with socket.create_server(("127.0.0.1", free_port)) as server:
        server.listen()
        yield free_port
