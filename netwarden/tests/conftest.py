"""
Shared fixtures: fake process sessions, canned privilege answers and
command runners.  Nothing here spawns a real process.
"""

import os
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Keep the library vendor tier (and its possible network download) out of tests
os.environ.setdefault("NETWARDEN_MAC_VENDOR_LOOKUP", "0")

from modules.errors import success  # noqa: E402
from modules.helper import RootHelper  # noqa: E402
from modules.interfaces import RouteInfo  # noqa: E402


class FakeSession:
    """Stands in for ProcessSession."""

    _next_pid = 4000

    def __init__(self, key, argv, label="session", markers=(), keep_stdin_open=False):
        FakeSession._next_pid += 1
        self.key = key
        self.argv = list(argv)
        self.label = label
        self.markers = tuple(markers)
        self.keep_stdin_open = keep_stdin_open
        self.pid = FakeSession._next_pid
        self.alive = True
        self.terminated = False
        self.returncode: Optional[int] = None

    @property
    def command(self) -> str:
        return " ".join(self.argv)

    def is_alive(self) -> bool:
        return self.alive

    def terminate(self, timeout: float = 0) -> None:
        self.terminated = True
        self.alive = False
        self.returncode = -9


class SessionFactory:
    """Callable that records every FakeSession it creates."""

    def __init__(self, start_alive: bool = True):
        self.created: List[FakeSession] = []
        self.start_alive = start_alive

    def __call__(self, key, argv, **kwargs) -> FakeSession:
        session = FakeSession(key, argv, **kwargs)
        if not self.start_alive:
            session.alive = False
            session.returncode = 1
        self.created.append(session)
        return session


class CannedRunner:
    """Command runner answering from a prefix -> (stdout, stderr, rc) table."""

    def __init__(self, responses: Optional[Dict[str, tuple]] = None):
        self.responses = dict(responses or {})
        self.calls: List[List[str]] = []

    def __call__(self, cmd, timeout=5, input_text=None):
        self.calls.append(list(cmd))
        line = " ".join(cmd)
        for prefix, response in self.responses.items():
            if prefix in line:
                return response
        return "", "not mocked", 1

    def ran(self, fragment: str) -> bool:
        return any(fragment in " ".join(c) for c in self.calls)


@pytest.fixture
def session_factory():
    return SessionFactory()


@pytest.fixture
def rooted():
    privilege = MagicMock()
    privilege.is_privileged.return_value = success(True)
    return privilege


@pytest.fixture
def not_rooted():
    privilege = MagicMock()
    privilege.is_privileged.return_value = success(False)
    return privilege


@pytest.fixture
def helper():
    return RootHelper("/opt/netwarden/harpy_root_helper")


@pytest.fixture
def route():
    return RouteInfo(
        subnet_prefix="192.168.1",
        interface="wlan0",
        local_ip="192.168.1.50",
        gateway_ip="192.168.1.1",
    )


@pytest.fixture
def killer():
    return MagicMock(return_value=True)
