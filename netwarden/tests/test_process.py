"""
Unit tests for command execution and the session registry.
"""

import io
import shutil
import subprocess
import sys
import threading
from unittest.mock import MagicMock, patch

import pytest

from modules.process import (
    ProcessSession,
    SessionRegistry,
    elevated,
    kill_by_pattern,
    run_command,
    self_excluding,
)

from conftest import FakeSession


class TestRunCommand:
    """Tests for run_command()."""

    def test_success(self):
        completed = subprocess.CompletedProcess(["echo"], 0, stdout="hi\n", stderr="")
        with patch("modules.process.subprocess.run", return_value=completed) as run:
            assert run_command(["echo", "hi"], timeout=3) == ("hi\n", "", 0)
        assert run.call_args[1]["timeout"] == 3

    def test_timeout(self):
        with patch("modules.process.subprocess.run", side_effect=subprocess.TimeoutExpired("x", 1)):
            stdout, stderr, rc = run_command(["sleep", "9"], timeout=1)
        assert rc == -1
        assert "timed out" in stderr

    def test_missing_binary(self):
        with patch("modules.process.subprocess.run", side_effect=FileNotFoundError):
            assert run_command(["nmap"])[2] == -1

    def test_new_session_detaches_terminal(self):
        completed = subprocess.CompletedProcess(["su"], 1, stdout="", stderr="")
        with patch("modules.process.subprocess.run", return_value=completed) as run:
            run_command(["id"], new_session=True)
        assert run.call_args[1]["start_new_session"] is True
        assert run.call_args[1]["stdin"] is subprocess.DEVNULL

    def test_input_text_keeps_stdin_pipe(self):
        completed = subprocess.CompletedProcess(["su"], 0, stdout="", stderr="")
        with patch("modules.process.subprocess.run", return_value=completed) as run:
            run_command(["su"], input_text="id\n", new_session=True)
        assert run.call_args[1]["stdin"] is None
        assert run.call_args[1]["input"] == "id\n"

    def test_elevated(self):
        assert elevated("id") == ["su", "-c", "id"]


class TestKillByPattern:
    """Tests for name-based kill."""

    def test_match(self):
        with patch("modules.process.run_command", return_value=("", "", 0)) as run:
            assert kill_by_pattern("helper block [^ ]+ 10\\.0\\.0\\.5 ") is True
        cmd = run.call_args[0][0]
        assert cmd[:2] == ["su", "-c"]
        assert cmd[2] == "pkill -f '[h]elper block [^ ]+ 10\\.0\\.0\\.5 '"

    def test_no_match(self):
        with patch("modules.process.run_command", return_value=("", "", 1)):
            assert kill_by_pattern("nothing") is False

    def test_self_excluding(self):
        assert self_excluding("harpy_root_helper block") == "[h]arpy_root_helper block"
        assert self_excluding("[h]elper") == "[h]elper"
        assert self_excluding("") == ""

    @pytest.mark.skipif(
        not sys.platform.startswith("linux") or shutil.which("pkill") is None,
        reason="needs procps pkill",
    )
    def test_kills_real_process_and_reports_success(self):
        def fake_helper(ip):
            return subprocess.Popen([
                sys.executable, "-c", "import time; time.sleep(60)",
                "harpy_root_helper", "block", "lo", ip, "02:00:00:00:00:01",
            ])

        target = fake_helper("10.213.77.5")
        bystander = fake_helper("10.213.77.50")
        try:
            with patch("modules.process.ELEVATION_SHELL", "sh"):
                killed = kill_by_pattern("harpy_root_helper block [^ ]+ 10\\.213\\.77\\.5 ")

            assert killed is True
            assert target.wait(timeout=5) is not None
            assert bystander.poll() is None
        finally:
            for process in (target, bystander):
                if process.poll() is None:
                    process.kill()
                    process.wait(timeout=5)


class TestProcessSession:
    """Tests for ProcessSession over a mocked Popen."""

    def make_process(self, alive=True):
        process = MagicMock()
        process.pid = 4321
        process.poll.return_value = None if alive else 0
        process.stdout = None
        process.stderr = None
        process.stdin = MagicMock(closed=False)
        return process

    def test_start_keeps_stdin_open(self):
        process = self.make_process()
        with patch("modules.process.subprocess.Popen", return_value=process) as popen:
            session = ProcessSession.start("10.0.0.5", ["su", "-c", "x"], keep_stdin_open=True)
        assert popen.call_args[1]["stdin"] == subprocess.PIPE
        assert session.pid == 4321
        assert session.is_alive()

    def test_terminate_kills_tree(self):
        process = self.make_process()
        session = ProcessSession("k", ["x"], process)
        child = MagicMock()
        with patch("modules.process.psutil.Process") as ps:
            ps.return_value.children.return_value = [child]
            session.terminate(timeout=1)
        child.kill.assert_called_once()
        process.kill.assert_called_once()
        process.wait.assert_called_once_with(timeout=1)
        process.stdin.close.assert_called_once()

    def test_terminate_dead_process(self):
        process = self.make_process(alive=False)
        session = ProcessSession("k", ["x"], process)
        session.terminate()
        process.kill.assert_not_called()

    def test_tail_records_markers(self):
        process = self.make_process()
        process.stdout = io.StringIO("DEBUG: starting\nBLOCK_STARTED\n")
        process.stderr = io.StringIO("warning line\n")
        session = ProcessSession("k", ["x"], process, label="block", markers=("BLOCK_STARTED",))
        session._start_tails()
        session.join_tails(timeout=2)
        assert session.markers_seen == {"BLOCK_STARTED"}


class TestSessionRegistry:
    """Tests for single-session-per-key bookkeeping."""

    def test_get_or_start_is_idempotent(self):
        registry = SessionRegistry("test")
        starter = MagicMock(side_effect=lambda: FakeSession("a", ["x"]))

        first, created_first = registry.get_or_start("a", starter)
        second, created_second = registry.get_or_start("a", starter)

        assert created_first is True
        assert created_second is False
        assert first is second
        assert starter.call_count == 1
        assert len(registry) == 1

    def test_get_or_start_replaces_dead_session(self):
        registry = SessionRegistry("test")
        dead, _ = registry.get_or_start("a", lambda: FakeSession("a", ["x"]))
        dead.alive = False

        fresh, created = registry.get_or_start("a", lambda: FakeSession("a", ["y"]))
        assert created is True
        assert fresh is not dead
        assert dead.terminated

    def test_replace_terminates_previous(self):
        registry = SessionRegistry("test")
        old = registry.replace("d", lambda: FakeSession("d", ["one"]))
        new = registry.replace("d", lambda: FakeSession("d", ["two"]))

        assert old.terminated
        assert registry.get("d") is new
        assert len(registry) == 1

    def test_pop_and_active_keys(self):
        registry = SessionRegistry("test")
        registry.replace("a", lambda: FakeSession("a", ["x"]))
        b = registry.replace("b", lambda: FakeSession("b", ["x"]))
        b.alive = False

        assert registry.active_keys() == ["a"]
        assert registry.is_active("a") and not registry.is_active("b")
        assert "b" in registry
        assert registry.pop("b") is b
        assert registry.pop("b") is None

    def test_remove_if_same_session(self):
        registry = SessionRegistry("test")
        session = registry.replace("d", lambda: FakeSession("d", ["x"]))
        assert registry.remove_if("d", session) is True
        assert "d" not in registry

    def test_remove_if_keeps_newer_session(self):
        registry = SessionRegistry("test")
        stale = registry.replace("d", lambda: FakeSession("d", ["one"]))
        fresh = registry.replace("d", lambda: FakeSession("d", ["two"]))

        assert registry.remove_if("d", stale) is False
        assert registry.get("d") is fresh

    def test_terminate_all(self):
        registry = SessionRegistry("test")
        sessions = [registry.replace(k, lambda k=k: FakeSession(k, ["x"])) for k in "abc"]
        assert registry.terminate_all() == 3
        assert all(s.terminated for s in sessions)
        assert len(registry) == 0

    def test_concurrent_get_or_start_single_session(self):
        registry = SessionRegistry("test")
        created = []

        def starter():
            session = FakeSession("ip", ["x"])
            created.append(session)
            return session

        threads = [threading.Thread(target=registry.get_or_start, args=("ip", starter)) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(created) == 1
