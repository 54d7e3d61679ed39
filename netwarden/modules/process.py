"""
Process Module

Bounded command execution, elevation wrapping, and tracked long-running
child processes.

Architecture:
    - run_command():  Short-lived command with a hard timeout.  Never raises
      for the usual process failures; returns (stdout, stderr, returncode)
      with returncode -1 when the command could not run to completion.
    - ProcessSession:  One long-running child (usually an elevation shell
      wrapping the helper binary).  Owns two daemon threads that tail
      stdout/stderr until EOF, so they exit on their own when the process
      does.
    - SessionRegistry:  Thread-safe map of key -> ProcessSession that
      enforces a single live session per key.
"""

import logging
import shlex
import subprocess
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import psutil

from config import ELEVATION_SHELL, KILL_TIMEOUT

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Short-lived commands
# ---------------------------------------------------------------------------

def run_command(
    cmd: List[str],
    timeout: float = 5,
    input_text: Optional[str] = None,
    new_session: bool = False,
) -> Tuple[str, str, int]:
    """
    Execute a command and return its output.

    ``subprocess.run`` kills the child when the timeout expires, so a hung
    command can never hold the caller for longer than ``timeout``.

    Args:
        cmd: Command and arguments
        timeout: Command timeout in seconds
        input_text: Optional text written to the command's stdin
        new_session: Run without a controlling terminal, so commands such
            as ``su`` cannot prompt on /dev/tty

    Returns:
        Tuple of (stdout, stderr, return_code)
    """
    try:
        logger.debug(f"Running command: {' '.join(cmd)}")
        result = subprocess.run(
            cmd,
            input=input_text,
            stdin=subprocess.DEVNULL if new_session and input_text is None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            start_new_session=new_session,
        )
        return result.stdout, result.stderr, result.returncode
    except subprocess.TimeoutExpired:
        logger.warning(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        return "", "Command timed out", -1
    except FileNotFoundError:
        logger.debug(f"Command not found: {cmd[0]}")
        return "", f"Command not found: {cmd[0]}", -1
    except PermissionError:
        logger.error(f"Permission denied running: {cmd[0]}")
        return "", f"Permission denied: {cmd[0]}", -1
    except OSError as e:
        logger.error(f"OS error running command {cmd[0]}: {e}")
        return "", str(e), -1


def elevated(command: str) -> List[str]:
    """Wrap a shell command line so it runs under the elevation shell."""
    return [ELEVATION_SHELL, "-c", command]


def self_excluding(pattern: str) -> str:
    """Bracket the first character of a regex so it no longer matches its
    own text: ``[h]elper`` matches "helper" but not "[h]elper".  Keeps
    pkill from matching the shell that carries the pattern."""
    if pattern and pattern[0].isalnum():
        return f"[{pattern[0]}]{pattern[1:]}"
    return pattern


def kill_by_pattern(pattern: str, timeout: float = KILL_TIMEOUT) -> bool:
    """Kill every process whose command line matches ``pattern``, elevated.

    The helper runs as a grandchild of the elevation shell and is owned by
    root, so it can only be reached by name from another elevated shell.

    Args:
        pattern: Extended regex searched in each full command line

    Returns:
        True if pkill reported at least one match.
    """
    stdout, stderr, returncode = run_command(
        elevated(f"pkill -f {shlex.quote(self_excluding(pattern))}"), timeout=timeout
    )
    if returncode == 0:
        logger.debug(f"Killed processes matching {pattern!r}")
        return True
    if returncode == 1:
        logger.debug(f"No process matched {pattern!r}")
    else:
        logger.warning(f"pkill for {pattern!r} failed (rc={returncode}): {stderr.strip()}")
    return False


# ---------------------------------------------------------------------------
# Long-running sessions
# ---------------------------------------------------------------------------

class ProcessSession:
    """A tracked long-running child process and its output tails."""

    def __init__(
        self,
        key: str,
        argv: List[str],
        process: subprocess.Popen,
        label: str = "session",
        markers: Iterable[str] = (),
    ):
        self.key = key
        self.argv = list(argv)
        self.label = label
        self._process = process
        self._markers = tuple(markers)
        self.markers_seen: Set[str] = set()
        self._tails: List[threading.Thread] = []

    @classmethod
    def start(
        cls,
        key: str,
        argv: List[str],
        label: str = "session",
        markers: Iterable[str] = (),
        keep_stdin_open: bool = False,
    ) -> "ProcessSession":
        """Spawn ``argv`` and begin tailing its output.

        Args:
            key: Registry key (target IP, domain, interface)
            argv: Command and arguments
            label: Short name used in log lines and thread names
            markers: Output substrings worth logging at info level
            keep_stdin_open: Hold the stdin pipe open so an elevation shell
                does not exit on EOF

        Raises:
            OSError: if the process cannot be spawned
        """
        logger.debug(f"Starting {label} session for {key}: {' '.join(argv)}")
        process = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE if keep_stdin_open else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        )
        session = cls(key, argv, process, label=label, markers=markers)
        session._start_tails()
        return session

    @property
    def command(self) -> str:
        return " ".join(self.argv)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll()

    def is_alive(self) -> bool:
        return self._process.poll() is None

    def terminate(self, timeout: float = KILL_TIMEOUT) -> None:
        """Forcibly kill the process and any children it spawned."""
        if self.is_alive():
            try:
                children = psutil.Process(self._process.pid).children(recursive=True)
            except psutil.Error:
                children = []
            for child in children:
                try:
                    child.kill()
                except psutil.Error as e:
                    # Elevated grandchildren are usually not ours to kill
                    logger.debug(f"Could not kill child {child.pid} of {self.key}: {e}")
            try:
                self._process.kill()
            except OSError as e:
                logger.debug(f"Kill of {self.label} session {self.key} failed: {e}")
            try:
                self._process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"{self.label} session {self.key} (pid {self.pid}) "
                    f"did not exit within {timeout}s"
                )
        self._close_stdin()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def join_tails(self, timeout: float = 1.0) -> None:
        for tail in self._tails:
            tail.join(timeout=timeout)

    # -- internal helpers ----------------------------------------------------

    def _close_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is not None and not stdin.closed:
            try:
                stdin.close()
            except OSError:
                pass

    def _start_tails(self) -> None:
        streams = (
            (self._process.stdout, "stdout"),
            (self._process.stderr, "stderr"),
        )
        for stream, name in streams:
            if stream is None:
                continue
            tail = threading.Thread(
                target=self._tail,
                args=(stream, name == "stderr"),
                daemon=True,
                name=f"{self.label}-{name}-{self.pid}",
            )
            tail.start()
            self._tails.append(tail)

    def _tail(self, stream, is_error: bool) -> None:
        """Log every line until EOF; EOF arrives when the process exits."""
        try:
            for raw in iter(stream.readline, ""):
                line = raw.rstrip()
                if not line:
                    continue
                if is_error:
                    logger.warning(f"[{self.label} {self.key}] {line}")
                    continue
                marker = next((m for m in self._markers if m in line), None)
                if marker:
                    self.markers_seen.add(marker)
                    logger.info(f"[{self.label} {self.key}] {line}")
                else:
                    logger.debug(f"[{self.label} {self.key}] {line}")
        except (OSError, ValueError) as e:
            logger.debug(f"Output tail for {self.label} {self.key} ended: {e}")
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def __repr__(self) -> str:
        state = "alive" if self.is_alive() else f"exited({self.returncode})"
        return f"<ProcessSession {self.label} {self.key} pid={self.pid} {state}>"


SessionStarter = Callable[[], ProcessSession]


class SessionRegistry:
    """Thread-safe map of key -> ProcessSession, one live session per key."""

    def __init__(self, name: str):
        self.name = name
        self._sessions: Dict[str, ProcessSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._sessions

    def get(self, key: str) -> Optional[ProcessSession]:
        with self._lock:
            return self._sessions.get(key)

    def is_active(self, key: str) -> bool:
        session = self.get(key)
        return session is not None and session.is_alive()

    def active_keys(self) -> List[str]:
        with self._lock:
            return [k for k, s in self._sessions.items() if s.is_alive()]

    def get_or_start(self, key: str, starter: SessionStarter) -> Tuple[ProcessSession, bool]:
        """Return the live session for ``key``, starting one if there is none.

        Returns:
            (session, created)
        """
        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None and existing.is_alive():
                return existing, False
            if existing is not None:
                logger.info(f"{self.name}: replacing exited session for {key}")
                existing.terminate()
            session = starter()
            self._sessions[key] = session
            return session, True

    def replace(self, key: str, starter: SessionStarter) -> ProcessSession:
        """Terminate any session for ``key``, then start and record a new one."""
        with self._lock:
            old = self._sessions.pop(key, None)
            if old is not None:
                logger.info(f"{self.name}: terminating previous session for {key}")
                old.terminate()
            session = starter()
            self._sessions[key] = session
            return session

    def pop(self, key: str) -> Optional[ProcessSession]:
        with self._lock:
            return self._sessions.pop(key, None)

    def remove_if(self, key: str, session: ProcessSession) -> bool:
        """Forget ``key`` only while it still maps to ``session``."""
        with self._lock:
            if self._sessions.get(key) is not session:
                return False
            del self._sessions[key]
            return True

    def pop_all(self) -> List[ProcessSession]:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            return sessions

    def terminate_all(self) -> int:
        """Terminate and forget every session.  Returns how many were tracked."""
        sessions = self.pop_all()
        for session in sessions:
            try:
                session.terminate()
            except Exception as e:
                logger.error(f"{self.name}: error terminating {session.key}: {e}")
        return len(sessions)
