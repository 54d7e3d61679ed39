"""
Privilege Detector

Decides whether elevated (root) execution is available by trying a chain
of independent probes.  The first affirmative probe wins; a probe that
fails or errors simply yields no signal and the next one is tried.
"""

import logging
import os
import shutil
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence

from config import (
    ELEVATION_BINARY_PATHS,
    ELEVATION_MANAGERS,
    ELEVATION_SHELL,
    PRIVILEGE_CACHE_SECONDS,
    PRIVILEGE_PROBE_TIMEOUT,
    SUPERUSER_ID_MARKER,
)

from .errors import ErrorKind, Result, failure, success
from .process import run_command

logger = logging.getLogger(__name__)


class PrivilegeProbe:
    """One way of detecting root.  ``attempt()`` returns True on a positive
    signal and None when it could not tell."""

    name = "probe"

    def attempt(self) -> Optional[bool]:
        raise NotImplementedError


class ElevationShellProbe(PrivilegeProbe):
    """Spawn the elevation shell, run ``id`` and look for uid 0."""

    name = "elevation-shell"

    def __init__(self, shell: str = ELEVATION_SHELL, timeout: float = PRIVILEGE_PROBE_TIMEOUT):
        self.shell = shell
        self.timeout = timeout

    def attempt(self) -> Optional[bool]:
        # Detached from the terminal: a password prompt must fail, not block
        stdout, stderr, returncode = run_command(
            [self.shell], timeout=self.timeout, input_text="id\nexit\n", new_session=True
        )
        if returncode == 0 and SUPERUSER_ID_MARKER in stdout:
            return True
        logger.debug(f"{self.shell} probe gave no root signal (rc={returncode})")
        return None


class ElevationManagerProbe(PrivilegeProbe):
    """Look for a known elevation manager on PATH."""

    name = "elevation-manager"

    def __init__(self, managers: Sequence[str] = tuple(ELEVATION_MANAGERS)):
        self.managers = list(managers)

    def attempt(self) -> Optional[bool]:
        for manager in self.managers:
            path = shutil.which(manager)
            if path:
                logger.debug(f"Elevation manager found at {path}")
                return True
        return None


class ElevationBinaryProbe(PrivilegeProbe):
    """Check well-known elevation binary locations on disk."""

    name = "elevation-binary"

    def __init__(self, paths: Sequence[str] = tuple(ELEVATION_BINARY_PATHS)):
        self.paths = list(paths)

    def attempt(self) -> Optional[bool]:
        for candidate in self.paths:
            if Path(candidate).exists():
                logger.debug(f"Elevation binary found at {candidate}")
                return True
        return None


class EffectiveUserProbe(PrivilegeProbe):
    """Already running as root."""

    name = "effective-user"

    def attempt(self) -> Optional[bool]:
        geteuid = getattr(os, "geteuid", None)
        if geteuid is not None and geteuid() == 0:
            return True
        return None


def default_probes() -> List[PrivilegeProbe]:
    return [
        ElevationShellProbe(),
        ElevationManagerProbe(),
        ElevationBinaryProbe(),
        EffectiveUserProbe(),
    ]


class PrivilegeDetector:
    """Runs the probe chain and caches the answer for a short while."""

    def __init__(
        self,
        probes: Optional[List[PrivilegeProbe]] = None,
        cache_seconds: float = PRIVILEGE_CACHE_SECONDS,
    ):
        self.probes = probes if probes is not None else default_probes()
        self.cache_seconds = cache_seconds
        self._cached: Optional[bool] = None
        self._cached_at = 0.0
        self._lock = threading.Lock()

    def is_privileged(self, refresh: bool = False) -> Result[bool]:
        """
        Check whether root execution is available.

        Args:
            refresh: Ignore any cached answer

        Returns:
            Success(True) on the first positive probe, Success(False) when
            no probe gave a positive signal.
        """
        with self._lock:
            if (
                not refresh
                and self._cached is not None
                and time.monotonic() - self._cached_at < self.cache_seconds
            ):
                return success(self._cached)

        try:
            rooted = self._run_probes()
        except InterruptedError as e:
            logger.error(f"Root check interrupted: {e}")
            return failure(ErrorKind.COMMAND_EXECUTION, e)
        except OSError as e:
            logger.error(f"Root check failed: {e}")
            return failure(ErrorKind.DEVICE_NOT_ROOTED, e)

        with self._lock:
            self._cached = rooted
            self._cached_at = time.monotonic()
        return success(rooted)

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = 0.0

    def _run_probes(self) -> bool:
        for probe in self.probes:
            try:
                if probe.attempt():
                    logger.info(f"Root access detected ({probe.name} probe)")
                    return True
            except (InterruptedError, KeyboardInterrupt):
                raise
            except Exception as e:
                logger.debug(f"{probe.name} probe failed: {e}")
        logger.info("Root access not available")
        return False
