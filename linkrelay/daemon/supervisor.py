"""
Single-instance supervision for the relay daemon.

Everything the supervisor knows lives under the base directory:

    link-relay.lock   zero-byte file; an exclusive flock on it marks a live relay
    state.yml         {pid, timestamp} written by the running relay
    link-relay.log    stdout/stderr of a detached relay

The lock is taken non-blocking. If it is already held another relay is live
and the caller is told so instead of waiting. The lock is never released
explicitly: it goes away with the process.

Detaching uses the classic double fork (Stevens, "Advanced Programming in
the UNIX Environment"). The grandchild reports its pid back to the invoking
process through a pipe so the invoker can print it before exiting.
"""

import fcntl
import os
import signal
import sys
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import IO

import structlog

from linkrelay.config.settings import Settings
from linkrelay.errors import EXIT_OK, InstanceLockedError, StartupError, StopFailedError
from linkrelay.observability.logging import bind_context
from linkrelay.relay.state import RelayState, StateStore

logger = structlog.get_logger(__name__)


def process_alive(pid: int) -> bool:
    """Check whether a process with ``pid`` exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class Supervisor:
    """
    Controls the relay process: start, stop, restart and pid.

    The supervisor owns the process-wide RelayState; the relay loop receives
    it from here rather than reading globals.

    Usage:
        supervisor = Supervisor(settings)
        state = supervisor.start()   # raises InstanceLockedError if one is live
        ...run the relay with state and supervisor.store...
    """

    def __init__(self, settings: Settings, echo: Callable[[str], None] = print):
        basedir = Path(settings.basedir).expanduser().resolve()
        if basedir != settings.basedir:
            # paths must survive the chdir in detach()
            settings = settings.model_copy(update={"basedir": basedir})
        self.settings = settings
        self.basedir = basedir
        self.lock_path = settings.lock_path
        self.log_path = settings.log_path
        self.store = StateStore(settings.state_path)
        self.state = RelayState()
        self._echo = echo
        self._lock_file: IO[str] | None = None
        self._pid_pipe: int | None = None

    def ensure_basedir(self) -> None:
        """
        Create the base directory and check that it is writable.

        Raises:
            StartupError: If the directory cannot be created or written
        """
        try:
            self.basedir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StartupError(f"Cannot create base directory {self.basedir}: {e}") from e
        if not os.access(self.basedir, os.W_OK | os.X_OK):
            raise StartupError(f"Base directory {self.basedir} is not writable")

    def lock_held(self) -> bool:
        """Probe the lock without keeping it."""
        if not self.lock_path.exists():
            return False
        with open(self.lock_path, "a") as probe:
            try:
                fcntl.flock(probe, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(probe, fcntl.LOCK_UN)
        return False

    def acquire_lock(self) -> None:
        """
        Take the instance lock for the lifetime of this process.

        Raises:
            InstanceLockedError: If another instance holds it
        """
        if self._lock_file is not None:
            return
        lock_file = open(self.lock_path, "a")
        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            pid = self.running_pid()
            raise InstanceLockedError(
                f"Another instance is running (pid {pid})", pid=pid
            ) from None
        self._lock_file = lock_file

    def release_lock(self) -> None:
        if self._lock_file is not None:
            fcntl.flock(self._lock_file, fcntl.LOCK_UN)
            self._lock_file.close()
            self._lock_file = None

    def running_pid(self) -> int | None:
        """
        Return the pid of the live instance, or None if nothing is running.

        An instance counts as live only while the lock is held.
        """
        if not self.lock_held():
            return None
        try:
            pid = self.store.load().pid
        except (OSError, ValueError) as e:
            logger.warning("Could not read state file", path=str(self.store.path), error=str(e))
            return None
        if pid is None or not process_alive(pid):
            return None
        return pid

    def stop(self) -> int | None:
        """
        Signal the running instance and wait for it to exit.

        Returns:
            The pid that was stopped, or None if nothing was running

        Raises:
            StopFailedError: If the instance is still alive after all attempts
        """
        pid = self.running_pid()
        if pid is None:
            logger.info("Not running", basedir=str(self.basedir))
            return None

        logger.info("Stopping", pid=pid)
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            return pid

        for _ in range(self.settings.stop_attempts):
            if not process_alive(pid) or not self.lock_held():
                logger.info("Stopped", pid=pid)
                return pid
            time.sleep(self.settings.stop_poll_seconds)

        raise StopFailedError(
            f"Instance {pid} still running after {self.settings.stop_attempts} attempts",
            pid=pid,
        )

    def start(self, checkpoint: datetime | None = None, daemon: bool = False) -> RelayState:
        """
        Become the running instance.

        Takes the lock, optionally detaches, then records our pid (and a
        checkpoint override, if given) in the state file.

        Raises:
            StartupError: If the base directory is unusable
            InstanceLockedError: If another instance is running
        """
        self.ensure_basedir()
        self.acquire_lock()

        if daemon:
            self.detach()

        state = self.store.load()
        if checkpoint is not None:
            logger.info("Checkpoint overridden", checkpoint=checkpoint.isoformat())
            state.checkpoint = checkpoint
        state.pid = os.getpid()
        self.store.save(state)
        self.state = state
        # The invoker hears our pid only once it is on record
        self._report_pid(state.pid)

        bind_context(pid=state.pid)
        logger.info(
            "Started",
            pid=state.pid,
            checkpoint=state.checkpoint.isoformat() if state.checkpoint else None,
            basedir=str(self.basedir),
        )
        return state

    def restart(self, checkpoint: datetime | None = None, daemon: bool = False) -> RelayState:
        self.stop()
        return self.start(checkpoint=checkpoint, daemon=daemon)

    def detach(self) -> None:
        """
        Detach from the controlling terminal and continue in the background.

        Only the grandchild returns. The invoking process waits for the
        grandchild's pid, prints it and exits; the intermediate child exits
        at once.

        Raises:
            StartupError: In the invoking process, if the grandchild exited
                before reporting its pid
        """
        sys.stdout.flush()
        sys.stderr.flush()
        read_fd, write_fd = os.pipe()

        try:
            pid = os.fork()
        except OSError as e:
            raise StartupError(f"fork #1 failed: {e}") from e

        if pid > 0:
            os.close(write_fd)
            with os.fdopen(read_fd) as reader:
                child_pid = reader.read().strip()
            os.waitpid(pid, 0)
            if not child_pid:
                raise StartupError(f"Detached relay exited during startup, see {self.log_path}")
            self._echo(child_pid)
            sys.exit(EXIT_OK)

        # decouple from parent environment
        os.close(read_fd)
        os.setsid()

        try:
            pid = os.fork()
        except OSError as e:
            sys.stderr.write(f"fork #2 failed: {e}\n")
            os._exit(1)
        if pid > 0:
            os._exit(0)

        try:
            os.chdir(self.basedir)
            os.umask(0o022)
            self._redirect_streams()
        except OSError as e:
            sys.stderr.write(f"cannot detach into {self.basedir}: {e}\n")
            os._exit(1)
        self._pid_pipe = write_fd

    def _report_pid(self, pid: int) -> None:
        """Send ``pid`` to the invoking process, if we were detached."""
        if self._pid_pipe is None:
            return
        with os.fdopen(self._pid_pipe, "w") as writer:
            writer.write(str(pid))
        self._pid_pipe = None

    def _redirect_streams(self) -> None:
        sys.stdout.flush()
        sys.stderr.flush()
        with open(os.devnull) as devnull:
            os.dup2(devnull.fileno(), sys.stdin.fileno())
        with open(self.log_path, "a") as log:
            os.dup2(log.fileno(), sys.stdout.fileno())
            os.dup2(log.fileno(), sys.stderr.fileno())
