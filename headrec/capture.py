"""Capture engine: detached background processes tracked by PID files."""

import logging
import os
import subprocess
import time
from pathlib import Path

import psutil

from .errors import SpawnError

logger = logging.getLogger(__name__)

ARTIFACT_WAIT_ATTEMPTS = 100
ARTIFACT_WAIT_INTERVAL = 0.1


class ProcessHandle:
    """One detached OS process, tracked through a PID file.

    The PID file is the only record of the process. Every query re-reads it,
    so a handle built in another process (or after a restart) sees the same
    state as the one that spawned the child.
    """

    def __init__(self, command_line, pid_file_path, log_file_path=os.devnull, name=None):
        self.command_line = list(command_line)
        self.pid_file_path = Path(pid_file_path)
        self.log_file_path = log_file_path
        self.name = name or (Path(self.command_line[0]).name if self.command_line else "process")

    def __repr__(self):
        return f"ProcessHandle({self.name!r}, pid_file={str(self.pid_file_path)!r})"

    @property
    def pid(self):
        return self.read_pid()

    def spawn(self):
        """Start the command in its own session and record its pid.

        stdout and stderr are appended to the log file, stdin is /dev/null.
        Returns the new pid.
        """
        if not self.command_line:
            raise SpawnError(self.command_line, "empty command line")

        try:
            with open(self.log_file_path, "ab") as log:
                proc = subprocess.Popen(
                    self.command_line,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    preexec_fn=os.setsid,  # Detach from our terminal and process group
                )
        except OSError as e:
            raise SpawnError(self.command_line, e) from e

        self.write_pid(proc.pid)
        logger.info("Started %s (pid %d), pid file %s", self.name, proc.pid, self.pid_file_path)
        return proc.pid

    def read_pid(self):
        """Return the pid stored in the PID file, or None if there is none."""
        try:
            content = self.pid_file_path.read_text().strip()
        except (FileNotFoundError, IsADirectoryError):
            return None
        except OSError as e:
            logger.debug("Could not read %s: %s", self.pid_file_path, e)
            return None

        try:
            pid = int(content)
        except ValueError:
            return None
        return pid if pid > 0 else None

    def is_running(self):
        """True if the PID file names a live, non-zombie process."""
        pid = self.read_pid()
        if pid is None:
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def terminate(self, wait=False):
        """Send SIGTERM to the tracked process and clear the PID file.

        With wait=True, block until the OS confirms the process is gone.
        There is no timeout: a hung process hangs the caller. An absent PID
        file or an already dead process makes this a no-op.
        """
        pid = self.read_pid()
        if pid is None:
            self.clear()
            return

        try:
            proc = psutil.Process(pid)
            proc.terminate()
            logger.debug("Sent SIGTERM to %s (pid %d)", self.name, pid)
            if wait:
                proc.wait()
                logger.info("%s (pid %d) exited", self.name, pid)
        except psutil.NoSuchProcess:
            logger.debug("%s (pid %d) was already gone", self.name, pid)

        self.clear()

    def write_pid(self, pid):
        """Record `pid` in the PID file, replacing whatever was there."""
        self.pid_file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.pid_file_path, "w") as f:
            f.write(f"{pid}\n")

    def clear(self):
        """Forget the tracked process without signalling it."""
        try:
            self.pid_file_path.unlink()
        except FileNotFoundError:
            pass


def fork_process(command_line, pid_file_path, log_file_path=os.devnull):
    """Spawn `command_line` in the background, writing its pid to `pid_file_path`."""
    return ProcessHandle(command_line, pid_file_path, log_file_path).spawn()


def read_pid(pid_file_path):
    return ProcessHandle([], pid_file_path).read_pid()


def kill_process(pid_file_path, wait=False):
    """Terminate whatever process `pid_file_path` names."""
    ProcessHandle([], pid_file_path).terminate(wait=wait)


def wait_for_artifact(path, attempts=ARTIFACT_WAIT_ATTEMPTS, interval=ARTIFACT_WAIT_INTERVAL):
    """Poll until `path` exists, at most `attempts` times.

    Some encoders only create the output file after the first frame is
    flushed, so running out of attempts is not an error: it is logged and
    False is returned.
    """
    for attempt in range(attempts):
        if os.path.exists(path):
            logger.debug("%s appeared after %d check(s)", path, attempt + 1)
            return True
        if attempt < attempts - 1:
            time.sleep(interval)

    logger.warning(
        "File %s was not created after %.1fs; continuing without it", path, attempts * interval
    )
    return False
