"""Session management: the capture supervisor and its start/save/discard lifecycle."""

import dataclasses
import errno
import logging
import os
import re
import shlex
import shutil
from enum import Enum

from . import cliutil
from .capture import ProcessHandle, wait_for_artifact
from .config import LIBAV_GOP_SIZE, Provider, RecorderOptions
from .errors import SaveError, SessionStateError, SpawnError
from .safety import ExitGuard

logger = logging.getLogger(__name__)

DIMENSIONS_RE = re.compile(r"^(\d+x\d+)")
UNCLUTTER_IDLE_SECONDS = "0.01"

# Move failures that mean "can't get there from here" rather than a real error.
UNMOVABLE_ERRNOS = (errno.EXDEV, errno.EINVAL)


class SessionState(str, Enum):
    CONFIGURED = "configured"
    CAPTURING = "capturing"
    SAVED = "saved"
    DISCARDED = "discarded"


class CaptureSession:
    """Records an X11 display with ffmpeg, optionally hiding the cursor.

    Owns two process slots, `capture` (the encoder) and `cursor_hider`
    (unclutter), plus the temporary file the encoder writes to. Once started,
    the session is stopped and its file discarded when the interpreter exits
    unless save_to() or discard() got there first.

    Usage:
        session = CaptureSession(99, "1024x768x32", codec="libvpx")
        session.start()
        ...
        session.save_to("/tmp/out.mov")
    """

    def __init__(self, display, dimensions=None, options=None, **kwargs):
        if options is None:
            options = RecorderOptions(**kwargs)
        else:
            options = dataclasses.replace(options, **kwargs)
        options.resolve_paths(display)

        self.display = display
        self.dimensions = dimensions
        self.options = options

        self.codec = options.codec
        self.frame_rate = options.frame_rate
        self.provider = options.provider
        self.extra = options.extra
        self.hide_cursor = options.hide_cursor
        self.ffmpeg = options.ffmpeg

        self.tmp_file_path = options.tmp_file_path
        self.pid_file_path = options.pid_file_path
        self.unclutter_pid_file_path = options.unclutter_pid_file_path
        self.log_file_path = options.log_file_path
        self.unclutter_log_file_path = options.unclutter_log_file_path

        cliutil.ensure_application_exists(self.ffmpeg, cliutil.INSTALL_HINTS["ffmpeg"])
        if self.hide_cursor:
            cliutil.ensure_application_exists("unclutter")

        # Command lines are filled in by start()
        self.capture = ProcessHandle([], self.pid_file_path, self.log_file_path, name="ffmpeg")
        self.cursor_hider = ProcessHandle(
            [], self.unclutter_pid_file_path, self.unclutter_log_file_path, name="unclutter"
        )

        self.state = SessionState.CONFIGURED
        self._guard = ExitGuard(self._discard_on_exit)

    def __repr__(self):
        return f"CaptureSession(display={self.display!r}, state={self.state.value})"

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.state is SessionState.CAPTURING:
            self.discard()
        return False

    def capture_command(self):
        """Encoder argument list for the configured provider."""
        if not self.dimensions:
            raise ValueError("dimensions are required to start a capture")

        if self.provider is Provider.LIBAV:
            gop_option = ["-g", str(LIBAV_GOP_SIZE)]
            dimensions = str(self.dimensions)
        else:
            gop_option = []
            match = DIMENSIONS_RE.match(str(self.dimensions))
            if not match:
                raise ValueError(f"Invalid dimensions {self.dimensions!r}: expected WIDTHxHEIGHT[xDEPTH]")
            dimensions = match.group(1)

        extra = [arg for option in self.extra for arg in shlex.split(option)]

        return [
            cliutil.path_to(self.ffmpeg),
            "-y",
            "-r", str(self.frame_rate),
            *gop_option,
            "-s", dimensions,
            "-f", "x11grab",
            "-i", f":{self.display}",
            "-vcodec", self.codec,
            *extra,
            self.tmp_file_path,
        ]

    def cursor_hider_command(self):
        return [
            cliutil.path_to("unclutter"),
            "-display", f":{self.display}",
            "-idle", UNCLUTTER_IDLE_SECONDS,
            "-root",
        ]

    def is_capturing(self):
        return self.capture.is_running()

    def start(self):
        """Spawn the cursor hider and the encoder, then wait for the output file.

        A slow encoder that has not created its file after the wait budget is
        not an error; the capture carries on.
        """
        if self.state is SessionState.CAPTURING:
            raise SessionStateError(f"Capture of display :{self.display} is already running")
        if self.state is not SessionState.CONFIGURED:
            raise SessionStateError(
                f"Session for display :{self.display} is {self.state.value}; create a new session to record again"
            )

        self.capture.command_line = self.capture_command()

        # Leftovers from an earlier run would satisfy the artifact wait too early.
        if os.path.exists(self.tmp_file_path):
            logger.debug("Removing stale %s", self.tmp_file_path)
            os.unlink(self.tmp_file_path)

        if self.hide_cursor:
            self.cursor_hider.command_line = self.cursor_hider_command()
            self.cursor_hider.spawn()

        try:
            self.capture.spawn()
        except SpawnError:
            self.cursor_hider.terminate()
            raise

        self._guard.arm()
        self.state = SessionState.CAPTURING
        logger.info("Recording display :%s to %s", self.display, self.tmp_file_path)

        wait_for_artifact(self.tmp_file_path)

    def save_to(self, path):
        """Stop recording and move the file to `path`.

        Returns True if the file was moved, False if there was nothing to
        save or the move crossed a boundary the OS refuses (EXDEV/EINVAL).
        Any other failure raises SaveError and leaves the file in place.
        """
        self._stop()

        if not os.path.exists(self.tmp_file_path):
            logger.info("Nothing to save: %s does not exist", self.tmp_file_path)
            self._finish(SessionState.SAVED)
            return False

        try:
            shutil.move(self.tmp_file_path, str(path))
        except OSError as e:
            if e.errno not in UNMOVABLE_ERRNOS:
                raise SaveError(self.tmp_file_path, path, e) from e
            logger.warning("Could not move %s to %s (%s); recording not saved", self.tmp_file_path, path, e)
            self._finish(SessionState.SAVED)
            return False

        logger.info("Saved recording to %s", path)
        self._finish(SessionState.SAVED)
        return True

    def discard(self):
        """Stop recording and delete the temporary file. Safe to repeat."""
        self._stop()
        self._remove_tmp_file()
        self._finish(SessionState.DISCARDED)

    def _stop(self):
        # unclutter writes nothing worth waiting for; the encoder must be fully
        # gone before its file is touched.
        self.cursor_hider.terminate()
        self.capture.terminate(wait=True)

    def _remove_tmp_file(self):
        try:
            os.unlink(self.tmp_file_path)
            logger.info("Discarded %s", self.tmp_file_path)
        except FileNotFoundError:
            pass

    def _finish(self, state):
        if not self._guard.fired:
            self._guard.disarm()
        self.state = state

    def _discard_on_exit(self):
        logger.warning("Process exiting during capture of display :%s; discarding recording", self.display)
        self._stop()
        self._remove_tmp_file()
        self.state = SessionState.DISCARDED
