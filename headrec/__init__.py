"""headrec: record X11 virtual displays with ffmpeg, with reliable cleanup."""

from .capture import ProcessHandle, wait_for_artifact
from .config import Provider, RecorderOptions
from .errors import HeadrecError, MissingApplicationError, SaveError, SessionStateError, SpawnError
from .session import CaptureSession, SessionState

__version__ = "0.1.0"

__all__ = [
    "CaptureSession",
    "HeadrecError",
    "MissingApplicationError",
    "ProcessHandle",
    "Provider",
    "RecorderOptions",
    "SaveError",
    "SessionState",
    "SessionStateError",
    "SpawnError",
    "wait_for_artifact",
]
