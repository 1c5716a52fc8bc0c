"""Configuration: defaults, environment overrides and the user config file."""

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load .env file from current directory or parent directories
load_dotenv()

DEFAULT_CODEC = "qtrle"
DEFAULT_FRAME_RATE = 30
DEFAULT_TMP_DIR = "/tmp"
LIBAV_GOP_SIZE = 600

CONFIG_DIR = Path.home() / ".headrec"
CONFIG_FILE = CONFIG_DIR / "config.json"
CONFIG_KEYS = ("codec", "frame_rate", "provider", "tmp_dir")

TRUE_VALUES = ("1", "true", "yes", "on")


class Provider(str, Enum):
    """Encoder backend family. Decides the GOP flag and dimension format."""

    LIBAV = "libav"
    FFMPEG = "ffmpeg"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown provider {value!r}: use 'libav' or 'ffmpeg'") from None


def default_paths(display, tmp_dir=DEFAULT_TMP_DIR):
    """Default (tmp_file, pid_file, unclutter_pid_file) for a display."""
    tmp = Path(tmp_dir)
    return (
        str(tmp / f".headless_ffmpeg_{display}.mov"),
        str(tmp / f".headless_ffmpeg_{display}.pid"),
        str(tmp / f".headless_unclutter_{display}.pid"),
    )


def supervisor_paths(display, tmp_dir=DEFAULT_TMP_DIR):
    """(pid_file, request_file) of the `headrec record` process owning a display."""
    tmp = Path(tmp_dir)
    return (
        str(tmp / f".headless_record_{display}.pid"),
        str(tmp / f".headless_record_{display}.request"),
    )


@dataclass
class RecorderOptions:
    """Per-session options. Unset paths fall back to default_paths()."""

    codec: str = DEFAULT_CODEC
    frame_rate: int = DEFAULT_FRAME_RATE
    provider: Provider = Provider.LIBAV
    extra: List[str] = field(default_factory=list)
    hide_cursor: bool = True
    tmp_dir: str = DEFAULT_TMP_DIR
    tmp_file_path: Optional[str] = None
    pid_file_path: Optional[str] = None
    unclutter_pid_file_path: Optional[str] = None
    log_file_path: str = os.devnull
    unclutter_log_file_path: str = os.devnull
    ffmpeg: str = "ffmpeg"

    def __post_init__(self):
        self.provider = Provider.parse(self.provider)
        if isinstance(self.extra, str):
            self.extra = [self.extra]
        else:
            self.extra = list(self.extra)
        try:
            self.frame_rate = int(self.frame_rate)
        except (TypeError, ValueError):
            raise ValueError(f"frame_rate must be an integer, got {self.frame_rate!r}") from None
        if self.frame_rate <= 0:
            raise ValueError(f"frame_rate must be positive, got {self.frame_rate}")

    def resolve_paths(self, display):
        """Fill in any unset path from the per-display defaults."""
        tmp_file, pid_file, unclutter_pid_file = default_paths(display, self.tmp_dir)
        self.tmp_file_path = self.tmp_file_path or tmp_file
        self.pid_file_path = self.pid_file_path or pid_file
        self.unclutter_pid_file_path = self.unclutter_pid_file_path or unclutter_pid_file
        return self

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """Build options from HEADREC_* variables, the user config file and overrides."""
        env = os.environ if environ is None else environ
        values = {}

        user_config = load_user_config()
        for key in CONFIG_KEYS:
            if key in user_config:
                values[key] = user_config[key]

        if env.get("HEADREC_CODEC"):
            values["codec"] = env["HEADREC_CODEC"]
        if env.get("HEADREC_FRAME_RATE"):
            values["frame_rate"] = env["HEADREC_FRAME_RATE"]
        if env.get("HEADREC_PROVIDER"):
            values["provider"] = env["HEADREC_PROVIDER"]
        if env.get("HEADREC_TMP_DIR"):
            values["tmp_dir"] = env["HEADREC_TMP_DIR"]
        if env.get("HEADREC_HIDE_CURSOR"):
            values["hide_cursor"] = env["HEADREC_HIDE_CURSOR"].strip().lower() in TRUE_VALUES
        if env.get("HEADREC_LOG_FILE"):
            values["log_file_path"] = env["HEADREC_LOG_FILE"]
        if env.get("HEADREC_FFMPEG"):
            values["ffmpeg"] = env["HEADREC_FFMPEG"]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def load_user_config(config_file=None):
    """Read the JSON user config. A missing or unreadable file is an empty config."""
    config_file = Path(config_file or CONFIG_FILE)
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r") as f:
            config = json.load(f)
    except (OSError, ValueError):
        return {}
    return config if isinstance(config, dict) else {}


def save_user_config(config, config_file=None):
    config_file = Path(config_file or CONFIG_FILE)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w") as f:
        json.dump(config, f, indent=2)
