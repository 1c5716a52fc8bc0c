"""Shared fixtures: stand-in encoder binaries and isolated paths."""

import os
import stat
from pathlib import Path

import pytest

from headrec import config as cfg
from headrec.capture import ProcessHandle

# Writes something to its last argument (the output file), then idles.
FAKE_FFMPEG = """#!/bin/sh
for last; do :; done
echo frame > "$last"
exec sleep 30
"""

# Never creates its output file.
SILENT_FFMPEG = """#!/bin/sh
exec sleep 30
"""

FAKE_UNCLUTTER = """#!/bin/sh
exec sleep 30
"""


def write_script(path, body):
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture(autouse=True)
def isolated_user_config(tmp_path, monkeypatch):
    """Keep tests away from ~/.headrec and any HEADREC_* in the environment."""
    monkeypatch.setattr(cfg, "CONFIG_FILE", tmp_path / "home" / "config.json")
    for key in list(os.environ):
        if key.startswith("HEADREC_"):
            monkeypatch.delenv(key)


@pytest.fixture
def fake_bin(tmp_path, monkeypatch):
    """Directory on PATH holding fake ffmpeg and unclutter executables."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    write_script(bin_dir / "ffmpeg", FAKE_FFMPEG)
    write_script(bin_dir / "unclutter", FAKE_UNCLUTTER)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


@pytest.fixture
def silent_ffmpeg(fake_bin):
    write_script(fake_bin / "ffmpeg", SILENT_FFMPEG)
    return fake_bin / "ffmpeg"


@pytest.fixture
def work_dir(tmp_path):
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture
def session_paths(work_dir):
    """Per-test tmp/pid paths; kills anything still tracked afterwards."""
    paths = {
        "tmp_file_path": str(work_dir / "capture.mov"),
        "pid_file_path": str(work_dir / "ffmpeg.pid"),
        "unclutter_pid_file_path": str(work_dir / "unclutter.pid"),
    }
    yield paths
    for key in ("pid_file_path", "unclutter_pid_file_path"):
        ProcessHandle([], paths[key]).terminate(wait=True)


@pytest.fixture
def sleeper(work_dir):
    """A ProcessHandle for a long sleep, terminated at teardown."""
    handle = ProcessHandle(["sleep", "30"], Path(work_dir) / "sleep.pid", name="sleep")
    yield handle
    handle.terminate(wait=True)
