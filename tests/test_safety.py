"""Tests for the exit-time safety net."""

import os
import signal
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

from headrec import safety
from headrec.safety import ExitGuard

REPO_ROOT = Path(__file__).resolve().parents[1]

GUARDED_SCRIPT = textwrap.dedent(
    """
    import sys, time
    from pathlib import Path
    from headrec.safety import ExitGuard

    marker = Path(sys.argv[1])
    def cleanup():
        with open(marker, "a") as f:
            f.write("cleaned\\n")

    guard = ExitGuard(cleanup)
    guard.arm()
    print("ready", flush=True)
    if sys.argv[2] == "exit":
        sys.exit(3)
    time.sleep(30)
    """
)


def _run_guarded(tmp_path, mode):
    marker = tmp_path / "marker.txt"
    env = dict(os.environ, PYTHONPATH=str(REPO_ROOT))
    proc = subprocess.Popen(
        [sys.executable, "-c", GUARDED_SCRIPT, str(marker), mode],
        stdout=subprocess.PIPE,
        env=env,
    )
    assert proc.stdout.readline().strip() == b"ready"
    return proc, marker


class TestExitGuard:
    """Tests for ExitGuard in-process behaviour."""

    def test_fire_runs_callback_once(self):
        """Test the callback runs at most once however often fire() is called."""
        calls = []
        guard = ExitGuard(lambda: calls.append(1))

        guard.fire()
        guard.fire()

        assert calls == [1]
        assert guard.fired

    def test_callback_errors_are_logged(self, caplog):
        """Test a failing cleanup does not raise out of the guard."""
        def boom():
            raise RuntimeError("cleanup failed")

        ExitGuard(boom).fire()

        assert "Exit cleanup failed" in caplog.text

    def test_arm_installs_and_disarm_restores_handlers(self):
        """Test signal handlers are installed on arm and restored on disarm."""
        before = signal.getsignal(signal.SIGTERM)
        guard = ExitGuard(lambda: None)

        guard.arm()
        try:
            assert signal.getsignal(signal.SIGTERM) == guard._handle_signal
            assert guard.armed
        finally:
            guard.disarm()

        assert signal.getsignal(signal.SIGTERM) == before
        assert not guard.armed

    def test_arm_registers_atexit(self, monkeypatch):
        """Test arm/disarm register and unregister the atexit hook."""
        registered = []
        monkeypatch.setattr(safety.atexit, "register", registered.append)
        monkeypatch.setattr(safety.atexit, "unregister", registered.remove)
        guard = ExitGuard(lambda: None, signals=())

        guard.arm()
        assert registered == [guard.fire]

        guard.disarm()
        assert registered == []

    def test_nested_guards_chain(self, monkeypatch):
        """Test a second guard calls the first one's handler after cleaning up."""
        before = signal.getsignal(signal.SIGTERM)
        calls = []
        monkeypatch.setattr(safety.os, "kill", lambda pid, signum: calls.append(("kill", signum)))
        first = ExitGuard(lambda: calls.append("first"))
        second = ExitGuard(lambda: calls.append("second"))
        first.arm()
        second.arm()
        try:
            second._handle_signal(signal.SIGTERM, None)
        finally:
            first.disarm()
            second.disarm()
            signal.signal(signal.SIGTERM, before)

        assert calls == ["second", "first", ("kill", signal.SIGTERM)]

    def test_disarmed_guard_underneath_is_skipped(self, monkeypatch):
        """Test a guard disarmed while another sits on top does not clean up on a later signal."""
        before = signal.getsignal(signal.SIGTERM)
        calls = []
        monkeypatch.setattr(safety.os, "kill", lambda pid, signum: calls.append(("kill", signum)))
        first = ExitGuard(lambda: calls.append("first"))
        second = ExitGuard(lambda: calls.append("second"))
        first.arm()
        second.arm()
        try:
            first.disarm()
            handler = signal.getsignal(signal.SIGTERM)
            assert handler == second._handle_signal
            handler(signal.SIGTERM, None)
        finally:
            second.disarm()
            signal.signal(signal.SIGTERM, before)

        assert calls == ["second", ("kill", signal.SIGTERM)]
        assert not first.fired

    def test_handler_left_by_disarmed_top_guard_passes_through(self, monkeypatch):
        """Test disarming the top guard leaves a handler that skips the disarmed one below."""
        before = signal.getsignal(signal.SIGTERM)
        calls = []
        monkeypatch.setattr(safety.os, "kill", lambda pid, signum: calls.append(("kill", signum)))
        first = ExitGuard(lambda: calls.append("first"))
        second = ExitGuard(lambda: calls.append("second"))
        first.arm()
        second.arm()
        try:
            first.disarm()
            second.disarm()
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        finally:
            signal.signal(signal.SIGTERM, before)

        assert calls == [("kill", signal.SIGTERM)]

    def test_fire_after_disarm_does_nothing(self):
        """Test an atexit call that slips through after disarm() runs no cleanup."""
        calls = []
        guard = ExitGuard(lambda: calls.append(1), signals=())
        guard.arm()
        guard.disarm()

        guard.fire()

        assert calls == []
        assert not guard.fired


class TestExitGuardProcess:
    """Tests that run the guard inside a real child interpreter."""

    def test_sys_exit_keeps_status(self, tmp_path):
        """Test cleanup runs on sys.exit and the exit status is unchanged."""
        proc, marker = _run_guarded(tmp_path, "exit")

        assert proc.wait(timeout=30) == 3
        assert marker.read_text() == "cleaned\n"

    @pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGHUP])
    def test_fatal_signal_runs_cleanup_and_still_kills(self, tmp_path, signum):
        """Test a fatal signal runs cleanup once and the process dies by that signal."""
        proc, marker = _run_guarded(tmp_path, "sleep")

        proc.send_signal(signum)

        assert proc.wait(timeout=30) == -signum
        assert marker.read_text() == "cleaned\n"
