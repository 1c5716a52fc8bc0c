"""Exit-time safety net: run a cleanup once before the host process goes away."""

import atexit
import logging
import os
import signal
import threading

logger = logging.getLogger(__name__)

# Signals whose default action kills the process without running atexit hooks.
# SIGINT is left alone: KeyboardInterrupt unwinds normally and atexit covers it.
FATAL_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


class ExitGuard:
    """Runs `callback` at most once when the interpreter exits or is signalled.

    Normal exits (including sys.exit(n)) go through atexit, which keeps the
    exit status. For SIGTERM/SIGHUP the handler runs the callback, puts the
    previous disposition back and re-delivers the signal, so the process still
    dies the way it would have without the guard. Once disarm() is called the
    callback never runs, even if a later guard chains into this one.
    """

    def __init__(self, callback, signals=FATAL_SIGNALS):
        self._callback = callback
        self._signals = tuple(signals)
        self._previous = {}
        # Handlers we could not take off the stack because another was installed
        # on top; signals reaching us there are passed straight through.
        self._passthrough = {}
        self._armed = False
        self._disarmed = False
        self._fired = False

    @property
    def armed(self):
        return self._armed

    @property
    def fired(self):
        return self._fired

    def arm(self):
        if self._armed:
            return
        atexit.register(self.fire)
        # signal.signal() only works from the main thread.
        if threading.current_thread() is threading.main_thread():
            for signum in self._signals:
                self._previous[signum] = signal.signal(signum, self._handle_signal)
        self._armed = True
        self._disarmed = False

    def disarm(self):
        if not self._armed:
            return
        self._unhook()
        self._disarmed = True

    def fire(self):
        """Run the callback unless it already ran or the guard was disarmed.

        Errors are logged, not raised.
        """
        if self._fired or self._disarmed:
            return
        self._fired = True
        try:
            self._callback()
        except Exception:
            logger.exception("Exit cleanup failed")

    def _handle_signal(self, signum, frame):
        if self._armed:
            logger.warning("Received signal %d, cleaning up before exit", signum)
            previous = self._previous.get(signum)
            self._unhook()
            self.fire()
        else:
            previous = self._passthrough.get(signum)

        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_IGN:
            return
        else:
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)

    def _unhook(self):
        atexit.unregister(self.fire)
        for signum, previous in self._previous.items():
            if signal.getsignal(signum) == self._handle_signal:
                signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
            else:
                # Someone installed a handler on top of ours; leave theirs in place.
                self._passthrough[signum] = previous
        self._previous = {}
        self._armed = False
