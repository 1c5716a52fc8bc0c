"""Locate the external tools a recording depends on."""

import shutil

from .errors import MissingApplicationError

INSTALL_HINTS = {
    "ffmpeg": "Install it with sudo apt-get install ffmpeg",
    "avconv": "Install it with sudo apt-get install libav-tools",
    "unclutter": "Install it with sudo apt-get install unclutter",
}


def application_exists(app):
    """Return True if `app` resolves to an executable on PATH."""
    return shutil.which(app) is not None


def path_to(app):
    """Absolute path of `app`, or the bare name if it is not on PATH."""
    return shutil.which(app) or app


def ensure_application_exists(app, remedy=None):
    """Raise MissingApplicationError naming the tool and how to install it."""
    if not application_exists(app):
        raise MissingApplicationError(
            app, remedy or INSTALL_HINTS.get(app, f"Install {app} and make sure it is on your PATH")
        )
