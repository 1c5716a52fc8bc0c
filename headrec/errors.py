"""Error taxonomy for headrec."""


class HeadrecError(Exception):
    """Base class for all headrec errors."""


class MissingApplicationError(HeadrecError):
    """A required executable is not installed."""

    def __init__(self, application, remedy):
        self.application = application
        self.remedy = remedy
        super().__init__(f"{application} not found on your system. {remedy}")


class SpawnError(HeadrecError):
    """A background process could not be launched."""

    def __init__(self, command, reason):
        self.command = command
        super().__init__(f"Failed to start {command[0] if command else '<empty command>'}: {reason}")


class SaveError(HeadrecError):
    """The recorded artifact could not be moved to its destination."""

    def __init__(self, source, destination, reason):
        self.source = source
        self.destination = destination
        super().__init__(f"Failed to save {source} to {destination}: {reason}")


class SessionStateError(HeadrecError):
    """An operation was attempted in a state that does not allow it."""
