"""Error types for ratifact."""


class RatifactError(Exception):
    """Base class for all ratifact errors."""


class PathAccessError(RatifactError):
    """A path could not be read or written.

    Recorded per artifact; never aborts a scan or a batch job.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class PrivilegeError(RatifactError):
    """An elevated operation was rejected or the credential was invalid."""


class ResourceExhausted(RatifactError):
    """The OS refused more filesystem watches (watch descriptor limit)."""


class InconsistentState(RatifactError):
    """A store write lost against a newer logical-time write."""

    def __init__(self, path: str, attempted: int, current: int):
        super().__init__(
            f"Stale write for {path}: logical time {attempted} <= stored {current}"
        )
        self.path = path
        self.attempted = attempted
        self.current = current


class SubprocessFailure(RatifactError):
    """A rebuild or privileged helper exited with a nonzero status."""

    def __init__(self, command: list[str], returncode: int, output: str = ""):
        super().__init__(f"{' '.join(command)} exited with status {returncode}")
        self.command = command
        self.returncode = returncode
        self.output = output


class StoreUnavailable(RatifactError):
    """The persistent store cannot be opened or written.

    This is the only error treated as fatal for the whole session.
    """


class InvalidPolicy(RatifactError):
    """Retention policy or scan configuration failed validation."""
