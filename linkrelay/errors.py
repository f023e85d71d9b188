"""Exception taxonomy and process exit codes."""

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_LOCKED = 3
EXIT_STOP_FAILED = 4


class RelayError(Exception):
    """Base exception for link-relay errors."""


class StartupError(RelayError):
    """Raised when the relay cannot start (bad credentials, unreachable provider, bad basedir)."""


class BucketError(RelayError):
    """Raised when a bucket cannot be fetched or published."""

    def __init__(self, message: str, bucket: str | None = None):
        super().__init__(message)
        self.bucket = bucket


class InstanceLockedError(RelayError):
    """Raised when another instance already holds the lock."""

    def __init__(self, message: str, pid: int | None = None):
        super().__init__(message)
        self.pid = pid


class StopFailedError(RelayError):
    """Raised when a running instance does not exit after being signalled."""

    def __init__(self, message: str, pid: int | None = None):
        super().__init__(message)
        self.pid = pid
