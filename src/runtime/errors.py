"""Exceptions raised while executing a program."""

ABEND_PREFIX = "IGZ9999S RUNTIME TERMINATED ABNORMALLY"


class RuntimeAbend(Exception):
    """Fatal runtime error that terminates the run."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code} {message}")

    @property
    def report(self) -> str:
        return f"{ABEND_PREFIX}: {self}"


class RuntimeStateError(Exception):
    """Raised when the host drives the runtime incorrectly (e.g. a stale resume token)."""
    pass
