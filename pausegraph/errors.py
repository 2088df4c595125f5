"""
Error taxonomy for pausegraph.

Every error the engine raises on its own account derives from
PausegraphError. Faults raised by user step functions are never wrapped:
they reach the caller unchanged.

Note that a step pausing itself (StepInterrupt, see graph.step) is not an
error and does not appear here.
"""


class PausegraphError(Exception):
    """Base class for errors raised by the engine, stores and inspector."""


class GraphValidationError(PausegraphError):
    """The graph definition is invalid. Raised once, at build time."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid graph: {'; '.join(self.errors)}")


class ThreadNotFoundError(PausegraphError, LookupError):
    """Read or resume against a thread id that has no snapshots."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Thread not found: {thread_id}")


class NoStateToResumeError(PausegraphError):
    """Resume requested with no input for a thread that has no history."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(
            f"Nothing to resume for thread '{thread_id}': no prior snapshot and no input"
        )


class SchemaViolationError(PausegraphError, ValueError):
    """A state patch writes fields outside the graph's schema or with bad values."""

    def __init__(self, message: str, fields: list[str] | None = None):
        self.fields = list(fields or [])
        super().__init__(message)


class ConcurrentWriteConflictError(PausegraphError):
    """
    Optimistic-concurrency loss on append.

    The writer assumed the thread's latest sequence number was `expected`
    but the store holds `actual`. Reload the latest snapshot and retry.
    """

    def __init__(self, thread_id: str, expected: int, actual: int):
        self.thread_id = thread_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrent write on thread '{thread_id}': "
            f"expected latest sequence {expected}, store has {actual}"
        )


class RoutingError(PausegraphError):
    """A conditional router returned a destination it did not declare."""


class StepTimeoutError(PausegraphError, TimeoutError):
    """A step ran longer than its configured timeout."""

    def __init__(self, step: str, timeout: float):
        self.step = step
        self.timeout = timeout
        super().__init__(f"Step '{step}' timed out after {timeout}s")


class StepLimitExceededError(PausegraphError):
    """An invocation executed more steps than EngineConfig.max_steps allows."""

    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        super().__init__(f"Step limit reached ({max_steps}); possible routing cycle")
