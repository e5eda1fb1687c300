"""Exception taxonomy for pipeline runs.

StageError is what every stage executor raises. The orchestrator narrows it to
FatalStageError (scan stage, aborts the run) or DegradedStageError (later
stages, recorded and skipped past). NotificationError never leaves the
watchdog.
"""


class StageError(Exception):
    """A stage executor failed.

    Args:
        stage_name: Name of the failing stage
        cause: Underlying exception or message
    """

    def __init__(self, stage_name: str, cause: BaseException | str) -> None:
        self.stage_name = stage_name
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)


class FatalStageError(StageError):
    """Failure of a stage the run cannot continue without."""


class DegradedStageError(StageError):
    """Failure of a best-effort stage; the run continues."""


class NotificationError(Exception):
    """Timeout notice could not be delivered."""


class RunNotFoundError(LookupError):
    """No active or historical run carries the given id."""

    def __init__(self, pipeline_id: str) -> None:
        self.pipeline_id = pipeline_id
        super().__init__(f"Pipeline run not found: {pipeline_id}")


class InvalidTransitionError(RuntimeError):
    """A stage or run status change would violate monotonic ordering."""
