"""Run and stage state model.

A PipelineRun owns an ordered map of StageState objects. Transitions only move
forward:

    stage:  PENDING -> RUNNING -> COMPLETED | FAILED
    run:    RUNNING -> COMPLETED | FAILED

and once the run is terminal no stage may move at all. Each finished stage
keeps a tagged outcome, Ok(payload) or Err(message), so callers branch on the
tag instead of on the presence of an exception.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from sentinelhub.errors import InvalidTransitionError

if TYPE_CHECKING:
    from sentinelhub.pipeline.watchdog import TimeoutWatchdog

STAGE_ORDER = ("scan", "enrich", "converse", "persist", "report")


class RequestKind(Enum):
    """Scan request type; selects the scan back-end."""

    CODE_ANALYSIS = "code-analysis"
    REPOSITORY_SCAN = "repository-scan"
    BUCKET_SCAN = "bucket-scan"


class RunStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Ok:
    """Successful stage outcome."""

    payload: Any


@dataclass(frozen=True)
class Err:
    """Failed stage outcome."""

    message: str


StageOutcome = Ok | Err


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int(round((end - start).total_seconds() * 1000))


def new_pipeline_id() -> str:
    return f"pipeline_{uuid.uuid4().hex}"


@dataclass
class StageState:
    """Status, result and timing of one stage within one run."""

    status: StageStatus = StageStatus.PENDING
    results: Any = None
    error: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return _elapsed_ms(self.started_at, self.ended_at)

    @property
    def outcome(self) -> StageOutcome | None:
        """Tagged outcome once the stage has finished, else None."""
        if self.status is StageStatus.COMPLETED:
            return Ok(self.results)
        if self.status is StageStatus.FAILED:
            return Err(self.error or "unknown error")
        return None

    def start(self) -> None:
        if self.status is not StageStatus.PENDING:
            raise InvalidTransitionError(f"Cannot start stage in status {self.status.value}")
        self.status = StageStatus.RUNNING
        self.started_at = utc_now()

    def finish(self, outcome: StageOutcome) -> None:
        if self.status is not StageStatus.RUNNING:
            raise InvalidTransitionError(f"Cannot finish stage in status {self.status.value}")
        self.ended_at = utc_now()
        if isinstance(outcome, Ok):
            self.status = StageStatus.COMPLETED
            self.results = outcome.payload
        else:
            self.status = StageStatus.FAILED
            self.error = outcome.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "results": self.results,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class PipelineRequest:
    """Incoming scan request.

    Attributes:
        kind: Request type
        input: Opaque payload for the scan back-end
        options: Per-request options passed to every stage
        notify_email: Contact for the long-running scan notice
    """

    kind: RequestKind
    input: Any
    options: dict[str, Any] = field(default_factory=dict)
    notify_email: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineRequest":
        """Build from a loosely-typed mapping (``type`` is accepted for ``kind``).

        Raises:
            ValueError: On a missing/unknown kind or missing input
        """
        raw_kind = data.get("kind") or data.get("type")
        if raw_kind is None or data.get("input") in (None, ""):
            raise ValueError("Request requires 'kind' and 'input'")
        try:
            kind = raw_kind if isinstance(raw_kind, RequestKind) else RequestKind(str(raw_kind))
        except ValueError:
            valid = ", ".join(k.value for k in RequestKind)
            raise ValueError(f"Unknown request kind '{raw_kind}' (expected one of: {valid})") from None
        return cls(
            kind=kind,
            input=data["input"],
            options=dict(data.get("options") or {}),
            notify_email=data.get("notify_email") or data.get("notifyEmail"),
        )


@dataclass
class PipelineRun:
    """One end-to-end execution of the pipeline."""

    kind: RequestKind
    input: Any
    options: dict[str, Any] = field(default_factory=dict)
    stage_names: Iterable[str] = STAGE_ORDER
    id: str = field(default_factory=new_pipeline_id)
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    stages: dict[str, StageState] = field(init=False)
    watchdog: "TimeoutWatchdog | None" = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.stage_names = tuple(self.stage_names)
        self.stages = {name: StageState() for name in self.stage_names}

    @property
    def is_terminal(self) -> bool:
        return self.status is not RunStatus.RUNNING

    @property
    def ended_at(self) -> datetime | None:
        return self.completed_at or self.failed_at

    def _guard(self) -> None:
        if self.is_terminal:
            raise InvalidTransitionError(f"Run {self.id} is {self.status.value}; stages are frozen")

    def begin_stage(self, name: str) -> StageState:
        self._guard()
        state = self.stages[name]
        state.start()
        return state

    def finish_stage(self, name: str, outcome: StageOutcome) -> StageState:
        self._guard()
        state = self.stages[name]
        state.finish(outcome)
        return state

    def mark_completed(self) -> None:
        self._guard()
        self.status = RunStatus.COMPLETED
        self.completed_at = utc_now()

    def mark_failed(self) -> None:
        self._guard()
        self.status = RunStatus.FAILED
        self.failed_at = utc_now()

    @property
    def metrics(self) -> dict[str, Any]:
        end = self.ended_at or utc_now()
        return {
            "total_duration_ms": _elapsed_ms(self.started_at, end),
            "per_stage_duration_ms": {
                name: state.duration_ms
                for name, state in self.stages.items()
                if state.duration_ms is not None
            },
        }

    def stage_statuses(self) -> dict[str, str]:
        return {name: state.status.value for name, state in self.stages.items()}

    def audit_log(self) -> dict[str, Any]:
        """Stage transitions and timings without the stage payloads."""
        stages = {}
        for name, state in self.stages.items():
            entry = state.to_dict()
            del entry["results"]
            stages[name] = entry
        return {
            "pipeline_id": self.id,
            "kind": self.kind.value,
            "stages": stages,
            "metrics": self.metrics,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }

    def to_dict(self) -> dict[str, Any]:
        """Status snapshot; stage results are included as-is."""
        return {
            "pipeline_id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
            "stages": {name: state.to_dict() for name, state in self.stages.items()},
            "metrics": self.metrics,
        }
