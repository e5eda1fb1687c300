"""Response envelope built from a finished run.

``build_response`` is a pure function of a terminal run's state. Timings are
read from the run, not the clock, so re-deriving the envelope from a run in
history gives the same result the caller first received.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from sentinelhub.pipeline.models import Err, Ok, PipelineRun, RunStatus

# Stage name -> envelope field for the stages whose payload is surfaced as-is
_PAYLOAD_FIELDS = {
    "scan": "scan_results",
    "enrich": "enrichment_insights",
    "converse": "conversation",
    "report": "reports",
}


@dataclass
class PipelineResponse:
    """Unified success/error envelope for one run.

    Attributes:
        pipeline_id: Run identifier
        status: ``completed`` or ``failed``
        execution_time_ms: Wall time from start to terminal transition
        scan_results: Scan stage payload (None if the scan failed)
        enrichment_insights: Enrich stage payload, omitted when it failed
        conversation: Session handle, or ``{"can_chat": False, ...}`` on failure
        reports: Report stage payload, omitted when it failed
        storage: Persist stage handle, omitted when it failed
        per_stage_status: Stage name -> status string
        can_retry: True exactly when the run failed
        error: Fatal error message for failed runs
        degraded: Degradation notice when a best-effort stage failed
    """

    pipeline_id: str
    status: str
    execution_time_ms: int
    scan_results: dict[str, Any] | None
    per_stage_status: dict[str, str]
    can_retry: bool
    enrichment_insights: dict[str, Any] | None = None
    conversation: dict[str, Any] | None = None
    reports: dict[str, Any] | None = None
    storage: dict[str, Any] | None = None
    error: str | None = None
    degraded: dict[str, Any] | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED.value

    def to_dict(self) -> dict[str, Any]:
        """Envelope as a plain mapping; optional fields are dropped when unset."""
        data = asdict(self)
        data["success"] = self.success
        optional = ("enrichment_insights", "conversation", "reports", "storage", "error", "degraded")
        return {k: v for k, v in data.items() if not (k in optional and v is None)}


def degradation_notice(run: PipelineRun) -> dict[str, Any] | None:
    """``{stages, errors, message}`` for failed best-effort stages, or None."""
    errors = {
        name: outcome.message
        for name, state in run.stages.items()
        if name != "scan" and isinstance(outcome := state.outcome, Err)
    }
    if not errors:
        return None
    stages = list(errors)
    return {
        "stages": stages,
        "errors": errors,
        "message": f"Completed with degraded stages: {', '.join(stages)}",
    }


def build_response(run: PipelineRun) -> PipelineResponse:
    """Derive the envelope from a terminal run."""
    payloads: dict[str, Any] = {}
    for name, envelope_field in _PAYLOAD_FIELDS.items():
        state = run.stages.get(name)
        if state is not None and isinstance(outcome := state.outcome, Ok):
            payloads[envelope_field] = outcome.payload

    converse = run.stages.get("converse")
    if converse is not None and isinstance(outcome := converse.outcome, Err):
        payloads["conversation"] = {"can_chat": False, "error": outcome.message}

    persist = run.stages.get("persist")
    storage = persist.results if persist is not None and isinstance(persist.outcome, Ok) else None

    failed = run.status is RunStatus.FAILED
    error = None
    if failed:
        error = next(
            (state.error for state in run.stages.values() if state.error),
            "Pipeline run failed",
        )

    metrics = run.metrics
    return PipelineResponse(
        pipeline_id=run.id,
        status=run.status.value,
        execution_time_ms=metrics["total_duration_ms"],
        scan_results=payloads.get("scan_results"),
        per_stage_status=run.stage_statuses(),
        can_retry=failed,
        enrichment_insights=payloads.get("enrichment_insights"),
        conversation=payloads.get("conversation"),
        reports=payloads.get("reports"),
        storage=storage,
        error=error,
        degraded=None if failed else degradation_notice(run),
        metrics=metrics,
    )
