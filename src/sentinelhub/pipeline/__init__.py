"""Security pipeline orchestration — Scan → Enrich → Converse → Persist → Report.

Components:
- Orchestrator: sequences stages, applies the timeout policy, builds envelopes
- RunRegistry: active runs plus bounded most-recent-first history
- TimeoutWatchdog: one-shot observational timer per run
- Stage executors: one per stage; the scan stage dispatches on request kind
"""

from sentinelhub.pipeline.models import (
    STAGE_ORDER,
    Err,
    Ok,
    PipelineRequest,
    PipelineRun,
    RequestKind,
    RunStatus,
    StageStatus,
)
from sentinelhub.pipeline.orchestrator import Orchestrator
from sentinelhub.pipeline.registry import RunRegistry
from sentinelhub.pipeline.response import PipelineResponse, build_response
from sentinelhub.pipeline.stages import StageContext, StageExecutor
from sentinelhub.pipeline.watchdog import TimeoutWatchdog

__all__ = [
    "STAGE_ORDER",
    "Err",
    "Ok",
    "Orchestrator",
    "PipelineRequest",
    "PipelineResponse",
    "PipelineRun",
    "RequestKind",
    "RunRegistry",
    "RunStatus",
    "StageContext",
    "StageExecutor",
    "StageStatus",
    "TimeoutWatchdog",
    "build_response",
]
