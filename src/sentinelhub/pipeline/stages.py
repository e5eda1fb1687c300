"""Stage executors — scan, enrich, converse, persist, report.

Every stage exposes ``run(context)``, which calls the stage's ``execute`` and
wraps any failure in StageError(stage_name, cause). Only the scan stage is
fatal; the orchestrator reads ``fatal`` to decide whether a failure aborts the
run.

Stages read what earlier stages produced from ``context.results`` and never
mutate it; the orchestrator adds each Ok payload after the stage returns.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sentinelhub.ai.conversation import ConversationService
from sentinelhub.ai.generator import TextGenerator
from sentinelhub.ai.insights import build_enrichment_prompt, extract_insights
from sentinelhub.errors import StageError
from sentinelhub.pipeline.models import RequestKind
from sentinelhub.pipeline.report import build_report
from sentinelhub.pipeline.scanners import ScanBackend
from sentinelhub.storage import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    """Read-only view of a run handed to each stage."""

    pipeline_id: str
    kind: RequestKind
    input: Any
    options: dict[str, Any] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    # Snapshot of stage transitions and timings, supplied by the orchestrator
    audit: Callable[[], dict[str, Any]] | None = None

    @property
    def scan_results(self) -> dict[str, Any]:
        scan = self.results.get("scan")
        if not isinstance(scan, dict):
            raise StageError("scan", "no scan results available")
        return scan


class StageExecutor:
    """Base class for pipeline stages.

    Attributes:
        name: Stage name, unique within a pipeline
        fatal: Whether failure aborts the run
    """

    name: str = ""
    fatal: bool = False

    async def execute(self, context: StageContext) -> Any:
        raise NotImplementedError

    async def run(self, context: StageContext) -> Any:
        """Execute, converting any failure into StageError."""
        try:
            return await self.execute(context)
        except StageError as e:
            if e.stage_name == self.name:
                raise
            raise StageError(self.name, e) from e
        except Exception as e:
            raise StageError(self.name, e) from e


class ScanStage(StageExecutor):
    """Dispatches to the back-end registered for the request kind."""

    name = "scan"
    fatal = True

    def __init__(self, backends: dict[RequestKind, ScanBackend]) -> None:
        self.backends = backends

    async def execute(self, context: StageContext) -> dict[str, Any]:
        backend = self.backends.get(context.kind)
        if backend is None:
            raise StageError(self.name, f"no scan back-end for kind '{context.kind.value}'")
        return await backend.scan(context.input, context.options)


class EnrichStage(StageExecutor):
    """Risk assessment and remediation plan from the text generator."""

    name = "enrich"

    def __init__(self, generator: TextGenerator) -> None:
        self.generator = generator

    async def execute(self, context: StageContext) -> dict[str, Any]:
        scan = context.scan_results
        text = await self.generator.generate(build_enrichment_prompt(scan))
        insights = extract_insights(text, scan)
        if not insights["extracted"]:
            logger.info("No explicit risk level in AI analysis for %s, using default", context.pipeline_id)
        return insights


class ConverseStage(StageExecutor):
    """Opens a conversation session keyed to the scan results."""

    name = "converse"

    def __init__(self, conversations: ConversationService) -> None:
        self.conversations = conversations

    async def execute(self, context: StageContext) -> dict[str, Any]:
        return await self.conversations.start_session(context.scan_results)


class PersistStage(StageExecutor):
    """Writes a snapshot of everything accumulated so far."""

    name = "persist"

    def __init__(self, store: SnapshotStore) -> None:
        self.store = store

    async def execute(self, context: StageContext) -> dict[str, Any]:
        return await self.store.store(context.pipeline_id, context.kind.value, dict(context.results))


class ReportStage(StageExecutor):
    """Dashboard aggregates plus an export block; no external calls."""

    name = "report"

    def __init__(self, conversations: ConversationService | None = None) -> None:
        self.conversations = conversations

    def _conversation_export(self, context: StageContext) -> dict[str, Any] | None:
        converse = context.results.get("converse")
        if self.conversations is None or not isinstance(converse, dict):
            return None
        session_id = converse.get("session_id")
        if session_id is None or self.conversations.get_session(session_id) is None:
            return None
        return self.conversations.export(session_id)

    async def execute(self, context: StageContext) -> dict[str, Any]:
        return build_report(
            context.scan_results,
            context.results.get("enrich"),
            conversation_export=self._conversation_export(context),
            audit_log=context.audit() if context.audit is not None else None,
        )


def build_default_stages(
    backends: dict[RequestKind, ScanBackend],
    generator: TextGenerator,
    conversations: ConversationService,
    store: SnapshotStore,
) -> list[StageExecutor]:
    """The five stages in pipeline order."""
    return [
        ScanStage(backends),
        EnrichStage(generator),
        ConverseStage(conversations),
        PersistStage(store),
        ReportStage(conversations),
    ]
