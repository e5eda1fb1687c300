"""Orchestrator — sequences the stages of a security pipeline run.

    scan -> enrich -> converse -> persist -> report

Stages run strictly one after another. A failed scan aborts the run; any
later stage may fail without affecting the others. Every outcome is recorded
on the run as Ok/Err before the next stage starts.

Usage:
    orchestrator = Orchestrator()
    response = await orchestrator.execute_pipeline(
        {"kind": "code-analysis", "input": source, "notify_email": "dev@example.com"}
    )
    print(response.status, response.per_stage_status)
"""

import asyncio
import logging
from typing import Any

from sentinelhub.ai.conversation import ConversationService
from sentinelhub.ai.generator import TextGenerator
from sentinelhub.clients.notifier import TimeoutNotifier
from sentinelhub.config import settings
from sentinelhub.errors import DegradedStageError, FatalStageError, RunNotFoundError, StageError
from sentinelhub.pipeline.models import (
    Err,
    Ok,
    PipelineRequest,
    PipelineRun,
    RequestKind,
    StageOutcome,
    StageStatus,
    utc_now,
)
from sentinelhub.pipeline.registry import RunRegistry
from sentinelhub.pipeline.response import PipelineResponse, build_response
from sentinelhub.pipeline.scanners import ScanBackend, default_backends, log_scan_summary
from sentinelhub.pipeline.stages import StageContext, StageExecutor, build_default_stages
from sentinelhub.pipeline.watchdog import TimeoutWatchdog
from sentinelhub.storage import SnapshotStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs pipeline requests and answers queries about past runs.

    Every collaborator is optional; missing ones are built from ``settings``.

    Args:
        registry: Run registry (default: new registry sized by ``history_limit``)
        stages: Stage executors in pipeline order (default: the five standard stages)
        generator: Text generator for enrichment and conversations
        conversations: Conversation service shared by the converse stage and chat
        store: Snapshot store for the persist stage
        scan_backends: Scan back-ends keyed by request kind
        notifier: Timeout notice sender
        timeout_seconds: Watchdog delay (default: ``pipeline_timeout_seconds``)
        notify_enabled: Whether timeout notices are sent at all
    """

    def __init__(
        self,
        registry: RunRegistry | None = None,
        stages: list[StageExecutor] | None = None,
        generator: TextGenerator | None = None,
        conversations: ConversationService | None = None,
        store: SnapshotStore | None = None,
        scan_backends: dict[RequestKind, ScanBackend] | None = None,
        notifier: TimeoutNotifier | None = None,
        timeout_seconds: float | None = None,
        notify_enabled: bool | None = None,
    ) -> None:
        # ConversationService defines __len__, so test for None rather than truthiness
        if registry is None:
            registry = RunRegistry(history_limit=settings.history_limit)
        if generator is None:
            generator = TextGenerator.from_settings(settings)
        if conversations is None:
            conversations = ConversationService(generator)
        if notifier is None:
            notifier = TimeoutNotifier(base_url=settings.gateway_base_url)

        self.registry = registry
        self.generator = generator
        self.conversations = conversations
        self.notifier = notifier
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.pipeline_timeout_seconds
        )
        self.notify_enabled = settings.notify_enabled if notify_enabled is None else notify_enabled
        self.store = store if store is not None else SnapshotStore(settings.snapshot_dir)

        if stages is None:
            stages = build_default_stages(
                backends=scan_backends if scan_backends is not None else default_backends(settings),
                generator=generator,
                conversations=conversations,
                store=self.store,
            )
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Stage names must be unique: {names}")
        self.stages = list(stages)

    # --- Execution ---

    async def execute_pipeline(self, request: PipelineRequest | dict[str, Any]) -> PipelineResponse:
        """Run every stage for one request and return the envelope.

        Stage failures never raise here: a failed scan yields a ``failed``
        envelope, later failures a ``completed`` one with a degradation notice.

        Raises:
            ValueError: If a request mapping is malformed
        """
        if isinstance(request, dict):
            request = PipelineRequest.from_dict(request)

        run = PipelineRun(
            kind=request.kind,
            input=request.input,
            options=request.options,
            stage_names=[stage.name for stage in self.stages],
        )
        self.registry.register(run)
        run.watchdog = self._arm_watchdog(run, request.notify_email)
        logger.info("Pipeline %s started (%s)", run.id, run.kind.value)

        context = StageContext(
            pipeline_id=run.id,
            kind=run.kind,
            input=run.input,
            options=run.options,
            audit=run.audit_log,
        )
        try:
            for stage in self.stages:
                outcome = await self._run_stage(run, stage, context)
                if isinstance(outcome, Ok):
                    context.results[stage.name] = outcome.payload
                    if stage.name == "scan":
                        log_scan_summary(run.id, outcome.payload)
                elif stage.fatal:
                    self._finalize(run, failed=True)
                    return build_response(run)
            self._finalize(run, failed=False)
        except BaseException as e:
            # Cancellation or a registry fault; the run must still leave the active set
            if not run.is_terminal:
                reason = "cancelled" if isinstance(e, asyncio.CancelledError) else (str(e) or type(e).__name__)
                for name, state in run.stages.items():
                    if state.status is StageStatus.RUNNING:
                        run.finish_stage(name, Err(reason))
                self._finalize(run, failed=True)
            raise

        return build_response(run)

    async def _run_stage(
        self,
        run: PipelineRun,
        stage: StageExecutor,
        context: StageContext,
    ) -> StageOutcome:
        run.begin_stage(stage.name)
        logger.info("Pipeline %s stage %s started", run.id, stage.name)
        try:
            payload = await stage.run(context)
        except Exception as e:
            cause = e.cause if isinstance(e, StageError) else e
            if stage.fatal:
                error: StageError = FatalStageError(stage.name, cause)
                logger.error("Pipeline %s stage %s failed, aborting run: %s", run.id, stage.name, error)
            else:
                error = DegradedStageError(stage.name, cause)
                logger.warning("Pipeline %s stage %s degraded: %s", run.id, stage.name, error)
            outcome: StageOutcome = Err(str(error))
        else:
            outcome = Ok(payload)
            logger.info("Pipeline %s stage %s completed", run.id, stage.name)

        run.finish_stage(stage.name, outcome)
        return outcome

    def _finalize(self, run: PipelineRun, failed: bool) -> None:
        """Terminal transition: disarm, mark, move to history."""
        if run.watchdog is not None:
            run.watchdog.disarm()
        if failed:
            run.mark_failed()
        else:
            run.mark_completed()
        evicted = self.registry.complete(run.id)
        logger.info(
            "Pipeline %s %s in %dms",
            run.id, run.status.value, run.metrics["total_duration_ms"],
        )
        if evicted is not None:
            self._release(evicted)

    def _release(self, run: PipelineRun) -> None:
        """Free what a run evicted from history still holds."""
        session_id = self._session_id(run)
        if session_id is not None and self.conversations.close(session_id):
            logger.debug("Closed conversation %s of evicted pipeline %s", session_id, run.id)

    @staticmethod
    def _session_id(run: PipelineRun) -> str | None:
        converse = run.stages.get("converse")
        if converse is not None and isinstance(converse.outcome, Ok) and isinstance(converse.results, dict):
            return converse.results.get("session_id")
        return None

    def _arm_watchdog(self, run: PipelineRun, notify_email: str | None) -> TimeoutWatchdog:
        async def on_timeout() -> None:
            if not notify_email or not self.notify_enabled:
                logger.info("Pipeline %s has no timeout contact, notice skipped", run.id)
                return
            logger.warning(
                "Pipeline %s still running after %.0fs, sending timeout notice to %s",
                run.id, self.timeout_seconds, notify_email,
            )
            await self.notifier.notify_timeout(
                recipient=notify_email,
                pipeline_id=run.id,
                scan_type=run.kind.value,
                started_at=run.started_at,
            )

        return TimeoutWatchdog(run.id, self.timeout_seconds, on_timeout).arm()

    # --- Queries ---

    def get_pipeline_status(self, pipeline_id: str) -> dict[str, Any] | None:
        """Snapshot of an active or finished run, or None if unknown."""
        run = self.registry.get(pipeline_id)
        return run.to_dict() if run is not None else None

    def get_pipeline_history(self, limit: int = 10) -> dict[str, Any]:
        """Most recent finished runs, newest first."""
        runs = self.registry.list_history(limit)
        return {
            "history": [self._history_entry(run) for run in runs],
            "total": self.registry.history_count,
            "limit": limit,
        }

    async def list_stored_runs(self) -> list[str]:
        """Ids of runs with a persisted snapshot, including past processes."""
        return await self.store.list_ids()

    async def get_stored_results(self, pipeline_id: str) -> dict[str, Any] | None:
        """Persisted snapshot of a run plus its findings table as records.

        Returns None when nothing was stored under ``pipeline_id``.
        """
        snapshot = await self.store.load(pipeline_id)
        if snapshot is None:
            return None
        findings = await self.store.load_findings(pipeline_id)
        return {**snapshot, "findings": findings.to_dict(orient="records")}

    @staticmethod
    def _history_entry(run: PipelineRun) -> dict[str, Any]:
        response = build_response(run)
        return {
            "pipeline_id": run.id,
            "kind": run.kind.value,
            "status": run.status.value,
            "started_at": run.started_at.isoformat(),
            "ended_at": run.ended_at.isoformat() if run.ended_at else None,
            "execution_time_ms": response.execution_time_ms,
            "per_stage_status": response.per_stage_status,
            "error": response.error,
        }

    async def chat_about_results(self, pipeline_id: str, message: str) -> dict[str, Any]:
        """Continue the conversation opened for a run.

        Raises:
            RunNotFoundError: If no run carries ``pipeline_id``
        """
        run = self.registry.get(pipeline_id)
        if run is None:
            raise RunNotFoundError(pipeline_id)

        session_id = self._session_id(run)
        if session_id is None or self.conversations.get_session(session_id) is None:
            logger.info("No conversation session for pipeline %s, answering with fallback", pipeline_id)
            return ConversationService.fallback_response(session_id)

        response = await self.conversations.chat(session_id, message)
        return {**response, "pipeline_id": pipeline_id}

    def get_health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "active_runs": self.registry.active_count,
            "active_pipelines": [run.id for run in self.registry.active_runs()],
            "history_size": self.registry.history_count,
            "history_limit": self.registry.history_limit,
            "stages": [stage.name for stage in self.stages],
            "ai_provider": self.generator.provider,
            "ai_configured": self.generator.configured,
            "timeout_seconds": self.timeout_seconds,
            "notifications_enabled": self.notify_enabled,
            "timestamp": utc_now().isoformat(),
        }
