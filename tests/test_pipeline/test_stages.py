"""Tests for the stage executors."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from sentinelhub.ai.generator import TextGenerationError
from sentinelhub.errors import StageError
from sentinelhub.pipeline.models import RequestKind
from sentinelhub.pipeline.stages import (
    ConverseStage,
    EnrichStage,
    PersistStage,
    ReportStage,
    ScanStage,
    StageContext,
    build_default_stages,
)
from sentinelhub.storage import SnapshotStore

SCAN = {
    "type": "code-analysis",
    "target": "app.js",
    "findings": {
        "security": [
            {"severity": "critical", "message": "eval usage"},
            {"severity": "medium", "message": "weak random"},
            {"severity": "medium", "message": "open redirect"},
        ],
    },
    "summary": {"total": 3},
}


def make_context(results: dict | None = None, kind: RequestKind = RequestKind.CODE_ANALYSIS) -> StageContext:
    return StageContext(pipeline_id="pipeline_t", kind=kind, input="code", results=results or {})


class TestScanStage:

    @pytest.mark.asyncio
    async def test_dispatches_by_kind(self):
        code_backend = MagicMock(scan=AsyncMock(return_value=SCAN))
        bucket_backend = MagicMock(scan=AsyncMock())
        stage = ScanStage({
            RequestKind.CODE_ANALYSIS: code_backend,
            RequestKind.BUCKET_SCAN: bucket_backend,
        })

        result = await stage.run(make_context())

        assert result is SCAN
        code_backend.scan.assert_awaited_once_with("code", {})
        bucket_backend.scan.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_backend(self):
        stage = ScanStage({})
        with pytest.raises(StageError, match="no scan back-end") as exc_info:
            await stage.run(make_context())
        assert exc_info.value.stage_name == "scan"

    @pytest.mark.asyncio
    async def test_backend_error_wrapped(self):
        backend = MagicMock(scan=AsyncMock(side_effect=ConnectionError("scanner unavailable")))
        stage = ScanStage({RequestKind.CODE_ANALYSIS: backend})

        with pytest.raises(StageError) as exc_info:
            await stage.run(make_context())

        assert exc_info.value.stage_name == "scan"
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert str(exc_info.value) == "scanner unavailable"

    def test_only_scan_is_fatal(self):
        stages = build_default_stages({}, MagicMock(), MagicMock(), MagicMock())
        assert [s.name for s in stages] == ["scan", "enrich", "converse", "persist", "report"]
        assert [s.fatal for s in stages] == [True, False, False, False, False]


class TestEnrichStage:

    @pytest.mark.asyncio
    async def test_extracts_insights(self):
        generator = MagicMock(generate=AsyncMock(return_value="Risk level: High\n1. Remove the eval call"))
        result = await EnrichStage(generator).run(make_context({"scan": SCAN}))

        assert result["risk_level"] == "High"
        assert result["remediation_plan"] == ["Remove the eval call"]
        prompt = generator.generate.await_args.args[0]
        assert "eval usage" in prompt

    @pytest.mark.asyncio
    async def test_generation_failure_raises_stage_error(self):
        generator = MagicMock(generate=AsyncMock(side_effect=TextGenerationError("not configured")))

        with pytest.raises(StageError) as exc_info:
            await EnrichStage(generator).run(make_context({"scan": SCAN}))

        assert exc_info.value.stage_name == "enrich"

    @pytest.mark.asyncio
    async def test_missing_scan_results_reported_as_enrich_failure(self):
        generator = MagicMock(generate=AsyncMock())

        with pytest.raises(StageError) as exc_info:
            await EnrichStage(generator).run(make_context())

        assert exc_info.value.stage_name == "enrich"
        generator.generate.assert_not_awaited()


class TestConverseAndPersist:

    @pytest.mark.asyncio
    async def test_converse_opens_session(self):
        conversations = MagicMock(start_session=AsyncMock(return_value={"session_id": "sess_1", "can_chat": True}))
        result = await ConverseStage(conversations).run(make_context({"scan": SCAN}))

        assert result["session_id"] == "sess_1"
        conversations.start_session.assert_awaited_once_with(SCAN)

    @pytest.mark.asyncio
    async def test_persist_snapshots_accumulated_results(self, tmp_path):
        store = SnapshotStore(tmp_path)
        results = {"scan": SCAN, "enrich": {"risk_level": "High"}}
        handle = await PersistStage(store).run(make_context(results))

        assert handle["storage_id"] == "pipeline_t"
        assert handle["findings_count"] == 3
        loaded = await store.load("pipeline_t")
        assert loaded["data"]["enrich"] == {"risk_level": "High"}

    @pytest.mark.asyncio
    async def test_persist_failure_wrapped(self, mocker):
        store = mocker.Mock()
        store.store = mocker.AsyncMock(side_effect=OSError("disk full"))

        with pytest.raises(StageError, match="disk full") as exc_info:
            await PersistStage(store).run(make_context({"scan": SCAN}))

        assert exc_info.value.stage_name == "persist"


class TestReportStage:

    @pytest.mark.asyncio
    async def test_report_from_scan(self):
        report = await ReportStage().run(make_context({"scan": SCAN}))

        assert report["security_metrics"]["total_findings"] == 3
        assert report["security_metrics"]["risk_level"] == "Critical"
        assert report["severity_histogram"]["medium"] == 2
        assert report["trend"] == {"direction": "unknown", "data_points": []}

    @pytest.mark.asyncio
    async def test_report_prefers_extracted_ai_risk(self):
        enrich = {"risk_level": "High", "extracted": True}
        report = await ReportStage().run(make_context({"scan": SCAN, "enrich": enrich}))

        assert report["security_metrics"]["risk_level"] == "High"
        assert report["security_metrics"]["risk_source"] == "ai"
