"""Tests for the response envelope and report aggregates."""

from sentinelhub.pipeline.models import Err, Ok, PipelineRun, RequestKind
from sentinelhub.pipeline.report import build_report, security_score
from sentinelhub.pipeline.response import build_response, degradation_notice

SCAN = {
    "type": "bucket-scan",
    "findings": {"access": [{"severity": "high", "message": "Public ACL"}]},
}


def run_with(outcomes: dict, failed: bool = False) -> PipelineRun:
    run = PipelineRun(kind=RequestKind.BUCKET_SCAN, input="assets")
    for name, outcome in outcomes.items():
        run.begin_stage(name)
        run.finish_stage(name, outcome)
    if failed:
        run.mark_failed()
    else:
        run.mark_completed()
    return run


class TestBuildResponse:

    def test_full_success(self):
        run = run_with({
            "scan": Ok(SCAN),
            "enrich": Ok({"risk_level": "High"}),
            "converse": Ok({"session_id": "sess_1", "can_chat": True}),
            "persist": Ok({"storage_id": "x"}),
            "report": Ok({"security_metrics": {"total_findings": 1}}),
        })

        response = build_response(run)

        assert response.status == "completed"
        assert response.success
        assert response.can_retry is False
        assert response.scan_results is SCAN
        assert response.enrichment_insights == {"risk_level": "High"}
        assert response.storage == {"storage_id": "x"}
        assert response.degraded is None
        assert set(response.per_stage_status.values()) == {"completed"}

    def test_failed_scan(self):
        run = run_with({"scan": Err("scanner unavailable")}, failed=True)

        envelope = build_response(run).to_dict()

        assert envelope["status"] == "failed"
        assert envelope["success"] is False
        assert envelope["can_retry"] is True
        assert envelope["error"] == "scanner unavailable"
        assert envelope["scan_results"] is None
        assert envelope["per_stage_status"] == {
            "scan": "failed", "enrich": "pending", "converse": "pending",
            "persist": "pending", "report": "pending",
        }
        assert "enrichment_insights" not in envelope
        assert "degraded" not in envelope

    def test_degraded_stages(self):
        run = run_with({
            "scan": Ok(SCAN),
            "enrich": Err("quota exceeded"),
            "converse": Err("session store down"),
            "persist": Ok({"storage_id": "x"}),
            "report": Ok({}),
        })

        response = build_response(run)
        envelope = response.to_dict()

        assert response.status == "completed"
        assert response.can_retry is False
        assert "enrichment_insights" not in envelope
        assert envelope["conversation"] == {"can_chat": False, "error": "session store down"}
        assert envelope["degraded"]["stages"] == ["enrich", "converse"]
        assert envelope["degraded"]["errors"]["enrich"] == "quota exceeded"

    def test_rederiving_from_stored_run_is_stable(self):
        run = run_with({"scan": Ok(SCAN), "enrich": Err("x"), "converse": Ok({}), "persist": Ok({}), "report": Ok({})})
        assert build_response(run) == build_response(run)

    def test_no_notice_when_clean(self):
        run = run_with({"scan": Ok(SCAN)})
        assert degradation_notice(run) is None


class TestBuildReport:

    def test_metrics_from_findings(self):
        report = build_report(SCAN)

        metrics = report["security_metrics"]
        assert metrics["total_findings"] == 1
        assert metrics["high"] == 1
        assert metrics["risk_level"] == "High"
        assert metrics["risk_source"] == "findings"
        assert report["category_breakdown"][0]["category"] == "access"

    def test_unextracted_ai_risk_ignored(self):
        report = build_report(SCAN, {"risk_level": "Medium", "extracted": False})
        assert report["security_metrics"]["risk_level"] == "High"

    def test_empty_scan(self):
        report = build_report({"findings": {}})
        assert report["security_metrics"]["total_findings"] == 0
        assert report["security_metrics"]["risk_level"] == "None"
        assert report["security_metrics"]["security_score"] == 100
        assert report["category_breakdown"] == []

    def test_security_score_floor(self):
        assert security_score({"critical": 10, "high": 0, "medium": 0, "low": 0, "info": 0}) == 0
        assert security_score({"critical": 0, "high": 1, "medium": 2, "low": 1, "info": 5}) == 81

    def test_categories_and_export_block(self):
        audit = {"pipeline_id": "pipeline_x", "stages": {}}
        conversation = {"session_id": "sess_1", "message_count": 1}

        report = build_report(SCAN, conversation_export=conversation, audit_log=audit)

        assert report["security_metrics"]["categories_affected"] == 1
        assert report["export_data"] == {"conversation_export": conversation, "audit_log": audit}

    def test_export_block_empty_by_default(self):
        report = build_report({"findings": {}})
        assert report["security_metrics"]["categories_affected"] == 0
        assert report["export_data"] == {"conversation_export": None, "audit_log": None}
