"""Dashboard aggregates derived from a finished scan.

Pure local computation: no I/O, safe to re-run on a stored run.
"""

from typing import Any

from sentinelhub.findings import (
    category_breakdown,
    derive_risk_level,
    findings_frame,
    severity_histogram,
)
from sentinelhub.pipeline.models import utc_now

# Weights for the 0-100 security score; each finding subtracts its weight
_SEVERITY_PENALTY = {"critical": 25, "high": 10, "medium": 4, "low": 1, "info": 0}


def security_score(histogram: dict[str, int]) -> int:
    penalty = sum(_SEVERITY_PENALTY[severity] * count for severity, count in histogram.items())
    return max(0, 100 - penalty)


def build_report(
    scan_results: dict[str, Any],
    insights: dict[str, Any] | None = None,
    conversation_export: dict[str, Any] | None = None,
    audit_log: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Severity histogram, category breakdown and headline metrics.

    Args:
        scan_results: Output of the scan stage
        insights: Output of the enrich stage, if it succeeded
        conversation_export: Transcript of the run's conversation session, if any
        audit_log: Stage transitions and timings of the run so far

    Returns:
        ``{security_metrics, severity_histogram, category_breakdown, trend,
        export_data, generated_at}``
    """
    frame = findings_frame(scan_results)
    histogram = severity_histogram(frame)
    derived = derive_risk_level(histogram)

    if insights and insights.get("extracted"):
        risk_level, risk_source = insights["risk_level"], "ai"
    else:
        risk_level, risk_source = derived, "findings"

    return {
        "security_metrics": {
            "total_findings": int(len(frame)),
            "critical": histogram["critical"],
            "high": histogram["high"],
            "medium": histogram["medium"],
            "low": histogram["low"],
            "info": histogram["info"],
            "security_score": security_score(histogram),
            "risk_level": risk_level,
            "risk_source": risk_source,
            "categories_affected": int(frame["category"].nunique()),
        },
        "severity_histogram": histogram,
        "category_breakdown": category_breakdown(frame),
        # Single-run report: no prior runs to compare against yet
        "trend": {"direction": "unknown", "data_points": []},
        "export_data": {
            "conversation_export": conversation_export,
            "audit_log": audit_log,
        },
        "generated_at": utc_now().isoformat(),
    }
