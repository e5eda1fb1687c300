"""Enrichment prompt and best-effort insight extraction.

The model answers in free text. We pull two things out of it with simple line
patterns: an overall risk label and a short remediation list. This is a
heuristic, not a parser. When nothing matches, the risk falls back to
DEFAULT_RISK_LEVEL and the plan is empty; callers read ``extracted`` to tell a
real label from the fallback.
"""

import json
import re
from typing import Any

from sentinelhub.findings import (
    business_risk,
    category_breakdown,
    compliance_impact,
    findings_frame,
    key_findings,
    remediation_effort,
    severity_histogram,
    total_findings,
)

RISK_LEVELS = ("Critical", "High", "Medium", "Low")
DEFAULT_RISK_LEVEL = "Medium"

# "Risk level: High", "**Overall risk:** critical", "Risk Assessment - LOW"
_EXPLICIT_RISK = re.compile(
    r"\b(?:overall\s+)?risk(?:\s+(?:level|rating|assessment))?\s*\**\s*[:\-–]\s*\**\s*"
    r"(critical|high|medium|low)\b",
    re.IGNORECASE,
)
# "critical risk", "high-risk"
_ADJECTIVE_RISK = re.compile(r"\b(critical|high|medium|low)[\s-]+risk\b", re.IGNORECASE)
_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+(.*\S)\s*$")
_MARKDOWN = re.compile(r"[*_`]+")
_PLAN_HEADING = re.compile(r"remediat|fix|action|step|recommend", re.IGNORECASE)


def build_enrichment_prompt(scan_results: dict[str, Any], max_findings: int = 15) -> str:
    """Render the vulnerability-analysis prompt for a scan result."""
    frame = findings_frame(scan_results)
    histogram = severity_histogram(frame)
    categories = category_breakdown(frame)

    listed = frame.head(max_findings)
    lines = [
        f"- [{row.severity.upper()}] {row.category}: {row.message}" + (f" ({row.rule})" if row.rule else "")
        for row in listed.itertuples(index=False)
    ]
    if len(frame) > max_findings:
        lines.append(f"- ... and {len(frame) - max_findings} more")

    return (
        "VULNERABILITY ANALYSIS REQUEST\n\n"
        "CONTEXT:\n"
        f"- Scan Type: {scan_results.get('type') or 'Security Assessment'}\n"
        f"- Target: {scan_results.get('target') or 'Application'}\n"
        f"- Severity counts: {json.dumps(histogram)}\n"
        f"- Categories: {', '.join(c['category'] for c in categories) or 'none'}\n\n"
        "FINDINGS:\n"
        f"{chr(10).join(lines) or '- No findings reported'}\n\n"
        "Please provide:\n"
        "1. Overall risk level as a line 'Risk level: <Critical|High|Medium|Low>'\n"
        "2. Business impact in two sentences\n"
        "3. A numbered list of prioritized remediation steps\n\n"
        "Focus on practical, actionable guidance."
    )


def extract_risk_level(text: str) -> str | None:
    """Find an explicit risk label in ``text``; None when there is none."""
    match = _EXPLICIT_RISK.search(text) or _ADJECTIVE_RISK.search(text)
    if match:
        return match.group(1).capitalize()
    return None


def _clean(item: str) -> str:
    return _MARKDOWN.sub("", item).strip()


def extract_remediation_plan(text: str, limit: int = 5) -> list[str]:
    """Collect list items, preferring those under a remediation heading."""
    under_heading: list[str] = []
    anywhere: list[str] = []
    in_plan = False

    for line in text.splitlines():
        match = _LIST_ITEM.match(line)
        if match:
            item = _clean(match.group(1))
            if len(item) <= 10 or item.lower().startswith("risk level"):
                continue
            anywhere.append(item)
            if in_plan:
                under_heading.append(item)
        elif line.strip():
            in_plan = bool(_PLAN_HEADING.search(line))

    return (under_heading or anywhere)[:limit]


def extract_insights(text: str, scan_results: dict[str, Any] | None = None) -> dict[str, Any]:
    """Turn model output into the enrichment payload.

    Effort, compliance and business-risk fields are computed from the
    findings, not from the model text, so they are present even when nothing
    could be extracted.

    Args:
        text: Raw model output
        scan_results: Scan the analysis was based on

    Returns:
        ``{risk_level, remediation_plan, analysis, extracted, key_findings,
        estimated_effort, compliance_impact, business_risk}``
    """
    risk_level = extract_risk_level(text)
    histogram = severity_histogram(findings_frame(scan_results))
    return {
        "risk_level": risk_level or DEFAULT_RISK_LEVEL,
        "remediation_plan": extract_remediation_plan(text),
        "analysis": text,
        "extracted": risk_level is not None,
        "key_findings": key_findings(scan_results),
        "estimated_effort": remediation_effort(total_findings(scan_results)),
        "compliance_impact": compliance_impact(scan_results),
        "business_risk": business_risk(histogram["critical"]),
    }
