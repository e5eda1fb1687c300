"""Finding helpers — counting, grouping and aggregating scan findings.

Scan results share one shape regardless of back-end:

    {
        "type": "code-analysis",
        "target": "app.js",
        "findings": {"security": [{"severity": "high", "message": ...}, ...]},
        "summary": {...},
    }

Findings are treated as opaque dicts and
unknown severities fall back to "info".
"""

from collections.abc import Iterable, Iterator
from typing import Any

import pandas as pd

SEVERITY_ORDER = ("critical", "high", "medium", "low", "info")

# Scanner-specific labels mapped onto the shared scale
_SEVERITY_ALIASES = {
    "error": "high",
    "warning": "medium",
    "warn": "medium",
    "moderate": "medium",
    "informational": "info",
    "note": "info",
    "notice": "info",
}

_FRAME_COLUMNS = ["category", "severity", "message", "rule"]


def normalize_severity(value: Any) -> str:
    """Map a raw severity label onto SEVERITY_ORDER."""
    if value is None:
        return "info"
    label = str(value).strip().lower()
    label = _SEVERITY_ALIASES.get(label, label)
    return label if label in SEVERITY_ORDER else "info"


def iter_findings(scan_results: dict[str, Any] | None) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield (category, finding) pairs from a scan result.

    Non-list categories (e.g. summary counters that some scanners mix into
    ``findings``) are skipped.
    """
    if not scan_results:
        return
    findings = scan_results.get("findings") or {}
    if not isinstance(findings, dict):
        return
    for category, items in findings.items():
        if not isinstance(items, list):
            continue
        for item in items:
            if isinstance(item, dict):
                yield category, item


def total_findings(scan_results: dict[str, Any] | None) -> int:
    """Total number of findings across all categories."""
    return sum(1 for _ in iter_findings(scan_results))


def group_by_category(
    issues: Iterable[dict[str, Any]],
    default_category: str = "security",
) -> dict[str, list[dict[str, Any]]]:
    """Group a flat issue list into ``{category: [issue, ...]}``.

    The category comes from ``issue["category"]`` or ``issue["type"]``.
    Severities are normalized on the way through.
    """
    grouped: dict[str, list[dict[str, Any]]] = {}
    for issue in issues:
        if not isinstance(issue, dict):
            continue
        category = str(issue.get("category") or issue.get("type") or default_category).lower()
        normalized = {**issue, "severity": normalize_severity(issue.get("severity"))}
        grouped.setdefault(category, []).append(normalized)
    return grouped


def findings_frame(scan_results: dict[str, Any] | None) -> pd.DataFrame:
    """Flatten findings into a DataFrame with one row per finding.

    Columns: category, severity, message, rule.
    """
    rows = [
        {
            "category": category,
            "severity": normalize_severity(item.get("severity")),
            "message": str(item.get("message") or item.get("type") or ""),
            "rule": str(item.get("rule") or item.get("ruleId") or item.get("id") or ""),
        }
        for category, item in iter_findings(scan_results)
    ]
    return pd.DataFrame(rows, columns=_FRAME_COLUMNS)


def severity_histogram(frame: pd.DataFrame) -> dict[str, int]:
    """Count findings per severity. Every severity key is always present."""
    if frame.empty:
        return {severity: 0 for severity in SEVERITY_ORDER}
    counts = frame["severity"].value_counts()
    return {severity: int(counts.get(severity, 0)) for severity in SEVERITY_ORDER}


def category_breakdown(frame: pd.DataFrame) -> list[dict[str, Any]]:
    """Per-category totals with a severity split, largest category first."""
    if frame.empty:
        return []

    table = pd.crosstab(frame["category"], frame["severity"])
    rows: list[dict[str, Any]] = []
    for category, counts in table.iterrows():
        entry: dict[str, Any] = {"category": str(category), "count": int(counts.sum())}
        for severity in SEVERITY_ORDER:
            entry[severity] = int(counts.get(severity, 0))
        rows.append(entry)

    rows.sort(key=lambda r: (-r["count"], r["category"]))
    return rows


def derive_risk_level(histogram: dict[str, int]) -> str:
    """Overall risk label from the worst severity present."""
    if histogram.get("critical"):
        return "Critical"
    if histogram.get("high"):
        return "High"
    if histogram.get("medium"):
        return "Medium"
    if histogram.get("low") or histogram.get("info"):
        return "Low"
    return "None"


def key_findings(scan_results: dict[str, Any] | None, per_category: int = 2, limit: int = 6) -> list[str]:
    """Short "CATEGORY: message" lines for critical and high findings."""
    lines: list[str] = []
    taken: dict[str, int] = {}
    for category, item in iter_findings(scan_results):
        if normalize_severity(item.get("severity")) not in ("critical", "high"):
            continue
        if taken.get(category, 0) >= per_category:
            continue
        taken[category] = taken.get(category, 0) + 1
        lines.append(f"{category.upper()}: {item.get('message') or item.get('type') or 'issue'}")
    return lines[:limit]


def remediation_effort(total: int) -> str:
    """Rough fix-effort bucket from the number of findings."""
    if total > 20:
        return "High (2-3 weeks)"
    if total > 10:
        return "Medium (1-2 weeks)"
    return "Low (3-5 days)"


def compliance_impact(scan_results: dict[str, Any] | None) -> list[str]:
    """Compliance frameworks named by any finding, first-seen order, no repeats."""
    frameworks: dict[str, None] = {}
    for _, item in iter_findings(scan_results):
        tags = item.get("compliance") or []
        if isinstance(tags, str):
            tags = [tags]
        for tag in tags:
            frameworks.setdefault(str(tag), None)
    return list(frameworks)


def business_risk(critical_count: int) -> str:
    if critical_count > 5:
        return "High - Immediate action required"
    if critical_count > 0:
        return "Medium - Address within 48 hours"
    return "Low - Monitor and address in next cycle"
