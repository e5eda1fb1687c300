"""Example 1: Offline Pipeline Run

This example runs the full scan -> enrich -> converse -> persist -> report
pipeline without any network access:

- a local pattern scanner stands in for the scanner gateway
- no AI provider is configured, so enrichment degrades and the
  conversation falls back to a structured overview
- snapshots are written to a temporary directory

In production, the default back-ends call the gateway configured in .env.
"""

import asyncio
import json
import re
import tempfile
from typing import Any

from sentinelhub.ai import ConversationService, TextGenerator
from sentinelhub.findings import group_by_category
from sentinelhub.pipeline import Orchestrator, RequestKind
from sentinelhub.pipeline.scanners import ScanBackend
from sentinelhub.storage import SnapshotStore

SAMPLE_CODE = """
const token = "sk_live_0123456789";
app.get("/run", (req, res) => {
  eval(req.query.cmd);
  res.redirect(req.query.next);
});
"""

PATTERNS = [
    (r"eval\(", "security", "critical", "eval() on request data"),
    (r"sk_live_\w+", "secrets", "high", "Hard-coded API key"),
    (r"res\.redirect\(req\.", "security", "medium", "Open redirect"),
]


class PatternBackend(ScanBackend):
    """Regex scanner used in place of the gateway."""

    kind = RequestKind.CODE_ANALYSIS

    def __init__(self) -> None:
        super().__init__(client_factory=None)

    async def scan(self, payload: Any, options: dict[str, Any]) -> dict[str, Any]:
        issues = []
        for line_no, line in enumerate(payload.splitlines(), 1):
            for pattern, category, severity, message in PATTERNS:
                if re.search(pattern, line):
                    issues.append({
                        "category": category,
                        "severity": severity,
                        "message": message,
                        "line": line_no,
                    })
        findings = group_by_category(issues)
        return {
            "type": self.kind.value,
            "target": options.get("filename", "snippet.js"),
            "findings": findings,
            "summary": {"total": len(issues)},
        }


async def run_example(snapshot_dir: str) -> None:
    generator = TextGenerator(provider=None)
    orchestrator = Orchestrator(
        generator=generator,
        conversations=ConversationService(generator),
        store=SnapshotStore(snapshot_dir),
        scan_backends={RequestKind.CODE_ANALYSIS: PatternBackend()},
        notify_enabled=False,
    )

    # Step 1: Execute the pipeline
    print("Step 1: Running pipeline...")
    response = await orchestrator.execute_pipeline({
        "kind": "code-analysis",
        "input": SAMPLE_CODE,
        "options": {"filename": "server.js"},
    })
    print(f"  ✓ {response.pipeline_id}: {response.status}")
    for stage, status in response.per_stage_status.items():
        print(f"      {stage}: {status}")
    if response.degraded:
        print(f"  ! {response.degraded['message']}")
    print()

    # Step 2: Report
    print("Step 2: Report")
    metrics = response.reports["security_metrics"]
    print(f"  ✓ Findings: {metrics['total_findings']}, risk level {metrics['risk_level']}")
    print(f"  ✓ Security score: {metrics['security_score']}")
    print()

    # Step 3: Follow-up question
    print("Step 3: Asking about the results...")
    answer = await orchestrator.chat_about_results(response.pipeline_id, "What should I fix first?")
    print(f"  ✓ {answer['message']}")
    print()

    # Step 4: Registry queries
    print("Step 4: History and health")
    print(json.dumps(orchestrator.get_pipeline_history(limit=5), indent=2))
    print(json.dumps(orchestrator.get_health(), indent=2))


def main():
    """Run offline pipeline example."""
    print("=" * 60)
    print("SentinelHub - Example 1: Offline Pipeline Run")
    print("=" * 60)
    print()

    with tempfile.TemporaryDirectory() as snapshot_dir:
        asyncio.run(run_example(snapshot_dir))


if __name__ == '__main__':
    main()
