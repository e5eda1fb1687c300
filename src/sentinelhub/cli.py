"""Command-line interface for the SentinelHub security pipeline.

Usage:
    sentinelhub run code-analysis --input app.js
    sentinelhub run repository-scan --target octo/widgets --notify dev@example.com
    sentinelhub run bucket-scan --input bucket.json --format json
"""

import argparse
import asyncio
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from sentinelhub import __version__
from sentinelhub.config import settings
from sentinelhub.pipeline.models import RequestKind
from sentinelhub.pipeline.orchestrator import Orchestrator
from sentinelhub.pipeline.response import PipelineResponse

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=1)


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser.

    Returns:
        Configured ArgumentParser with all commands and arguments.
    """
    parser = argparse.ArgumentParser(
        prog="sentinelhub",
        description="SentinelHub — security scan pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sentinelhub run code-analysis --input app.js
  sentinelhub run repository-scan --target octo/widgets
  sentinelhub run bucket-scan --input bucket.json --format json
  sentinelhub snapshots
  sentinelhub show pipeline_0123abcd --format json
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the full pipeline for one scan request",
        description="Scan, enrich, open a conversation, persist and report",
    )
    run_parser.add_argument(
        "kind",
        type=str,
        choices=[kind.value for kind in RequestKind],
        help="Request type",
    )
    source = run_parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--input",
        type=Path,
        help="File holding the scan input (.json files are parsed, others read as text)",
    )
    source.add_argument(
        "--target",
        type=str,
        help="Inline scan input, e.g. owner/repo or a bucket name",
    )
    run_parser.add_argument(
        "--notify",
        type=str,
        default=None,
        metavar="EMAIL",
        help="Contact for the long-running scan notice",
    )
    run_parser.add_argument(
        "--format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    # snapshots command
    subparsers.add_parser(
        "snapshots",
        help="List runs with a stored snapshot",
    )

    # show command
    show_parser = subparsers.add_parser(
        "show",
        help="Show the stored snapshot of a run",
    )
    show_parser.add_argument(
        "pipeline_id",
        type=str,
        help="Pipeline id printed by the run command",
    )
    show_parser.add_argument(
        "--format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    # version command
    subparsers.add_parser(
        "version",
        help="Show version information",
    )

    return parser


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context.

    Spins up a new event loop in a dedicated thread to avoid conflicts
    with any existing event loop.
    """
    def _target():
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()

    future = _executor.submit(_target)
    return future.result()


def load_input(path: Path) -> Any:
    """Read scan input from a file; JSON files are parsed."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return text


def format_text(response: PipelineResponse) -> str:
    """Human-readable summary of a pipeline response."""
    lines = [
        f"Pipeline {response.pipeline_id}: {response.status.upper()} ({response.execution_time_ms}ms)",
        "Stages: " + ", ".join(f"{name}={status}" for name, status in response.per_stage_status.items()),
    ]
    if response.error:
        lines.append(f"Error: {response.error}")
    if response.reports:
        metrics = response.reports["security_metrics"]
        lines.append(
            f"Findings: {metrics['total_findings']} "
            f"(critical={metrics['critical']} high={metrics['high']} "
            f"medium={metrics['medium']} low={metrics['low']})"
        )
        lines.append(f"Risk level: {metrics['risk_level']}")
    if response.enrichment_insights:
        plan = response.enrichment_insights.get("remediation_plan") or []
        if plan:
            lines.append("Remediation:")
            lines.extend(f"  {i}. {step}" for i, step in enumerate(plan, 1))
    if response.degraded:
        lines.append(response.degraded["message"])
    return "\n".join(lines)


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 if the run completed, 1 if it failed, 2 on bad input)
    """
    try:
        payload = load_input(args.input) if args.input is not None else args.target
    except (OSError, ValueError) as e:
        print(f"Error: cannot read input: {e}", file=sys.stderr)
        return 2

    try:
        orchestrator = Orchestrator()
        response = _run_async(
            orchestrator.execute_pipeline({
                "kind": args.kind,
                "input": payload,
                "notify_email": args.notify,
            })
        )
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error("Pipeline failed: %s", e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps(response.to_dict(), indent=2, default=str))
    else:
        print(format_text(response))

    return 0 if response.success else 1


def cmd_snapshots(args: argparse.Namespace) -> int:
    """List stored snapshot ids, oldest id first."""
    ids = _run_async(Orchestrator().list_stored_runs())
    if not ids:
        print(f"No stored snapshots in {settings.snapshot_dir}")
        return 0
    for pipeline_id in ids:
        print(pipeline_id)
    return 0


def format_snapshot(stored: dict[str, Any]) -> str:
    """Human-readable view of a stored run."""
    lines = [
        f"Pipeline {stored['pipeline_id']} ({stored['kind']}), stored {stored['stored_at']}",
        "Stages stored: " + (", ".join(stored["data"]) or "none"),
    ]
    insights = stored["data"].get("enrich")
    if isinstance(insights, dict) and insights.get("risk_level"):
        lines.append(f"Risk level: {insights['risk_level']}")
    if stored["findings"]:
        table = pd.DataFrame(stored["findings"])[["severity", "category", "message"]]
        lines.append(table.to_string(index=False))
    else:
        lines.append("No findings")
    return "\n".join(lines)


def cmd_show(args: argparse.Namespace) -> int:
    """Print a stored snapshot; exit code 1 if there is none."""
    stored = _run_async(Orchestrator().get_stored_results(args.pipeline_id))
    if stored is None:
        print(f"Error: no stored snapshot for {args.pipeline_id}", file=sys.stderr)
        return 1
    if args.format == "json":
        print(json.dumps(stored, indent=2, default=str))
    else:
        print(format_snapshot(stored))
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Execute the version command."""
    print(f"SentinelHub v{__version__}")
    print("Security scan pipeline")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "snapshots":
        return cmd_snapshots(args)
    elif args.command == "show":
        return cmd_show(args)
    elif args.command == "version":
        return cmd_version(args)
    else:
        parser.print_help()
        return 0


def cli_entry() -> None:
    """Console script entry point for setuptools."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
