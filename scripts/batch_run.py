#!/usr/bin/env python3
"""SentinelHub — Batch Scan Runner.

Runs every request in a JSON file through one orchestrator, concurrently,
and writes the envelopes plus the history summary to an output directory.

Request file format:
    [
        {"kind": "repository-scan", "input": "octo/widgets", "notify_email": "sec@example.com"},
        {"kind": "bucket-scan", "input": {"bucket_name": "assets", "region": "eu-west-1"}}
    ]

Usage:
    python scripts/batch_run.py requests.json
    python scripts/batch_run.py requests.json --concurrency 2 --output-dir output/
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# Ensure project root is on sys.path so 'sentinelhub' is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

# Load .env before importing sentinelhub (pydantic-settings reads env at import)
load_dotenv(PROJECT_ROOT / ".env")

from sentinelhub.pipeline.orchestrator import Orchestrator  # noqa: E402


def setup_logging(log_dir: Path) -> None:
    """Configure logging to both console and a dated log file."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"batch_{date.today().isoformat()}.log"

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


async def run_batch(requests: list[dict], concurrency: int) -> tuple[list[dict], dict]:
    """Run all requests, at most ``concurrency`` at a time.

    Returns:
        (envelopes in request order, history summary)
    """
    orchestrator = Orchestrator()
    semaphore = asyncio.Semaphore(concurrency)

    async def _one(request: dict) -> dict:
        async with semaphore:
            try:
                response = await orchestrator.execute_pipeline(request)
            except ValueError as e:
                return {"success": False, "error": str(e), "request": request}
            return response.to_dict()

    envelopes = await asyncio.gather(*(_one(r) for r in requests))
    return list(envelopes), orchestrator.get_pipeline_history(limit=len(requests))


def print_summary(envelopes: list[dict]) -> None:
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Batch complete: %d requests", len(envelopes))
    for envelope in envelopes:
        if "pipeline_id" not in envelope:
            logger.info("  rejected  %s", envelope["error"])
            continue
        metrics = (envelope.get("reports") or {}).get("security_metrics") or {}
        logger.info(
            "  %s  %-9s  findings=%s  risk=%s",
            envelope["pipeline_id"],
            envelope["status"],
            metrics.get("total_findings", "n/a"),
            metrics.get("risk_level", "n/a"),
        )
    logger.info("=" * 60)


def save_results(envelopes: list[dict], history: dict, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    output_file = output_dir / f"batch_{date.today().isoformat()}.json"
    with open(output_file, "w", encoding="utf-8") as f:
        json.dump({"results": envelopes, "history": history}, f, indent=2, default=str)
    logging.getLogger(__name__).info("Results saved to %s", output_file)
    return output_file


def main() -> int:
    """Main entry point for the batch runner."""
    parser = argparse.ArgumentParser(
        description="SentinelHub — run a batch of scan requests",
    )
    parser.add_argument("requests", type=Path, help="JSON file with a list of requests")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=4,
        help="Maximum concurrent pipeline runs (default: 4)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(PROJECT_ROOT / "output"),
        help="JSON results directory (default: output/)",
    )
    args = parser.parse_args()

    setup_logging(PROJECT_ROOT / "logs")
    logger = logging.getLogger(__name__)

    try:
        requests = json.loads(args.requests.read_text(encoding="utf-8"))
        if not isinstance(requests, list):
            raise ValueError("request file must contain a JSON list")
    except (OSError, ValueError) as e:
        logger.error("Cannot read requests: %s", e)
        return 2

    logger.info("Starting batch of %d requests (concurrency=%d)", len(requests), args.concurrency)

    try:
        loop = asyncio.new_event_loop()
        try:
            envelopes, history = loop.run_until_complete(
                run_batch(requests, max(1, args.concurrency))
            )
        finally:
            loop.close()

        print_summary(envelopes)
        save_results(envelopes, history, Path(args.output_dir))
        return 0 if all(e.get("success") for e in envelopes) else 1

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error("Batch run failed: %s", e, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
