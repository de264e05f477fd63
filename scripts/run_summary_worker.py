"""Entry point for the merge summary worker."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from calendar_merge.adapters.repository_factory import create_repository
from calendar_merge.adapters.summarizer import create_summarizer
from calendar_merge.config.logging_config import get_logger
from calendar_merge.config.settings import get_settings
from calendar_merge.observability.metrics import ensure_metrics_exporter
from calendar_merge.services.task_queue_factory import (
    TaskQueueUnavailableError,
    resolve_task_queue,
)
from calendar_merge.workers import SummaryWorker
from scripts import worker_runtime

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the merge summary worker")
    parser.add_argument(
        "--poll-interval-seconds",
        type=float,
        default=5.0,
        help="Seconds to wait between lease attempts when the queue is idle",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=8,
        help="Tasks leased per iteration",
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Process one batch of tasks and exit",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Start the Prometheus exporter",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    worker_runtime.initialize_logging(settings, json_logs=args.json_logs)
    if args.metrics:
        ensure_metrics_exporter()

    shutdown = worker_runtime.ShutdownFlag()
    shutdown.install()

    repository = create_repository(settings)
    try:
        task_queue = resolve_task_queue(repository)
    except TaskQueueUnavailableError as exc:
        logger.error("task_queue_unavailable", error=str(exc))
        return 1

    worker = SummaryWorker(
        task_queue=task_queue,
        summarizer=create_summarizer(settings, repository),
        audit_sink=repository,
        batch_size=args.batch_size,
    )

    worker_runtime.run_worker_loop(
        worker,
        shutdown,
        poll_interval=args.poll_interval_seconds,
        run_once=args.run_once,
    )

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
