from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Optional

from app.config import AppConfig, load_config, setup_logging
from app.domain.exceptions import ConfigurationError, RepositoryError
from app.domain.watering_job import build_manual_job
from app.enums import JobStatus
from app.utils.time import epoch_millis

logger = logging.getLogger(__name__)

DEFAULT_TEST_POTS = [1]
DEFAULT_TEST_DURATION = 10


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="irrigation-worker", description="Irrigation dispatch worker")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run the worker until SIGINT/SIGTERM (default)")
    subparsers.add_parser("check-queue", help="Show queue counts and recent completed jobs")

    test_job = subparsers.add_parser("test-job", help="Queue a manual watering job for hardware checks")
    test_job.add_argument(
        "--pot",
        dest="pots",
        type=int,
        action="append",
        help="Pot number 1-5; repeat for several pots (default: 1)",
    )
    test_job.add_argument(
        "--duration",
        type=int,
        default=DEFAULT_TEST_DURATION,
        help=f"Seconds to water (default: {DEFAULT_TEST_DURATION})",
    )
    test_job.add_argument("--fertilizer", action="store_true", help="Also run the fertilizer pump")
    return parser


def _install_excepthook() -> None:
    def _log_thread_exception(args: threading.ExceptHookArgs) -> None:
        thread_name = args.thread.name if args.thread is not None else "unknown"
        logger.error(
            "Uncaught exception in thread %s",
            thread_name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    threading.excepthook = _log_thread_exception


def run_worker(config: AppConfig) -> int:
    """Run until a shutdown signal arrives."""
    from app.services.container import ServiceContainer

    stop_event = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Received %s, shutting down...", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    _install_excepthook()

    try:
        container = ServiceContainer.build(config)
    except Exception:
        logger.exception("Worker failed to start")
        return 1

    try:
        container.start()
        logger.info("Worker running (press Ctrl+C to stop)")
        while not stop_event.is_set():
            stop_event.wait(1.0)
    finally:
        container.shutdown()
    return 0


def check_queue(config: AppConfig) -> int:
    from app.services.container import build_queue_repository

    database, repo = build_queue_repository(config)
    try:
        counts = repo.get_counts()
        print(f"Queue database: {database.database_path}")
        for status in JobStatus:
            print(f"  {status.value:<10} {counts.get(status.value, 0)}")

        recent = repo.get_recent(JobStatus.COMPLETED, limit=5)
        print("Recent completed jobs:")
        if not recent:
            print("  (none)")
        for job in recent:
            result = job.get("result") if isinstance(job.get("result"), dict) else {}
            print(
                f"  {job['job_id']}  finished {job.get('finished_at')}  "
                f"pots={result.get('pots')} elapsed={result.get('elapsed_seconds')}s"
            )
        return 0
    except RepositoryError as e:
        logger.error("Queue check failed: %s", e)
        return 1
    finally:
        database.close_all()


def queue_test_job(config: AppConfig, pots: Optional[list[int]], duration: int, fertilizer: bool = False) -> int:
    from app.services.container import build_queue_repository

    pots = pots or list(DEFAULT_TEST_POTS)
    invalid = [pot for pot in pots if not 1 <= pot <= 5]
    if invalid:
        print(f"Invalid pot number(s): {invalid} (must be 1-5)")
        return 2
    if duration <= 0:
        print("Duration must be positive")
        return 2

    database, repo = build_queue_repository(config)
    try:
        job = build_manual_job(pots, duration, epoch_ms=epoch_millis(), pump_fertilizer=fertilizer)
        repo.enqueue(job)
        print(f"Queued {job.job_id}: pots={job.pots} duration={job.duration_seconds}s")
        return 0
    except RepositoryError as e:
        logger.error("Failed to queue test job: %s", e)
        return 1
    finally:
        database.close_all()


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``irrigation-worker`` console script."""
    args = _build_parser().parse_args(argv)
    command = args.command or "run"

    try:
        if command == "run":
            config = load_config()
        else:
            # Queue-only commands need no store credentials
            config = AppConfig()
    except ConfigurationError as e:
        setup_logging(debug=False)
        logger.error("Configuration error: %s", e)
        return 1

    setup_logging(debug=config.DEBUG, log_dir=config.log_dir)

    if command == "check-queue":
        return check_queue(config)
    if command == "test-job":
        return queue_test_job(config, args.pots, args.duration, args.fertilizer)
    return run_worker(config)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
