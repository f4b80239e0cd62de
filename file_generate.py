"""CLI entrypoint for filegen.

Commands:

- run:     create a job for an interface and generate the file now
- submit:  create a PENDING job (optionally with an idempotency key)
- poll:    claim and run PENDING jobs, once or continuously
- restart: resume a STOPPED (or crashed PROCESSING) job from its checkpoint
- stop:    request a running job to stop after its current chunk
- status:  show a job, or all jobs for an interface
- verify:  check a published file against its .sha sidecar
"""

import argparse
import json
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from filegen import __version__
from filegen.config import load_config
from filegen.exceptions import FileGenError
from filegen.finalizer import Finalizer
from filegen.jobs import JobStatus, build_job_store
from filegen.launcher import JobLauncher
from filegen.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="file-generate",
        description="Generate restart-safe, checksummed interface files from a database",
    )
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose (DEBUG level) logging"
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Suppress all output except errors"
    )
    parser.add_argument(
        "--log-format",
        choices=["human", "json", "simple"],
        default=None,
        help="Log format (default: human). Can also set via FILEGEN_LOG_FORMAT env var",
    )
    parser.add_argument(
        "--version", action="version", version=f"filegen {__version__}"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Create a job and generate the file now")
    run.add_argument("interface", help="Interface type, e.g. ORDER_INTERFACE")
    run.add_argument("--user", dest="created_by", help="Recorded as the job creator")

    submit = sub.add_parser("submit", help="Create a PENDING job")
    submit.add_argument("interface")
    submit.add_argument("--user", dest="created_by")
    submit.add_argument("--idempotency-key", help="Return the existing job if this key was used before")

    poll = sub.add_parser("poll", help="Launch PENDING jobs")
    poll.add_argument("--forever", action="store_true", help="Keep polling every poll_interval_seconds")
    poll.add_argument("--limit", type=int, default=None, help="Maximum jobs to claim per poll")

    restart = sub.add_parser("restart", help="Resume a stopped job from its checkpoint")
    restart.add_argument("job_id")

    stop = sub.add_parser("stop", help="Stop a job after its current chunk")
    stop.add_argument("job_id")
    stop.add_argument("--reason", default=None)

    status = sub.add_parser("status", help="Show job status")
    group = status.add_mutually_exclusive_group(required=True)
    group.add_argument("--job", dest="job_id")
    group.add_argument("--interface")
    status.add_argument("--history", action="store_true", help="Include transition history")

    verify = sub.add_parser("verify", help="Verify a published file against its .sha sidecar")
    verify.add_argument("path", type=Path)

    return parser


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run_command(args: argparse.Namespace) -> int:
    if args.command == "verify":
        ok = Finalizer(None).verify(args.path)
        print(f"{args.path}: {'OK' if ok else 'FAILED'}")
        return 0 if ok else 1

    if not args.config:
        logger.error("--config is required for '%s'", args.command)
        return 2

    config = load_config(args.config)
    store = build_job_store(config.settings.job_store_file)

    if args.command == "status":
        if args.job_id:
            job = store.get(args.job_id)
            if job is None:
                logger.error("Job %s not found", args.job_id)
                return 1
            payload = job.to_dict()
            payload["status_description"] = job.status.describe()
            if args.history:
                payload["history"] = [a.to_dict() for a in store.history(job.job_id)]
            _print_json(payload)
        else:
            _print_json([j.to_dict() for j in store.list_jobs(args.interface.upper())])
        return 0

    with JobLauncher(config, store) as launcher:
        if args.command == "run":
            job = launcher.submit(args.interface, created_by=args.created_by, launch=False)
            job = launcher.run_now(job.job_id)
            _print_json(job.to_dict())
            return 0 if job.status == JobStatus.COMPLETED else 1

        if args.command == "submit":
            job = launcher.submit(
                args.interface,
                created_by=args.created_by,
                idempotency_key=args.idempotency_key,
                launch=False,
            )
            _print_json(job.to_dict())
            return 0

        if args.command == "poll":
            if args.forever:
                stop_event = threading.Event()
                try:
                    launcher.run_forever(stop_event)
                except KeyboardInterrupt:
                    logger.info("Interrupted; waiting for running jobs")
                    stop_event.set()
                return 0
            futures = launcher.poll_pending(args.limit)
            results = [f.result() for f in futures]
            failed = [j for j in results if j is not None and j.status == JobStatus.FAILED]
            return 1 if failed else 0

        if args.command == "restart":
            job = launcher.restart(args.job_id, launch=False)
            job = launcher.run_now(job.job_id)
            _print_json(job.to_dict())
            return 0 if job.status == JobStatus.COMPLETED else 1

        if args.command == "stop":
            job = launcher.stop(args.job_id, args.reason)
            _print_json(job.to_dict())
            return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = (
        logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.INFO
    )
    setup_logging(level=log_level, format_type=args.log_format, use_colors=True)

    try:
        return _run_command(args)
    except FileGenError as exc:
        logger.error(str(exc))
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        logger.error(f"Fatal error: {exc}", exc_info=True)
        sys.exit(1)
