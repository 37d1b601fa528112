#!/usr/bin/env python3
"""
VPC peering orchestrator command line.

Commands:
    apply    Converge peering connections, DNS options and routes
    plan     Show what apply would change, without mutating anything
    destroy  Remove the tool's routes and delete the peering connections
    audit    Report peer routes found outside the tagged routing scope

Usage:
    vpc-peering [--env ENV | --config PATH] [--workers N] [--deadline SECONDS]
                [--report-file PATH] [--upload-report] [--yes] COMMAND

Exit status: 0 on success, 1 if any edge failed or was cancelled (or the audit
found violations), 2 on configuration errors (no API call is made).
"""

import argparse
import json
import signal
import sys
import threading
from typing import List, Optional

from peering.audit import audit_isolation
from peering.config import Config
from peering.credentials import CredentialResolver
from peering.errors import ConfigurationError
from peering.orchestrator import Orchestrator
from peering.registry import load_registry
from peering.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser for the apply, plan, destroy and audit modes."""
    parser = argparse.ArgumentParser(
        prog="vpc-peering", description="Reconcile cross-account VPC peering"
    )
    parser.add_argument("command", choices=["apply", "plan", "destroy", "audit"])
    location = parser.add_mutually_exclusive_group()
    location.add_argument("--config", help="Path to the peer file (YAML or JSON)")
    location.add_argument(
        "--env", help="Environment name, reads environments/<env>/peering.yaml"
    )
    parser.add_argument("--workers", type=int, help="Edges processed in parallel")
    parser.add_argument(
        "--deadline",
        type=float,
        help="Stop starting new operations after this many seconds",
    )
    parser.add_argument("--report-file", help="Write the JSON run report to this path")
    parser.add_argument(
        "--upload-report",
        action="store_true",
        help="Upload the JSON run report to REPORT_BUCKET",
    )
    parser.add_argument(
        "--yes", action="store_true", help="Skip the destroy confirmation prompt"
    )
    return parser


def _install_cancellation(cancel_event: threading.Event, deadline: Optional[float]):
    """
    Set `cancel_event` on Ctrl-C or when the deadline passes.

    Returns:
        Callable that removes the handler and timer again
    """

    def _on_interrupt(signum, frame):
        """Request cooperative cancellation of the run."""
        log_progress("Peering", "Interrupt received, finishing in-flight calls")
        cancel_event.set()

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, _on_interrupt)

    timer = None
    if deadline:
        timer = threading.Timer(deadline, cancel_event.set)
        timer.daemon = True
        timer.start()

    def _cleanup():
        """Stop the deadline timer and restore the previous SIGINT handler."""
        if timer is not None:
            timer.cancel()
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    return _cleanup


def _confirm_destroy(target: str) -> bool:
    """Ask the operator to type the target name before a teardown."""
    log_section_start("Destroy", f"Peering connections and routes for '{target}' will be removed")
    confirm = input(f"Type '{target}' to confirm: ").strip()
    if confirm != target:
        log_progress("Destroy", "Cancelled by user")
        return False
    log_section_complete("Destroy", "Confirmed")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse CLI arguments and run the requested command.

    Returns:
        int: Process exit status
    """
    args = build_parser().parse_args(argv)

    try:
        Config.validate()
        if args.workers is not None and args.workers < 1:
            raise ConfigurationError(["--workers must be a positive integer"])
        config_path = args.config or Config.get_peering_file(args.env)
        log_section_start("Peering", f"{args.command} using {config_path}")
        registry = load_registry(config_path)
    except ConfigurationError as e:
        for violation in e.violations:
            log_error("Configuration", violation)
        return EXIT_CONFIG

    resolver = CredentialResolver()

    if args.command == "audit":
        result = audit_isolation(registry, resolver)
        if args.report_file:
            with open(args.report_file, "w") as f:
                json.dump(result.to_dict(), f, indent=2)
        return result.exit_code

    if args.command == "destroy" and not args.yes:
        if not _confirm_destroy(args.env or config_path):
            return EXIT_OK

    cancel_event = threading.Event()
    cleanup = _install_cancellation(cancel_event, args.deadline)
    try:
        orchestrator = Orchestrator(
            registry,
            resolver=resolver,
            max_workers=args.workers,
            cancel_event=cancel_event,
        )
        report = orchestrator.run(args.command)
    finally:
        cleanup()

    report.log_summary()
    if args.report_file:
        report.write_file(args.report_file)
    if args.upload_report:
        try:
            report.upload()
        except Exception as e:
            log_error("Peering Report", f"Upload failed: {e}")
            return EXIT_FAILED

    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
