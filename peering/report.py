"""
Run report for a reconciliation pass.

Holds per-edge results (connection, DNS, routes, errors) and produces the
success/degraded/failed tally, the process exit code, a JSON document and a
human-readable console summary.
"""

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import boto3

from peering.config import Config
from peering.errors import PeeringError
from peering.models import DnsResult, PeeringConnection, PeeringEdge, RouteOutcome
from peering.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
    log_warning,
)


class EdgeStatus(Enum):
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"
    CANCELLED = "cancelled"


def describe_error(error: BaseException, **attribution: Any) -> Dict[str, Any]:
    """Serialize an exception with the peer/table it is attributed to."""
    if isinstance(error, PeeringError):
        data = error.to_dict()
    else:
        data = {"kind": type(error).__name__, "message": str(error)}
    data.update({k: v for k, v in attribution.items() if v is not None})
    return data


@dataclass
class EdgeResult:
    edge: PeeringEdge
    status: EdgeStatus = EdgeStatus.SUCCEEDED
    connection: Optional[PeeringConnection] = None
    dns: Optional[DnsResult] = None
    routes: List[RouteOutcome] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    def fail(self, error: BaseException, **attribution: Any) -> None:
        """Mark the edge failed and record the error with its attribution."""
        self.status = EdgeStatus.FAILED
        self.errors.append(describe_error(error, **attribution))

    def degrade(self, error: BaseException, **attribution: Any) -> None:
        """Record a non-fatal error as a warning."""
        self.add_warning(describe_error(error, **attribution))

    def add_warning(self, warning: Dict[str, Any]) -> None:
        """Add a warning; a succeeded edge becomes degraded, a failed one stays failed."""
        if self.status is EdgeStatus.SUCCEEDED:
            self.status = EdgeStatus.DEGRADED
        self.warnings.append(warning)

    def route_counts(self) -> Dict[str, int]:
        """Number of route outcomes per action."""
        return dict(Counter(outcome.action.value for outcome in self.routes))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the edge for the JSON report."""
        return {
            "source": self.edge.source,
            "target": self.edge.target,
            "status": self.status.value,
            "connection": self.connection.to_dict() if self.connection else None,
            "dns": self.dns.to_dict() if self.dns else None,
            "routes": [outcome.to_dict() for outcome in self.routes],
            "route_counts": self.route_counts(),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class RunReport:
    mode: str
    run_timestamp: datetime
    edges: List[EdgeResult] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        """Tally edges by status and routes and connections by outcome."""
        tally = {status.value: 0 for status in EdgeStatus}
        for result in self.edges:
            tally[result.status.value] += 1
        route_totals: Counter = Counter()
        for result in self.edges:
            route_totals.update(result.route_counts())
        tally["routes_created"] = route_totals.get("created", 0)
        tally["routes_already_satisfied"] = route_totals.get("already_satisfied", 0)
        tally["routes_conflicted"] = route_totals.get("conflict", 0)
        tally["connections_created"] = sum(
            1 for result in self.edges if result.connection and result.connection.created
        )
        return tally

    @property
    def exit_code(self) -> int:
        """0 when every edge succeeded or degraded, 1 otherwise."""
        failing = (EdgeStatus.FAILED, EdgeStatus.CANCELLED)
        return 1 if any(result.status in failing for result in self.edges) else 0

    def to_dict(self) -> Dict[str, Any]:
        """Full report document: mode, timestamp, summary and every edge."""
        return {
            "mode": self.mode,
            "run_timestamp": self.run_timestamp.isoformat(),
            "summary": self.summary(),
            "edges": [result.to_dict() for result in self.edges],
        }

    def to_json(self) -> str:
        """Report document as indented JSON."""
        return json.dumps(self.to_dict(), indent=2)

    def log_summary(self) -> None:
        """Print one line per edge followed by the overall tally."""
        section = f"Peering Report ({self.mode})"
        log_section_start(section)
        for result in self.edges:
            counts = ", ".join(f"{k}={v}" for k, v in sorted(result.route_counts().items()))
            connection = result.connection.connection_id if result.connection else "-"
            line = f"{result.edge.label}: {result.status.value} [{connection}] routes: {counts or 'none'}"
            if result.status is EdgeStatus.FAILED:
                log_error(section, line)
            elif result.status is EdgeStatus.SUCCEEDED:
                log_progress(section, line)
            else:
                log_warning(section, line)
            for error in result.errors:
                log_error(section, f"{result.edge.label}: {error['message']}")
            for warning in result.warnings:
                log_warning(section, f"{result.edge.label}: {warning['message']}")

        summary = self.summary()
        log_section_complete(
            section,
            f"{summary['succeeded']} succeeded, {summary['degraded']} degraded, "
            f"{summary['failed']} failed, {summary['cancelled']} cancelled; "
            f"{summary['routes_created']} routes created, "
            f"{summary['routes_already_satisfied']} already satisfied",
        )

    def write_file(self, path: str) -> None:
        """Write the JSON report to a local file."""
        with open(path, "w") as f:
            f.write(self.to_json())
        log_progress("Peering Report", f"Wrote report to {path}")

    def upload(self, bucket: Optional[str] = None) -> str:
        """
        Upload the JSON report to S3.

        Args:
            bucket: Target bucket (defaults to Config.REPORT_BUCKET)

        Returns:
            str: S3 URI of the uploaded report
        """
        bucket = bucket or Config.REPORT_BUCKET
        if not bucket:
            raise ValueError("REPORT_BUCKET environment variable is required to upload reports")

        key = Config.get_report_key(self.run_timestamp)
        client = boto3.client("s3")
        client.put_object(
            Bucket=bucket,
            Key=key,
            Body=self.to_json().encode("utf-8"),
            ContentType="application/json",
        )
        uri = f"s3://{bucket}/{key}"
        log_progress("Peering Report", f"Uploaded report to {uri}")
        return uri
