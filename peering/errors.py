"""
Error taxonomy for the peering orchestrator.

Every error is attributed to the edge, peer or route table it occurred on so
the run report can place it; only ConfigurationError halts a whole run.
"""

from typing import Any, List, Optional


class PeeringError(Exception):
    """Base class for all orchestrator errors."""

    kind = "error"

    def to_dict(self) -> dict:
        """Serialize the error for the run report."""
        return {"kind": self.kind, "message": str(self)}


class ConfigurationError(PeeringError):
    """
    Invalid input detected before any API call.

    Carries every violation found so a single corrective pass fixes them all.
    """

    kind = "configuration"

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        count = len(self.violations)
        summary = "; ".join(self.violations)
        super().__init__(f"{count} configuration error(s): {summary}")

    def to_dict(self) -> dict:
        """Report entry listing every violation."""
        return {"kind": self.kind, "message": str(self), "violations": self.violations}


class AuthenticationError(PeeringError):
    """Role assumption into a peer's account was rejected."""

    kind = "authentication"

    def __init__(self, peer_name: str, reason: Any):
        self.peer_name = peer_name
        self.reason = reason
        super().__init__(f"Could not assume role for peer '{peer_name}': {reason}")

    def to_dict(self) -> dict:
        """Report entry naming the peer whose role was rejected."""
        return {"kind": self.kind, "message": str(self), "peer": self.peer_name}


class TransientAPIError(PeeringError):
    """A throttling or network error that persisted through every retry."""

    kind = "transient_api"

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )

    def to_dict(self) -> dict:
        """Report entry naming the exhausted operation."""
        return {
            "kind": self.kind,
            "message": str(self),
            "operation": self.operation,
            "attempts": self.attempts,
        }


class RouteConflictError(PeeringError):
    """
    One or more route tables already route a peer CIDR through another target.

    Args:
        conflicts: RouteOutcome objects with action "conflict"
        outcomes: every outcome of the reconciliation pass, conflicts included
    """

    kind = "route_conflict"

    def __init__(self, conflicts: list, outcomes: Optional[list] = None):
        self.conflicts = list(conflicts)
        self.outcomes = list(outcomes or [])
        details = ", ".join(
            f"{c.entry.target.route_table_id} ({c.entry.destination_cidr} -> {c.detail})"
            for c in self.conflicts
        )
        super().__init__(f"Existing routes point elsewhere: {details}")

    def to_dict(self) -> dict:
        """Report entry listing the conflicting route tables."""
        return {
            "kind": self.kind,
            "message": str(self),
            "route_tables": [c.entry.target.route_table_id for c in self.conflicts],
        }


class PartialConnectionError(PeeringError):
    """A peering connection was requested but acceptance did not complete."""

    kind = "partial_connection"

    def __init__(self, connection: Any, reason: Any):
        self.connection = connection
        self.reason = reason
        super().__init__(
            f"Peering connection {connection.connection_id} left pending acceptance: {reason}"
        )

    def to_dict(self) -> dict:
        """Report entry naming the pending connection."""
        return {
            "kind": self.kind,
            "message": str(self),
            "connection_id": self.connection.connection_id,
        }
