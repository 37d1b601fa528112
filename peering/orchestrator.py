"""
Orchestration driver.

Walks the peering matrix and, per edge, resolves both peers' credentials,
ensures the peering connection, applies DNS options and reconciles routes.
Edges run on a bounded worker pool and are fully independent: one edge's
failure never stops another, and every edge is attempted.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, UTC
from typing import Dict, Optional

from peering.config import Config
from peering.connections import ConnectionManager
from peering.credentials import CredentialResolver
from peering.dns import configure_dns
from peering.errors import (
    AuthenticationError,
    PartialConnectionError,
    RouteConflictError,
)
from peering.models import PeeringConnection, PeeringEdge
from peering.registry import PeerRegistry
from peering.report import EdgeResult, EdgeStatus, RunReport
from peering.routes import RouteReconciler
from peering.utils.locks import TableLocks
from peering.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
    log_warning,
)

MODES = ("apply", "plan", "destroy")

PLANNED_CONNECTION_ID = "pcx-(planned)"


class Orchestrator:
    """
    Runs one reconciliation pass over the peering matrix.

    Args:
        registry: Validated peers and matrix
        resolver: Credential resolver (defaults to STS role assumption)
        connections: Connection manager
        max_workers: Worker pool size (defaults to Config.MAX_WORKERS)
        cancel_event: When set, no new edges or steps are started
    """

    def __init__(
        self,
        registry: PeerRegistry,
        resolver: Optional[CredentialResolver] = None,
        connections: Optional[ConnectionManager] = None,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.registry = registry
        self.cancel_event = cancel_event or threading.Event()
        self.resolver = resolver or CredentialResolver()
        self.connections = connections or ConnectionManager(cancel_event=self.cancel_event)
        self.max_workers = max_workers or Config.MAX_WORKERS
        self.locks = TableLocks()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self.cancel_event.is_set()

    def run(self, mode: str = "apply") -> RunReport:
        """
        Process every edge of the matrix.

        Args:
            mode: 'apply' (converge), 'plan' (dry run) or 'destroy' (teardown)

        Returns:
            RunReport with one EdgeResult per edge, in matrix order
        """
        if mode not in MODES:
            raise ValueError(f"Unknown mode '{mode}', expected one of {', '.join(MODES)}")

        report = RunReport(mode=mode, run_timestamp=datetime.now(UTC))
        edges = self.registry.edges()
        section = f"Peering Pass ({mode})"
        log_section_start(section, f"{len(edges)} edge(s), {self.max_workers} worker(s)")

        results: Dict[PeeringEdge, EdgeResult] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_edge = {
                executor.submit(self.process_edge, edge, mode): edge for edge in edges
            }
            for future in as_completed(future_to_edge):
                edge = future_to_edge[future]
                results[edge] = future.result()

        report.edges = [results[edge] for edge in edges]
        summary = report.summary()
        log_section_complete(
            section,
            f"{summary['succeeded']} succeeded, {summary['degraded']} degraded, "
            f"{summary['failed']} failed, {summary['cancelled']} cancelled",
        )
        return report

    def process_edge(self, edge: PeeringEdge, mode: str = "apply") -> EdgeResult:
        """
        Run all steps for one edge, attributing any error to it.

        Returns:
            EdgeResult; never raises
        """
        result = EdgeResult(edge)
        section = f"Edge {edge.label}"

        if self.cancelled:
            result.status = EdgeStatus.CANCELLED
            return result

        log_section_start(section, mode)
        try:
            if mode == "apply":
                self._apply(edge, result)
            elif mode == "plan":
                self._plan(edge, result)
            else:
                self._destroy(edge, result)
        except AuthenticationError as e:
            log_error(section, e)
            result.fail(e, peer=e.peer_name)
        except RouteConflictError as e:
            log_error(section, e)
            result.routes = e.outcomes
            result.fail(e)
        except Exception as e:
            log_error(section, e)
            result.fail(e)

        log_section_complete(section, result.status.value)
        return result

    def _check_cancel(self, result: EdgeResult) -> bool:
        """Mark the edge cancelled if cancellation was requested."""
        if self.cancelled:
            log_progress(f"Edge {result.edge.label}", "Cancelled before next step")
            result.status = EdgeStatus.CANCELLED
            return True
        return False

    def _contexts(self, edge: PeeringEdge):
        """Resolve the source and target contexts of an edge."""
        source_ctx = self.resolver.resolve(self.registry.get(edge.source))
        target_ctx = self.resolver.resolve(self.registry.get(edge.target))
        return source_ctx, target_ctx

    def _apply(self, edge: PeeringEdge, result: EdgeResult) -> None:
        """Ensure the connection, then DNS options, then routes."""
        source_ctx, target_ctx = self._contexts(edge)
        if self._check_cancel(result):
            return

        try:
            connection = self.connections.ensure_connection(source_ctx, target_ctx)
        except PartialConnectionError as e:
            log_warning(f"Edge {edge.label}", e)
            result.connection = e.connection
            result.degrade(e)
            return
        result.connection = connection
        if self._check_cancel(result):
            return

        contexts = {source_ctx.name: source_ctx, target_ctx.name: target_ctx}
        result.dns = configure_dns(
            connection,
            contexts[connection.requester_peer],
            contexts[connection.accepter_peer],
            cancel_event=self.cancel_event,
        )
        for error in result.dns.errors:
            result.add_warning({"kind": "dns", **error})
        if self._check_cancel(result):
            return

        reconciler = RouteReconciler(
            self.connections, locks=self.locks, cancel_event=self.cancel_event
        )
        result.routes = reconciler.reconcile(connection, source_ctx, target_ctx)

    def _plan(self, edge: PeeringEdge, result: EdgeResult) -> None:
        """Report what apply would do without mutating anything."""
        source_ctx, target_ctx = self._contexts(edge)
        connection = self.connections.find_connection(source_ctx, target_ctx)
        if connection is None:
            connection = PeeringConnection(
                connection_id=PLANNED_CONNECTION_ID,
                requester_peer=source_ctx.name,
                accepter_peer=target_ctx.name,
                requester_vpc_id=source_ctx.peer.vpc_id,
                accepter_vpc_id=target_ctx.peer.vpc_id,
            )
            log_progress(f"Edge {edge.label}", "Would request a new peering connection")
        result.connection = connection

        reconciler = RouteReconciler(
            self.connections, locks=self.locks, dry_run=True, cancel_event=self.cancel_event
        )
        result.routes = reconciler.reconcile(connection, source_ctx, target_ctx)

    def _destroy(self, edge: PeeringEdge, result: EdgeResult) -> None:
        """Remove every route through the edge's connection, then delete the connection."""
        source_ctx, target_ctx = self._contexts(edge)
        connection = self.connections.find_connection(source_ctx, target_ctx)
        if connection is None:
            log_progress(f"Edge {edge.label}", "No live peering connection, nothing to remove")
            return
        result.connection = connection

        reconciler = RouteReconciler(
            self.connections, locks=self.locks, cancel_event=self.cancel_event
        )
        result.routes = reconciler.remove(connection, source_ctx, target_ctx)
        if self._check_cancel(result):
            return
        # A request not yet accepted can only be withdrawn by its requester
        contexts = {source_ctx.name: source_ctx, target_ctx.name: target_ctx}
        self.connections.delete_connection(contexts[connection.requester_peer], connection)
