"""
Route reconciler.

Computes the routes needed on both sides of a peering connection and applies
them only to the main route table and tag-discovered route tables. Existing
routes are never silently overwritten: a route to the same CIDR through a
different live target is a conflict for the operator to resolve. Only a route
through a peering connection confirmed gone is replaced.
"""

import threading
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from peering.connections import ConnectionManager
from peering.credentials import PeerContext
from peering.discovery import (
    describe_route_tables,
    discover,
    list_route_tables,
    main_route_table,
    marker_for,
)
from peering.errors import RouteConflictError
from peering.models import (
    PeeringConnection,
    RouteAction,
    RouteEntry,
    RouteOutcome,
    RouteTableTarget,
)
from peering.retry import call_with_retries, error_code
from peering.utils.locks import TableLocks
from peering.utils.logging_utils import log_progress, log_warning

# Route keys naming a next hop, in the order they are reported
TARGET_KEYS = (
    "VpcPeeringConnectionId",
    "GatewayId",
    "NatGatewayId",
    "TransitGatewayId",
    "NetworkInterfaceId",
    "InstanceId",
    "LocalGatewayId",
    "CarrierGatewayId",
    "CoreNetworkArn",
    "EgressOnlyInternetGatewayId",
)


def route_target(route: Dict) -> str:
    """Name the next hop of a route (e.g. 'pcx-123', 'igw-456', 'local')."""
    for key in TARGET_KEYS:
        if route.get(key):
            return route[key]
    return "unknown"


class RouteReconciler:
    """
    Reconciles cross-VPC routes for peering connections.

    Args:
        connections: Used to confirm whether a competing peering connection is gone
        locks: Shared per-route-table lock arena
        dry_run: Record would_create instead of mutating route tables
        cancel_event: When set, retries stop early
    """

    def __init__(
        self,
        connections: ConnectionManager,
        locks: Optional[TableLocks] = None,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.connections = connections
        self.locks = locks or TableLocks()
        self.dry_run = dry_run
        self.cancel_event = cancel_event

    def targets_for(self, ctx: PeerContext, is_source: bool) -> List[RouteTableTarget]:
        """
        Route tables that may carry this peer's routes for one side of an edge.

        Always the main table; tag-discovered tables only when the peer has
        additional routes enabled.

        Args:
            ctx: Owning peer's context
            is_source: Whether the owning peer is the edge's source

        Returns:
            Deduplicated list, main table first
        """
        targets = [main_route_table(ctx)]
        if ctx.peer.has_additional_routes:
            seen = {targets[0].route_table_id}
            for target in discover(ctx, marker_for(ctx, is_source)):
                if target.route_table_id not in seen:
                    seen.add(target.route_table_id)
                    targets.append(target)
        return targets

    def reconcile(
        self,
        connection: PeeringConnection,
        source_ctx: PeerContext,
        target_ctx: PeerContext,
    ) -> List[RouteOutcome]:
        """
        Ensure both directions of a connection are routed.

        Every eligible table is processed even when some conflict.

        Args:
            connection: Connection routes should point at
            source_ctx: Context of the edge's source peer
            target_ctx: Context of the edge's target peer

        Returns:
            List of RouteOutcome, one per (table, destination)

        Raises:
            RouteConflictError: After the pass, if any table routes a peer CIDR elsewhere
        """
        outcomes: List[RouteOutcome] = []
        for owner_ctx, other_ctx, is_source in (
            (source_ctx, target_ctx, True),
            (target_ctx, source_ctx, False),
        ):
            destination = other_ctx.vpc_cidr()
            for target in self.targets_for(owner_ctx, is_source):
                entry = RouteEntry(target, destination, connection.connection_id)
                outcomes.append(self._apply(owner_ctx, entry))

        conflicts = [o for o in outcomes if o.action is RouteAction.CONFLICT]
        if conflicts:
            raise RouteConflictError(conflicts, outcomes)
        return outcomes

    def remove(
        self,
        connection: PeeringConnection,
        source_ctx: PeerContext,
        target_ctx: PeerContext,
    ) -> List[RouteOutcome]:
        """
        Delete the routes pointing at a connection, for teardown.

        Every route table in both VPCs is scanned, not just the ones tagged
        today, so routes left behind after a marker tag was removed are
        cleaned up too. Routes through any other target are left untouched.

        Returns:
            List of RouteOutcome with action removed or absent, one per route
            found through the connection
        """
        outcomes: List[RouteOutcome] = []
        for ctx in (source_ctx, target_ctx):
            tables = sorted(list_route_tables(ctx), key=lambda t: t["RouteTableId"])
            for table in tables:
                is_main = any(a.get("Main") for a in table.get("Associations", []))
                target = RouteTableTarget(
                    table["RouteTableId"], ctx.name, "main" if is_main else "subnet"
                )
                for route in table.get("Routes", []):
                    destination = route.get("DestinationCidrBlock")
                    if not destination:
                        continue
                    if route.get("VpcPeeringConnectionId") != connection.connection_id:
                        continue
                    entry = RouteEntry(target, destination, connection.connection_id)
                    outcomes.append(self._remove(ctx, entry))
        return outcomes

    def _find_route(self, ctx: PeerContext, entry: RouteEntry) -> Optional[Dict]:
        """Current route to the entry's destination in its table, if any."""
        tables = describe_route_tables(
            ctx,
            [{"Name": "route-table-id", "Values": [entry.target.route_table_id]}],
        )
        for table in tables:
            for route in table.get("Routes", []):
                if route.get("DestinationCidrBlock") == entry.destination_cidr:
                    return route
        return None

    def _apply(self, ctx: PeerContext, entry: RouteEntry) -> RouteOutcome:
        """Create one route under its table lock unless an existing route decides the outcome."""
        table_id = entry.target.route_table_id
        section = f"Routes {ctx.name}"

        with self.locks.hold(table_id):
            outcome = self._classify(ctx, entry)
            if outcome is not None:
                return outcome

            if self.dry_run:
                return RouteOutcome(entry, RouteAction.WOULD_CREATE)

            try:
                self._call(
                    f"CreateRoute {table_id} {entry.destination_cidr}",
                    lambda: ctx.ec2.create_route(
                        RouteTableId=table_id,
                        DestinationCidrBlock=entry.destination_cidr,
                        VpcPeeringConnectionId=entry.connection_id,
                    ),
                )
            except ClientError as e:
                if error_code(e) != "RouteAlreadyExists":
                    raise
                # Created by someone else since we read the table
                outcome = self._classify(ctx, entry)
                if outcome is not None:
                    return outcome
                raise

        log_progress(
            section,
            f"Created route {entry.destination_cidr} -> {entry.connection_id} in {table_id} "
            f"({entry.target.scope})",
        )
        return RouteOutcome(entry, RouteAction.CREATED)

    def _classify(self, ctx: PeerContext, entry: RouteEntry) -> Optional[RouteOutcome]:
        """
        Compare the table's current route for the destination with the entry.

        Returns:
            RouteOutcome when the existing route decides the result, or None
            if no route to the destination exists
        """
        table_id = entry.target.route_table_id
        existing = self._find_route(ctx, entry)
        if existing is None:
            return None

        via = existing.get("VpcPeeringConnectionId")
        if via == entry.connection_id:
            return RouteOutcome(entry, RouteAction.ALREADY_SATISFIED)

        competitor = route_target(existing)
        if via and self.connections.is_gone(ctx, via):
            if self.dry_run:
                return RouteOutcome(entry, RouteAction.WOULD_CREATE, f"replaces stale {via}")
            self._call(
                f"ReplaceRoute {table_id} {entry.destination_cidr}",
                lambda: ctx.ec2.replace_route(
                    RouteTableId=table_id,
                    DestinationCidrBlock=entry.destination_cidr,
                    VpcPeeringConnectionId=entry.connection_id,
                ),
            )
            log_progress(
                f"Routes {ctx.name}",
                f"Replaced stale route {entry.destination_cidr} -> {via} in {table_id}",
            )
            return RouteOutcome(entry, RouteAction.REPLACED_STALE, f"was {via}")

        log_warning(
            f"Routes {ctx.name}",
            f"{table_id} already routes {entry.destination_cidr} via {competitor}",
        )
        return RouteOutcome(entry, RouteAction.CONFLICT, competitor)

    def _remove(self, ctx: PeerContext, entry: RouteEntry) -> RouteOutcome:
        """Delete one route if it still points at the entry's connection."""
        table_id = entry.target.route_table_id
        with self.locks.hold(table_id):
            existing = self._find_route(ctx, entry)
            if existing is None or existing.get("VpcPeeringConnectionId") != entry.connection_id:
                return RouteOutcome(entry, RouteAction.ABSENT)
            if self.dry_run:
                return RouteOutcome(entry, RouteAction.REMOVED, "dry run")
            try:
                self._call(
                    f"DeleteRoute {table_id} {entry.destination_cidr}",
                    lambda: ctx.ec2.delete_route(
                        RouteTableId=table_id, DestinationCidrBlock=entry.destination_cidr
                    ),
                )
            except ClientError as e:
                if error_code(e) != "InvalidRoute.NotFound":
                    raise
                # Deleted by someone else since we read the table
                return RouteOutcome(entry, RouteAction.ABSENT)
        log_progress(
            f"Routes {ctx.name}",
            f"Removed route {entry.destination_cidr} -> {entry.connection_id} from {table_id}",
        )
        return RouteOutcome(entry, RouteAction.REMOVED)

    def _call(self, operation: str, func):
        return call_with_retries(operation, func, cancel_event=self.cancel_event)
