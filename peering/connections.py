"""
Peering connection manager.

Creates or looks up the VPC peering connection between two peers. Acceptance
is a second phase issued from the accepter's own credentials; when it does not
complete, the connection is left pending so the next run can finish the
acceptance instead of requesting a new connection.
"""

import threading
import time
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from peering.config import Config
from peering.credentials import PeerContext
from peering.discovery import collect_pages
from peering.errors import PartialConnectionError, PeeringError, TransientAPIError
from peering.models import (
    AWS_STATUS_TO_STATE,
    GONE_STATUSES,
    ConnectionState,
    PeeringConnection,
)
from peering.retry import backoff_delay, call_with_retries, error_code
from peering.utils.logging_utils import log_progress, log_warning

NOT_FOUND_CODE = "InvalidVpcPeeringConnectionID.NotFound"

# Preferred order when more than one live connection exists for a pair
_STATE_PREFERENCE = [
    ConnectionState.ACTIVE,
    ConnectionState.ACCEPTED,
    ConnectionState.PENDING_ACCEPTANCE,
    ConnectionState.REQUESTED,
]


def _describe_all(ec2, **kwargs) -> List[Dict[str, Any]]:
    """Collect every page of describe_vpc_peering_connections."""
    return collect_pages(
        ec2, "describe_vpc_peering_connections", "VpcPeeringConnections", **kwargs
    )


class ConnectionManager:
    """
    Ensures exactly one live peering connection per peer pair.

    Args:
        cancel_event: When set, activation polling stops early
        activation_timeout: Seconds to wait for a connection to become active
        poll_interval: First delay between activation polls, doubling each time
        max_polls: Upper bound on activation polls
    """

    def __init__(
        self,
        cancel_event: Optional[threading.Event] = None,
        activation_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        max_polls: int = 20,
    ):
        self.cancel_event = cancel_event
        self.activation_timeout = (
            Config.ACTIVATION_TIMEOUT if activation_timeout is None else activation_timeout
        )
        self.poll_interval = Config.RETRY_BASE_DELAY if poll_interval is None else poll_interval
        self.max_polls = max_polls

    def _retry(self, operation: str, func, retry_codes=()):
        return call_with_retries(
            operation, func, retry_codes=retry_codes, cancel_event=self.cancel_event
        )

    def find_connection(
        self, source_ctx: PeerContext, target_ctx: PeerContext
    ) -> Optional[PeeringConnection]:
        """
        Look up a live connection between two peers, in either orientation.

        Connections in failed/rejected/expired/deleted states are ignored.

        Args:
            source_ctx: Context of the edge's source peer (queries run here)
            target_ctx: Context of the edge's target peer

        Returns:
            PeeringConnection, or None if no live connection exists
        """
        candidates: List[PeeringConnection] = []
        for requester, accepter in ((source_ctx, target_ctx), (target_ctx, source_ctx)):
            filters = [
                {"Name": "requester-vpc-info.vpc-id", "Values": [requester.peer.vpc_id]},
                {"Name": "accepter-vpc-info.vpc-id", "Values": [accepter.peer.vpc_id]},
            ]
            items = self._retry(
                f"DescribeVpcPeeringConnections {requester.name}->{accepter.name}",
                lambda: _describe_all(source_ctx.ec2, Filters=filters),
            )
            for item in items:
                if item.get("Status", {}).get("Code") in GONE_STATUSES:
                    continue
                candidates.append(
                    PeeringConnection.from_aws(item, requester.name, accepter.name)
                )

        if not candidates:
            return None
        candidates.sort(key=lambda c: _STATE_PREFERENCE.index(c.state))
        if len(candidates) > 1:
            log_warning(
                "Connection Manager",
                f"{len(candidates)} live connections found for {source_ctx.name} <-> "
                f"{target_ctx.name}, using {candidates[0].connection_id}",
            )
        return candidates[0]

    def ensure_connection(
        self, source_ctx: PeerContext, target_ctx: PeerContext
    ) -> PeeringConnection:
        """
        Return an active connection between two peers, creating it if needed.

        Args:
            source_ctx: Context of the edge's source peer (requester of new connections)
            target_ctx: Context of the edge's target peer (accepter of new connections)

        Returns:
            Active PeeringConnection

        Raises:
            PartialConnectionError: If acceptance or activation did not complete
            PeeringError: If the connection was rejected or failed
        """
        section = f"Connection {source_ctx.name} <-> {target_ctx.name}"
        connection = self.find_connection(source_ctx, target_ctx)

        if connection is not None and connection.is_active:
            log_progress(section, f"Reusing active connection {connection.connection_id}")
            return connection

        if connection is None:
            connection = self._request(source_ctx, target_ctx)
        else:
            log_progress(
                section,
                f"Resuming connection {connection.connection_id} in state {connection.state.value}",
            )

        contexts = {source_ctx.name: source_ctx, target_ctx.name: target_ctx}
        if connection.state in (ConnectionState.REQUESTED, ConnectionState.PENDING_ACCEPTANCE):
            self._accept(connection, contexts[connection.accepter_peer])

        self._wait_active(connection, source_ctx)
        log_progress(section, f"Connection {connection.connection_id} is active")
        return connection

    def _request(self, source_ctx: PeerContext, target_ctx: PeerContext) -> PeeringConnection:
        """Request a new connection from the source VPC to the target VPC."""
        source, target = source_ctx.peer, target_ctx.peer
        params = {
            "VpcId": source.vpc_id,
            "PeerVpcId": target.vpc_id,
            "PeerOwnerId": target.account_id,
            "TagSpecifications": [
                {
                    "ResourceType": "vpc-peering-connection",
                    "Tags": [
                        {"Key": "Name", "Value": f"{source.name}-to-{target.name}"},
                        {"Key": "ManagedBy", "Value": Config.MANAGED_BY_TAG_VALUE},
                    ],
                }
            ],
        }
        if source.region != target.region:
            params["PeerRegion"] = target.region

        response = self._retry(
            f"CreateVpcPeeringConnection {source.name}->{target.name}",
            lambda: source_ctx.ec2.create_vpc_peering_connection(**params),
        )
        connection = PeeringConnection.from_aws(
            response["VpcPeeringConnection"], source.name, target.name
        )
        connection.created = True
        log_progress(
            f"Connection {source.name} <-> {target.name}",
            f"Requested {connection.connection_id} "
            f"({'cross-context' if not source.same_context(target) else 'same-context'})",
        )
        return connection

    def _accept(self, connection: PeeringConnection, accepter_ctx: PeerContext) -> None:
        """Accept the request with the accepter's credentials; failure leaves it pending."""
        try:
            response = self._retry(
                f"AcceptVpcPeeringConnection {connection.connection_id}",
                lambda: accepter_ctx.ec2.accept_vpc_peering_connection(
                    VpcPeeringConnectionId=connection.connection_id
                ),
                # A cross-region request takes a moment to appear on the accepter side
                retry_codes=(NOT_FOUND_CODE,),
            )
        except (ClientError, TransientAPIError) as e:
            connection.advance(ConnectionState.PENDING_ACCEPTANCE)
            raise PartialConnectionError(connection, e) from e

        status = response.get("VpcPeeringConnection", {}).get("Status", {}).get("Code")
        if status:
            self._apply_status(connection, status)
        else:
            connection.advance(ConnectionState.ACCEPTED)

    def _apply_status(self, connection: PeeringConnection, status: str) -> None:
        """Apply an observed status, ignoring stale ones and raising on failure states."""
        state = AWS_STATUS_TO_STATE.get(status, ConnectionState.FAILED)
        if state is ConnectionState.FAILED:
            connection.apply_aws_status(status)
            raise PeeringError(
                f"Peering connection {connection.connection_id} entered status '{status}'"
            )
        # AWS may briefly report an earlier status than we have already observed
        if state is ConnectionState.ACTIVE or (
            _STATE_PREFERENCE.index(state) < _STATE_PREFERENCE.index(connection.state)
        ):
            connection.apply_aws_status(status)

    def _wait_active(self, connection: PeeringConnection, ctx: PeerContext) -> None:
        """Poll with backoff until the connection is active or time runs out."""
        started = time.monotonic()
        for attempt in range(self.max_polls):
            if connection.is_active:
                return
            if self.cancel_event is not None and self.cancel_event.is_set():
                break
            if attempt > 0:
                if time.monotonic() - started > self.activation_timeout:
                    break
                delay = backoff_delay(attempt - 1, self.poll_interval, Config.RETRY_MAX_DELAY)
                if self.cancel_event is not None:
                    if self.cancel_event.wait(delay):
                        break
                else:
                    time.sleep(delay)

            items = self._retry(
                f"DescribeVpcPeeringConnections {connection.connection_id}",
                lambda: _describe_all(
                    ctx.ec2, VpcPeeringConnectionIds=[connection.connection_id]
                ),
                retry_codes=(NOT_FOUND_CODE,),
            )
            if items:
                self._apply_status(connection, items[0].get("Status", {}).get("Code", ""))

        if not connection.is_active:
            if connection.state is ConnectionState.REQUESTED:
                connection.advance(ConnectionState.PENDING_ACCEPTANCE)
            raise PartialConnectionError(
                connection, f"not active after waiting (state {connection.state.value})"
            )

    def delete_connection(self, ctx: PeerContext, connection: PeeringConnection) -> bool:
        """
        Delete a peering connection as part of an explicit teardown.

        Args:
            ctx: Context of the connection's requester; only it may withdraw a pending request
            connection: Connection to delete

        Returns:
            bool: True if deleted, False if it was already gone
        """
        try:
            self._retry(
                f"DeleteVpcPeeringConnection {connection.connection_id}",
                lambda: ctx.ec2.delete_vpc_peering_connection(
                    VpcPeeringConnectionId=connection.connection_id
                ),
            )
        except ClientError as e:
            if error_code(e) == NOT_FOUND_CODE:
                connection.apply_aws_status("deleted")
                return False
            raise
        connection.apply_aws_status("deleted")
        log_progress("Connection Manager", f"Deleted {connection.connection_id}")
        return True

    def is_gone(self, ctx: PeerContext, connection_id: str) -> bool:
        """
        Positively confirm that a peering connection no longer exists.

        Anything short of confirmation (including lookup errors) returns False,
        so callers escalate instead of overwriting a route.

        Args:
            ctx: Context able to see the connection
            connection_id: Connection referenced by an existing route

        Returns:
            bool: True only if the connection is deleted, failed, rejected,
                expired or unknown to EC2
        """
        try:
            items = self._retry(
                f"DescribeVpcPeeringConnections {connection_id}",
                lambda: _describe_all(ctx.ec2, VpcPeeringConnectionIds=[connection_id]),
            )
        except ClientError as e:
            return error_code(e) == NOT_FOUND_CODE
        except TransientAPIError:
            return False
        if not items:
            return True
        return items[0].get("Status", {}).get("Code") in GONE_STATUSES
