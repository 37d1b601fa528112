"""
Data model for peers, edges, peering connections and routes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


@dataclass(frozen=True)
class Peer:
    """A named VPC participating in peering."""

    name: str
    vpc_id: str
    account_id: str
    region: str
    role_arn: str
    dns_resolution: bool = True
    has_additional_routes: bool = False
    route_tag: str = ""
    cidr_block: Optional[str] = None

    @property
    def marker_scope(self) -> str:
        """Tag scope used to discover this peer's subnets; defaults to the peer name."""
        return self.route_tag or self.name

    def same_context(self, other: "Peer") -> bool:
        """Whether both peers live in the same account and region."""
        return self.account_id == other.account_id and self.region == other.region


@dataclass(frozen=True)
class PeeringEdge:
    """Ordered (source, target) pair from the peering matrix."""

    source: str
    target: str

    def __post_init__(self):
        if self.source == self.target:
            raise ValueError(f"Self-edge not allowed: {self.source}")

    @property
    def pair(self) -> FrozenSet[str]:
        """Unordered peer names, used to deduplicate edges."""
        return frozenset((self.source, self.target))

    @property
    def label(self) -> str:
        """Human-readable edge name for logs and reports."""
        return f"{self.source} <-> {self.target}"


class ConnectionState(Enum):
    REQUESTED = "requested"
    PENDING_ACCEPTANCE = "pending_acceptance"
    ACCEPTED = "accepted"
    ACTIVE = "active"
    FAILED = "failed"


# AWS VpcPeeringConnection Status.Code values
AWS_STATUS_TO_STATE = {
    "initiating-request": ConnectionState.REQUESTED,
    "pending-acceptance": ConnectionState.PENDING_ACCEPTANCE,
    "provisioning": ConnectionState.ACCEPTED,
    "active": ConnectionState.ACTIVE,
    "failed": ConnectionState.FAILED,
    "rejected": ConnectionState.FAILED,
    "expired": ConnectionState.FAILED,
    "deleting": ConnectionState.FAILED,
    "deleted": ConnectionState.FAILED,
}

GONE_STATUSES = frozenset({"failed", "rejected", "expired", "deleting", "deleted"})

_TRANSITIONS = {
    ConnectionState.REQUESTED: {
        ConnectionState.PENDING_ACCEPTANCE,
        ConnectionState.ACCEPTED,
        ConnectionState.ACTIVE,
    },
    ConnectionState.PENDING_ACCEPTANCE: {
        ConnectionState.ACCEPTED,
        ConnectionState.ACTIVE,
    },
    ConnectionState.ACCEPTED: {ConnectionState.ACTIVE},
    ConnectionState.ACTIVE: set(),
    ConnectionState.FAILED: set(),
}


@dataclass
class PeeringConnection:
    """
    A VPC peering connection between two peers.

    Identity is the AWS connection ID; the unordered peer pair is the lookup key.
    State moves requested -> (pending_acceptance) -> accepted -> active, and may
    drop to failed from any state.
    """

    connection_id: str
    requester_peer: str
    accepter_peer: str
    requester_vpc_id: str
    accepter_vpc_id: str
    requester_region: str = ""
    accepter_region: str = ""
    state: ConnectionState = ConnectionState.REQUESTED
    aws_status: str = ""
    created: bool = False

    @property
    def pair(self) -> FrozenSet[str]:
        """Unordered peer names of the two sides."""
        return frozenset((self.requester_peer, self.accepter_peer))

    @property
    def is_active(self) -> bool:
        """Whether the connection can carry traffic."""
        return self.state is ConnectionState.ACTIVE

    def advance(self, new_state: ConnectionState) -> None:
        """
        Move to a new state, enforcing the lifecycle.

        Raises:
            ValueError: If the transition is not allowed.
        """
        if new_state is self.state:
            return
        if new_state is not ConnectionState.FAILED and new_state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal transition for {self.connection_id}: "
                f"{self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def apply_aws_status(self, status_code: str) -> None:
        """Record an EC2 status code and advance to the matching state."""
        self.aws_status = status_code
        self.advance(AWS_STATUS_TO_STATE.get(status_code, ConnectionState.FAILED))

    @classmethod
    def from_aws(
        cls, item: Dict[str, Any], requester_peer: str, accepter_peer: str
    ) -> "PeeringConnection":
        """
        Build a connection from a describe_vpc_peering_connections item.

        Args:
            item: One entry of the VpcPeeringConnections list
            requester_peer: Name of the peer owning the requester VPC
            accepter_peer: Name of the peer owning the accepter VPC

        Returns:
            PeeringConnection mirroring the observed AWS state
        """
        status_code = item.get("Status", {}).get("Code", "")
        requester = item.get("RequesterVpcInfo", {})
        accepter = item.get("AccepterVpcInfo", {})
        return cls(
            connection_id=item["VpcPeeringConnectionId"],
            requester_peer=requester_peer,
            accepter_peer=accepter_peer,
            requester_vpc_id=requester.get("VpcId", ""),
            accepter_vpc_id=accepter.get("VpcId", ""),
            requester_region=requester.get("Region", ""),
            accepter_region=accepter.get("Region", ""),
            state=AWS_STATUS_TO_STATE.get(status_code, ConnectionState.FAILED),
            aws_status=status_code,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Identity, orientation and state of the connection for the run report."""
        return {
            "connection_id": self.connection_id,
            "requester": self.requester_peer,
            "accepter": self.accepter_peer,
            "state": self.state.value,
            "aws_status": self.aws_status,
            "created": self.created,
        }


@dataclass(frozen=True)
class RouteTableTarget:
    route_table_id: str
    owner: str
    scope: str  # "main" or "subnet"
    discovery_tag: Optional[str] = None


@dataclass(frozen=True)
class RouteEntry:
    target: RouteTableTarget
    destination_cidr: str
    connection_id: str


class RouteAction(Enum):
    CREATED = "created"
    ALREADY_SATISFIED = "already_satisfied"
    REPLACED_STALE = "replaced_stale"
    CONFLICT = "conflict"
    WOULD_CREATE = "would_create"
    REMOVED = "removed"
    ABSENT = "absent"


@dataclass
class RouteOutcome:
    entry: RouteEntry
    action: RouteAction
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the outcome into a run report row."""
        result = {
            "route_table_id": self.entry.target.route_table_id,
            "owner": self.entry.target.owner,
            "scope": self.entry.target.scope,
            "destination_cidr": self.entry.destination_cidr,
            "connection_id": self.entry.connection_id,
            "action": self.action.value,
        }
        if self.entry.target.discovery_tag:
            result["discovery_tag"] = self.entry.target.discovery_tag
        if self.detail:
            result["detail"] = self.detail
        return result


@dataclass(frozen=True)
class MarkerTag:
    key: str
    value: str

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


@dataclass
class DnsResult:
    """Per-side DNS resolution settings applied to a connection."""

    requester: Optional[bool] = None
    accepter: Optional[bool] = None
    errors: list = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """Whether either side failed to apply its DNS option."""
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        """Per-side DNS settings and errors for the run report."""
        return {
            "requester_allow_remote_dns": self.requester,
            "accepter_allow_remote_dns": self.accepter,
            "errors": list(self.errors),
        }
