"""
In-memory EC2 fake spanning accounts and regions, a resolver handing out
contexts bound to it, and the prod / prod-pci scenario.
"""

import copy
import threading
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from peering.credentials import PeerContext
from peering.errors import AuthenticationError

PROD_ACCOUNT = "111111111111"
PCI_ACCOUNT = "222222222222"


def client_error(code: str, operation: str = "Operation") -> ClientError:
    """ClientError carrying an AWS error code, as botocore raises it."""
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def _matches(values: List[str], actual: Any) -> bool:
    """EC2 filter semantics: any of the values matches."""
    return actual in values


class FakeCloud:
    """EC2 state shared by every account and region."""

    def __init__(self):
        self.lock = threading.RLock()
        self.vpcs: Dict[str, Dict[str, Any]] = {}
        self.subnets: Dict[str, Dict[str, Any]] = {}
        self.route_tables: Dict[str, Dict[str, Any]] = {}
        self.peerings: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, List[Exception]] = {}
        self.page_size = 1000
        self.pages_served = 0
        self._next_id = 0

    # Setup helpers

    def add_vpc(self, vpc_id: str, cidr: str, account: str, region: str = "us-east-1") -> None:
        """Register a VPC owned by `account`."""
        self.vpcs[vpc_id] = {"CidrBlock": cidr, "OwnerId": account, "Region": region}

    def add_route_table(self, table_id: str, vpc_id: str, main: bool = False) -> None:
        """Add a route table holding only the local route."""
        self.route_tables[table_id] = {
            "VpcId": vpc_id,
            "Main": main,
            "Subnets": [],
            "Routes": [
                {"DestinationCidrBlock": self.vpcs[vpc_id]["CidrBlock"], "GatewayId": "local"}
            ],
        }

    def add_subnet(
        self,
        subnet_id: str,
        vpc_id: str,
        tags: Optional[Dict[str, str]] = None,
        route_table: Optional[str] = None,
    ) -> None:
        """Add a subnet, associated with `route_table` when given."""
        self.subnets[subnet_id] = {"VpcId": vpc_id, "Tags": dict(tags or {})}
        if route_table:
            self.route_tables[route_table]["Subnets"].append(subnet_id)

    def add_route(self, table_id: str, cidr: str, **target: str) -> None:
        """Add an active route through the given target keys."""
        route = {"DestinationCidrBlock": cidr, "State": "active"}
        route.update(target)
        self.route_tables[table_id]["Routes"].append(route)

    def add_peering(self, requester_vpc: str, accepter_vpc: str, status: str) -> str:
        """Add a peering connection in `status` and return its ID."""
        pcx_id = self._new_id("pcx")
        self.peerings[pcx_id] = {
            "RequesterVpcId": requester_vpc,
            "AccepterVpcId": accepter_vpc,
            "Status": status,
            "RequesterOptions": {},
            "AccepterOptions": {},
        }
        return pcx_id

    def fail(self, method: str, *errors: Exception, account: Optional[str] = None) -> None:
        """Make the next calls of `method` raise `errors`, in order."""
        self.failures.setdefault((method, account), []).extend(errors)

    # Inspection helpers

    def routes_to(self, table_id: str, cidr: str) -> List[Dict[str, Any]]:
        """Routes in a table for one destination CIDR."""
        return [
            r for r in self.route_tables[table_id]["Routes"] if r["DestinationCidrBlock"] == cidr
        ]

    def call_count(self, method: str) -> int:
        """Number of calls to `method` across every account."""
        return sum(1 for call in self.calls if call[2] == method)

    def live_peerings(self) -> List[str]:
        """IDs of connections not in a gone status."""
        return [
            pcx_id
            for pcx_id, pcx in self.peerings.items()
            if pcx["Status"] not in ("deleted", "rejected", "failed", "expired")
        ]

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id:017x}"

    def peering_item(self, pcx_id: str, status: Optional[str] = None) -> Dict[str, Any]:
        """Connection as describe_vpc_peering_connections returns it."""
        pcx = self.peerings[pcx_id]
        requester = self.vpcs[pcx["RequesterVpcId"]]
        accepter = self.vpcs[pcx["AccepterVpcId"]]
        return {
            "VpcPeeringConnectionId": pcx_id,
            "Status": {"Code": status or pcx["Status"]},
            "RequesterVpcInfo": {
                "VpcId": pcx["RequesterVpcId"],
                "OwnerId": requester["OwnerId"],
                "Region": requester["Region"],
                "CidrBlock": requester["CidrBlock"],
            },
            "AccepterVpcInfo": {
                "VpcId": pcx["AccepterVpcId"],
                "OwnerId": accepter["OwnerId"],
                "Region": accepter["Region"],
                "CidrBlock": accepter["CidrBlock"],
            },
        }


# describe_* operation -> list key of its response
PAGINATED_KEYS = {
    "describe_subnets": "Subnets",
    "describe_route_tables": "RouteTables",
    "describe_vpc_peering_connections": "VpcPeeringConnections",
}


class FakePaginator:
    """Splits a describe_* response into pages of FakeCloud.page_size items."""

    def __init__(self, ec2: "FakeEc2", operation: str):
        self.ec2 = ec2
        self.operation = operation

    def paginate(self, **kwargs):
        """Yield the response in pages, each but the last carrying a NextToken."""
        key = PAGINATED_KEYS[self.operation]
        items = getattr(self.ec2, self.operation)(**kwargs)[key]
        size = self.ec2.cloud.page_size
        starts = range(0, len(items), size) if items else [0]
        for index, start in enumerate(starts):
            page = {key: items[start:start + size]}
            if index < len(starts) - 1:
                page["NextToken"] = f"token-{index + 1}"
            self.ec2.cloud.pages_served += 1
            yield page


class FakeEc2:
    """boto3-shaped EC2 client bound to one account and region of a FakeCloud."""

    def __init__(self, cloud: FakeCloud, account: str, region: str):
        self.cloud = cloud
        self.account = account
        self.region = region

    def _record(self, method: str) -> None:
        """Log the call and raise the next injected failure for it, if any."""
        self.cloud.calls.append((self.account, self.region, method))
        for key in ((method, self.account), (method, None)):
            pending = self.cloud.failures.get(key)
            if pending:
                raise pending.pop(0)

    def get_paginator(self, operation: str) -> FakePaginator:
        """Paginator over one of the describe_* methods."""
        return FakePaginator(self, operation)

    def describe_vpcs(self, VpcIds):
        with self.cloud.lock:
            self._record("describe_vpcs")
            vpcs = []
            for vpc_id in VpcIds:
                if vpc_id not in self.cloud.vpcs:
                    raise client_error("InvalidVpcID.NotFound", "DescribeVpcs")
                vpcs.append({"VpcId": vpc_id, "CidrBlock": self.cloud.vpcs[vpc_id]["CidrBlock"]})
            return {"Vpcs": vpcs}

    def describe_subnets(self, Filters):
        with self.cloud.lock:
            self._record("describe_subnets")
            subnets = []
            for subnet_id, subnet in self.cloud.subnets.items():
                keep = True
                for f in Filters:
                    if f["Name"] == "vpc-id":
                        keep = keep and _matches(f["Values"], subnet["VpcId"])
                    elif f["Name"].startswith("tag:"):
                        keep = keep and _matches(f["Values"], subnet["Tags"].get(f["Name"][4:]))
                if keep:
                    tags = [{"Key": k, "Value": v} for k, v in subnet["Tags"].items()]
                    subnets.append({"SubnetId": subnet_id, "VpcId": subnet["VpcId"], "Tags": tags})
            return {"Subnets": subnets}

    def describe_route_tables(self, Filters):
        with self.cloud.lock:
            self._record("describe_route_tables")
            tables = []
            for table_id, table in self.cloud.route_tables.items():
                keep = True
                for f in Filters:
                    if f["Name"] == "vpc-id":
                        keep = keep and _matches(f["Values"], table["VpcId"])
                    elif f["Name"] == "route-table-id":
                        keep = keep and _matches(f["Values"], table_id)
                    elif f["Name"] == "association.main":
                        keep = keep and _matches(f["Values"], "true" if table["Main"] else "false")
                    elif f["Name"] == "association.subnet-id":
                        keep = keep and any(s in f["Values"] for s in table["Subnets"])
                if keep:
                    associations = [{"SubnetId": s, "Main": False} for s in table["Subnets"]]
                    if table["Main"]:
                        associations.append({"Main": True})
                    tables.append(
                        {
                            "RouteTableId": table_id,
                            "VpcId": table["VpcId"],
                            "Associations": associations,
                            "Routes": copy.deepcopy(table["Routes"]),
                        }
                    )
            return {"RouteTables": tables}

    def _table(self, table_id: str) -> Dict[str, Any]:
        if table_id not in self.cloud.route_tables:
            raise client_error("InvalidRouteTableID.NotFound")
        return self.cloud.route_tables[table_id]

    def create_route(self, RouteTableId, DestinationCidrBlock, VpcPeeringConnectionId):
        with self.cloud.lock:
            self._record("create_route")
            table = self._table(RouteTableId)
            if any(r["DestinationCidrBlock"] == DestinationCidrBlock for r in table["Routes"]):
                raise client_error("RouteAlreadyExists", "CreateRoute")
            table["Routes"].append(
                {
                    "DestinationCidrBlock": DestinationCidrBlock,
                    "VpcPeeringConnectionId": VpcPeeringConnectionId,
                    "State": "active",
                }
            )
            return {"Return": True}

    def replace_route(self, RouteTableId, DestinationCidrBlock, VpcPeeringConnectionId):
        with self.cloud.lock:
            self._record("replace_route")
            table = self._table(RouteTableId)
            for index, route in enumerate(table["Routes"]):
                if route["DestinationCidrBlock"] == DestinationCidrBlock:
                    table["Routes"][index] = {
                        "DestinationCidrBlock": DestinationCidrBlock,
                        "VpcPeeringConnectionId": VpcPeeringConnectionId,
                        "State": "active",
                    }
                    return {}
            raise client_error("InvalidRoute.NotFound", "ReplaceRoute")

    def delete_route(self, RouteTableId, DestinationCidrBlock):
        with self.cloud.lock:
            self._record("delete_route")
            table = self._table(RouteTableId)
            for route in table["Routes"]:
                if route["DestinationCidrBlock"] == DestinationCidrBlock:
                    table["Routes"].remove(route)
                    return {}
            raise client_error("InvalidRoute.NotFound", "DeleteRoute")

    def describe_vpc_peering_connections(self, Filters=None, VpcPeeringConnectionIds=None):
        with self.cloud.lock:
            self._record("describe_vpc_peering_connections")
            if VpcPeeringConnectionIds:
                for pcx_id in VpcPeeringConnectionIds:
                    if pcx_id not in self.cloud.peerings:
                        raise client_error(
                            "InvalidVpcPeeringConnectionID.NotFound",
                            "DescribeVpcPeeringConnections",
                        )
                return {
                    "VpcPeeringConnections": [
                        self.cloud.peering_item(pcx_id) for pcx_id in VpcPeeringConnectionIds
                    ]
                }
            items = []
            for pcx_id, pcx in self.cloud.peerings.items():
                keep = True
                for f in Filters or []:
                    if f["Name"] == "requester-vpc-info.vpc-id":
                        keep = keep and _matches(f["Values"], pcx["RequesterVpcId"])
                    elif f["Name"] == "accepter-vpc-info.vpc-id":
                        keep = keep and _matches(f["Values"], pcx["AccepterVpcId"])
                if keep:
                    items.append(self.cloud.peering_item(pcx_id))
            return {"VpcPeeringConnections": items}

    def create_vpc_peering_connection(
        self, VpcId, PeerVpcId, PeerOwnerId=None, PeerRegion=None, TagSpecifications=None
    ):
        with self.cloud.lock:
            self._record("create_vpc_peering_connection")
            if self.cloud.vpcs[VpcId]["OwnerId"] != self.account:
                raise client_error("UnauthorizedOperation", "CreateVpcPeeringConnection")
            pcx_id = self.cloud.add_peering(VpcId, PeerVpcId, "pending-acceptance")
            self.cloud.peerings[pcx_id]["Tags"] = TagSpecifications
            self.cloud.peerings[pcx_id]["PeerRegion"] = PeerRegion
            return {"VpcPeeringConnection": self.cloud.peering_item(pcx_id, "initiating-request")}

    def accept_vpc_peering_connection(self, VpcPeeringConnectionId):
        with self.cloud.lock:
            self._record("accept_vpc_peering_connection")
            pcx = self.cloud.peerings.get(VpcPeeringConnectionId)
            if pcx is None:
                raise client_error("InvalidVpcPeeringConnectionID.NotFound", "Accept")
            if self.cloud.vpcs[pcx["AccepterVpcId"]]["OwnerId"] != self.account:
                raise client_error("OperationNotPermitted", "AcceptVpcPeeringConnection")
            if pcx["Status"] != "pending-acceptance":
                raise client_error("InvalidStateTransition", "AcceptVpcPeeringConnection")
            pcx["Status"] = "active"
            return {
                "VpcPeeringConnection": self.cloud.peering_item(
                    VpcPeeringConnectionId, "provisioning"
                )
            }

    def modify_vpc_peering_connection_options(
        self,
        VpcPeeringConnectionId,
        RequesterPeeringConnectionOptions=None,
        AccepterPeeringConnectionOptions=None,
    ):
        with self.cloud.lock:
            self._record("modify_vpc_peering_connection_options")
            pcx = self.cloud.peerings[VpcPeeringConnectionId]
            if RequesterPeeringConnectionOptions is not None:
                if self.cloud.vpcs[pcx["RequesterVpcId"]]["OwnerId"] != self.account:
                    raise client_error("OperationNotPermitted", "ModifyOptions")
                pcx["RequesterOptions"].update(RequesterPeeringConnectionOptions)
            if AccepterPeeringConnectionOptions is not None:
                if self.cloud.vpcs[pcx["AccepterVpcId"]]["OwnerId"] != self.account:
                    raise client_error("OperationNotPermitted", "ModifyOptions")
                pcx["AccepterOptions"].update(AccepterPeeringConnectionOptions)
            return {}

    def delete_vpc_peering_connection(self, VpcPeeringConnectionId):
        with self.cloud.lock:
            self._record("delete_vpc_peering_connection")
            pcx = self.cloud.peerings.get(VpcPeeringConnectionId)
            if pcx is None:
                raise client_error("InvalidVpcPeeringConnectionID.NotFound", "Delete")
            requester_owner = self.cloud.vpcs[pcx["RequesterVpcId"]]["OwnerId"]
            if pcx["Status"] == "pending-acceptance" and requester_owner != self.account:
                # Only the requester may withdraw a request that is not yet accepted
                raise client_error("OperationNotPermitted", "DeleteVpcPeeringConnection")
            pcx["Status"] = "deleted"
            return {"Return": True}


class FakeResolver:
    """CredentialResolver stand-in handing out FakeEc2-backed contexts."""

    def __init__(self, cloud: FakeCloud, denied=()):
        self.cloud = cloud
        self.denied = set(denied)
        self.contexts: Dict[str, PeerContext] = {}
        self.resolve_calls: List[str] = []

    def resolve(self, peer) -> PeerContext:
        """Context bound to the peer's account and region, or AuthenticationError if denied."""
        self.resolve_calls.append(peer.name)
        if peer.name in self.denied:
            raise AuthenticationError(peer.name, client_error("AccessDenied", "AssumeRole"))
        if peer.name not in self.contexts:
            ec2 = FakeEc2(self.cloud, peer.account_id, peer.region)
            self.contexts[peer.name] = PeerContext(peer, ec2)
        return self.contexts[peer.name]


def build_scenario_cloud() -> FakeCloud:
    """
    prod (10.20.0.0/16) and prod-pci (10.21.0.0/16) in different accounts.

    Each VPC has a main table, an app table serving marker-tagged subnets and a
    data table serving an untagged data-tier subnet.
    """
    cloud = FakeCloud()
    cloud.add_vpc("vpc-prod", "10.20.0.0/16", PROD_ACCOUNT)
    cloud.add_route_table("rtb-prod-main", "vpc-prod", main=True)
    cloud.add_route_table("rtb-prod-app", "vpc-prod")
    cloud.add_route_table("rtb-prod-data", "vpc-prod")
    cloud.add_subnet("subnet-prod-app-a", "vpc-prod", {"Peering": "app-source"}, "rtb-prod-app")
    cloud.add_subnet("subnet-prod-app-b", "vpc-prod", {"Peering": "app-source"}, "rtb-prod-app")
    cloud.add_subnet("subnet-prod-data", "vpc-prod", {"Tier": "data"}, "rtb-prod-data")

    cloud.add_vpc("vpc-pci", "10.21.0.0/16", PCI_ACCOUNT)
    cloud.add_route_table("rtb-pci-main", "vpc-pci", main=True)
    cloud.add_route_table("rtb-pci-app", "vpc-pci")
    cloud.add_route_table("rtb-pci-data", "vpc-pci")
    cloud.add_subnet("subnet-pci-app", "vpc-pci", {"Peering": "app-peer"}, "rtb-pci-app")
    cloud.add_subnet("subnet-pci-data", "vpc-pci", {"Tier": "data"}, "rtb-pci-data")
    return cloud


def scenario_data(**overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Peer file content for the prod / prod-pci scenario; overrides patch peers by name."""
    peers = [
        {
            "name": "prod",
            "vpc_id": "vpc-prod",
            "region": "us-east-1",
            "role_arn": f"arn:aws:iam::{PROD_ACCOUNT}:role/vpc-peering",
            "additional_routes": True,
            "route_tag": "app",
        },
        {
            "name": "prod-pci",
            "vpc_id": "vpc-pci",
            "region": "us-east-1",
            "role_arn": f"arn:aws:iam::{PCI_ACCOUNT}:role/vpc-peering",
            "additional_routes": True,
            "route_tag": "app",
        },
    ]
    for peer in peers:
        peer.update(overrides.get(peer["name"].replace("-", "_"), {}))
    return {"peers": peers, "matrix": {"prod": ["prod-pci"]}}
