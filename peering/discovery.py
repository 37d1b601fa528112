"""
Route table discovery.

Finds the route tables a peer's routes may be written to: the VPC's main
route table, plus the tables of subnets carrying the peer's marker tag.
Tag presence is the only source of truth for subnet-level scope; untagged
subnets are never returned.
"""

from typing import Any, Dict, List

from peering.config import Config
from peering.credentials import PeerContext
from peering.models import MarkerTag, RouteTableTarget
from peering.retry import call_with_retries


def collect_pages(ec2, operation: str, result_key: str, **kwargs) -> List[Dict[str, Any]]:
    """
    Collect every page of a describe call through its boto3 paginator.

    Args:
        ec2: EC2 client
        operation: Paginated client method, e.g. 'describe_subnets'
        result_key: Response key holding the page's items
        **kwargs: Arguments passed to paginate()

    Returns:
        Items from all pages, in order
    """
    paginator = ec2.get_paginator(operation)
    items: List[Dict[str, Any]] = []
    for page in paginator.paginate(**kwargs):
        items.extend(page.get(result_key, []))
    return items


def marker_for(ctx: PeerContext, is_source: bool) -> MarkerTag:
    """
    Marker tag identifying a peer's subnets for one side of an edge.

    Args:
        ctx: Peer context
        is_source: Whether the peer is the edge's source

    Returns:
        MarkerTag such as Peering=app-source
    """
    value = Config.get_marker_value(ctx.peer.marker_scope, is_source)
    return MarkerTag(Config.PEERING_TAG_KEY, value)


def describe_route_tables(ctx: PeerContext, filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Every route table matching `filters`, across all pages."""
    return call_with_retries(
        f"DescribeRouteTables {ctx.peer.vpc_id}",
        lambda: collect_pages(ctx.ec2, "describe_route_tables", "RouteTables", Filters=filters),
    )


def list_route_tables(ctx: PeerContext) -> List[Dict[str, Any]]:
    """Every route table in the peer's VPC."""
    return describe_route_tables(ctx, [{"Name": "vpc-id", "Values": [ctx.peer.vpc_id]}])


def main_route_table(ctx: PeerContext) -> RouteTableTarget:
    """
    Return the main route table of the peer's VPC.

    Raises:
        ValueError: If the VPC has no main route table
    """
    tables = describe_route_tables(
        ctx,
        [
            {"Name": "vpc-id", "Values": [ctx.peer.vpc_id]},
            {"Name": "association.main", "Values": ["true"]},
        ],
    )
    if not tables:
        raise ValueError(f"No main route table found in {ctx.peer.vpc_id} ({ctx.name})")
    return RouteTableTarget(tables[0]["RouteTableId"], ctx.name, "main")


def discover(ctx: PeerContext, marker: MarkerTag) -> List[RouteTableTarget]:
    """
    Find the route tables serving subnets that carry a marker tag.

    Subnets without an explicit route table association use the main table,
    which is returned with scope 'main'. Several subnets sharing a table
    yield one target.

    Args:
        ctx: Peer context whose VPC is searched
        marker: Tag key/value a subnet must carry

    Returns:
        List of RouteTableTarget sorted by route table ID
    """
    subnets = call_with_retries(
        f"DescribeSubnets {ctx.peer.vpc_id} {marker}",
        lambda: collect_pages(
            ctx.ec2,
            "describe_subnets",
            "Subnets",
            Filters=[
                {"Name": "vpc-id", "Values": [ctx.peer.vpc_id]},
                {"Name": f"tag:{marker.key}", "Values": [marker.value]},
            ],
        ),
    )
    subnet_ids = sorted({subnet["SubnetId"] for subnet in subnets})
    if not subnet_ids:
        return []

    tables = describe_route_tables(
        ctx,
        [
            {"Name": "vpc-id", "Values": [ctx.peer.vpc_id]},
            {"Name": "association.subnet-id", "Values": subnet_ids},
        ],
    )

    targets: Dict[str, RouteTableTarget] = {}
    associated = set()
    for table in tables:
        for association in table.get("Associations", []):
            subnet_id = association.get("SubnetId")
            if subnet_id in subnet_ids:
                associated.add(subnet_id)
                targets.setdefault(
                    table["RouteTableId"],
                    RouteTableTarget(table["RouteTableId"], ctx.name, "subnet", str(marker)),
                )

    if len(associated) < len(subnet_ids):
        main = main_route_table(ctx)
        targets.setdefault(main.route_table_id, main)

    return [targets[key] for key in sorted(targets)]
