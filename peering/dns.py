"""
DNS resolution configurator.

Sets "allow DNS resolution from remote VPC" on each side of an active peering
connection according to that side's own peer flag. Failures degrade the edge
but never abort it.
"""

import threading
from typing import Optional

from peering.credentials import PeerContext
from peering.models import DnsResult, PeeringConnection
from peering.retry import call_with_retries
from peering.utils.logging_utils import log_progress, log_warning


def configure_dns(
    connection: PeeringConnection,
    requester_ctx: PeerContext,
    accepter_ctx: PeerContext,
    cancel_event: Optional[threading.Event] = None,
) -> DnsResult:
    """
    Apply per-side DNS resolution options to an active connection.

    Each side's option is modified from that side's own credentials, as EC2
    requires for cross-account connections. A side whose peer has
    dns_resolution=false is explicitly disabled, whatever its partner wants.

    Args:
        connection: Active peering connection
        requester_ctx: Context of the connection's requester peer
        accepter_ctx: Context of the connection's accepter peer
        cancel_event: When set, retries stop early

    Returns:
        DnsResult with the values applied and any errors
    """
    result = DnsResult()
    section = f"DNS {connection.connection_id}"

    sides = (
        ("requester", "RequesterPeeringConnectionOptions", requester_ctx),
        ("accepter", "AccepterPeeringConnectionOptions", accepter_ctx),
    )
    for side, option_key, ctx in sides:
        allow = bool(ctx.peer.dns_resolution)
        params = {
            "VpcPeeringConnectionId": connection.connection_id,
            option_key: {"AllowDnsResolutionFromRemoteVpc": allow},
        }
        try:
            call_with_retries(
                f"ModifyVpcPeeringConnectionOptions {side} {connection.connection_id}",
                lambda: ctx.ec2.modify_vpc_peering_connection_options(**params),
                cancel_event=cancel_event,
            )
        except Exception as e:
            log_warning(section, f"{side} side ({ctx.name}) not updated: {e}")
            result.errors.append({"side": side, "peer": ctx.name, "message": str(e)})
            continue

        setattr(result, side, allow)
        log_progress(
            section,
            f"{side} side ({ctx.name}): remote DNS resolution {'enabled' if allow else 'disabled'}",
        )

    return result
