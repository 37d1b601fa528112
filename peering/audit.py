"""
Tier-isolation audit.

The reconciler has no notion of tiers; isolation holds only because data-tier
subnets are never tagged. This audit checks the result: any route table that
is outside a peer's routing scope yet routes a registered peer's CIDR through a
peering connection is reported as a violation.
"""

from dataclasses import dataclass
from typing import Dict, List, Set

from peering.credentials import CredentialResolver, PeerContext
from peering.discovery import discover, list_route_tables, main_route_table, marker_for
from peering.registry import PeerRegistry
from peering.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
    log_warning,
)


@dataclass
class IsolationViolation:
    peer: str
    route_table_id: str
    destination_cidr: str
    via: str
    destination_peer: str

    def to_dict(self) -> dict:
        """Serialize the violation for the audit report."""
        return {
            "peer": self.peer,
            "route_table_id": self.route_table_id,
            "destination_cidr": self.destination_cidr,
            "via": self.via,
            "destination_peer": self.destination_peer,
        }


@dataclass
class AuditResult:
    violations: List[IsolationViolation]
    errors: List[dict]

    @property
    def exit_code(self) -> int:
        """1 when any violation or lookup error was found, else 0."""
        return 1 if self.violations or self.errors else 0

    def to_dict(self) -> dict:
        """Serialize violations and lookup errors for the audit report."""
        return {
            "violations": [v.to_dict() for v in self.violations],
            "errors": list(self.errors),
        }


def allowed_tables(ctx: PeerContext) -> Set[str]:
    """
    Route tables that may legitimately carry this peer's peering routes.

    Args:
        ctx: Peer context

    Returns:
        Set of route table IDs: the main table, plus tables of marker-tagged
        subnets (either role) when the peer has additional routes enabled
    """
    allowed = {main_route_table(ctx).route_table_id}
    if ctx.peer.has_additional_routes:
        for is_source in (True, False):
            for target in discover(ctx, marker_for(ctx, is_source)):
                allowed.add(target.route_table_id)
    return allowed


def audit_isolation(registry: PeerRegistry, resolver: CredentialResolver) -> AuditResult:
    """
    Scan every peer's route tables for peer routes outside the tagged scope.

    Args:
        registry: Peers to audit
        resolver: Credential resolver for the peers

    Returns:
        AuditResult with violations and per-peer errors
    """
    section = "Isolation Audit"
    log_section_start(section, f"{len(registry)} peers")

    contexts: Dict[str, PeerContext] = {}
    errors: List[dict] = []
    for peer in registry:
        try:
            contexts[peer.name] = resolver.resolve(peer)
        except Exception as e:
            log_error(section, f"Peer '{peer.name}': {e}")
            errors.append({"peer": peer.name, "message": str(e)})

    cidrs: Dict[str, str] = {}
    for name, ctx in contexts.items():
        try:
            cidrs[ctx.vpc_cidr()] = name
        except Exception as e:
            log_error(section, f"Peer '{name}': {e}")
            errors.append({"peer": name, "message": str(e)})

    violations: List[IsolationViolation] = []
    for name, ctx in contexts.items():
        try:
            allowed = allowed_tables(ctx)
            tables = list_route_tables(ctx)
        except Exception as e:
            log_error(section, f"Peer '{name}': {e}")
            errors.append({"peer": name, "message": str(e)})
            continue

        for table in tables:
            table_id = table["RouteTableId"]
            if table_id in allowed:
                continue
            for route in table.get("Routes", []):
                destination = route.get("DestinationCidrBlock")
                via = route.get("VpcPeeringConnectionId")
                if not via or destination not in cidrs or cidrs[destination] == name:
                    continue
                violation = IsolationViolation(name, table_id, destination, via, cidrs[destination])
                log_warning(
                    section,
                    f"{table_id} in '{name}' routes {destination} ({cidrs[destination]}) via {via} "
                    f"but is outside the peering scope",
                )
                violations.append(violation)

        log_progress(section, f"Peer '{name}': checked {len(tables)} route tables")

    log_section_complete(
        section, f"{len(violations)} violation(s), {len(errors)} error(s)"
    )
    return AuditResult(violations, errors)
