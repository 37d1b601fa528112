"""
Peer registry: loads and validates the declarative peer list and peering matrix.

File format (YAML or JSON):

    peers:
      - name: prod
        vpc_id: vpc-0a1b2c3d
        region: us-east-1
        role_arn: arn:aws:iam::111111111111:role/vpc-peering
        dns_resolution: true
        additional_routes: true
        route_tag: app
        cidr_block: 10.20.0.0/16   # optional, read from the VPC when omitted
    matrix:
      prod: [prod-pci]

Validation collects every violation before raising, so a single corrective
pass fixes the whole file.
"""

import ipaddress
import json
import os
import re
from typing import Any, Dict, Iterator, List, Optional

import yaml

from peering.errors import ConfigurationError
from peering.models import Peer, PeeringEdge
from peering.utils.logging_utils import log_progress

ROLE_ARN_PATTERN = re.compile(r"^arn:aws[a-z-]*:iam::(\d{12}):role/.+$")
ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")

REQUIRED_FIELDS = ("vpc_id", "region", "role_arn")
BOOLEAN_FIELDS = ("dns_resolution", "additional_routes")


class PeerRegistry:
    """Validated set of named peers plus the peering matrix."""

    def __init__(self, peers: List[Peer], matrix: Dict[str, List[str]]):
        self._peers: Dict[str, Peer] = {peer.name: peer for peer in peers}
        self._matrix = {source: list(targets) for source, targets in matrix.items()}

    @property
    def peers(self) -> List[Peer]:
        """Peers in file order."""
        return list(self._peers.values())

    @property
    def names(self) -> List[str]:
        """Peer names in file order."""
        return list(self._peers.keys())

    @property
    def matrix(self) -> Dict[str, List[str]]:
        """Copy of the raw peering matrix."""
        return {source: list(targets) for source, targets in self._matrix.items()}

    def get(self, name: str) -> Peer:
        """
        Look up a peer by name.

        Raises:
            KeyError: If no peer has that name.
        """
        try:
            return self._peers[name]
        except KeyError:
            raise KeyError(f"Unknown peer: {name}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._peers

    def __iter__(self) -> Iterator[Peer]:
        return iter(self._peers.values())

    def __len__(self) -> int:
        return len(self._peers)

    def edges(self) -> List[PeeringEdge]:
        """
        Expand the matrix into edges, one per unordered peer pair.

        An edge declared in both orientations is kept once, in the orientation
        declared first.

        Returns:
            List of PeeringEdge in declaration order
        """
        seen = set()
        edges = []
        for source, targets in self._matrix.items():
            for target in targets:
                edge = PeeringEdge(source, target)
                if edge.pair in seen:
                    continue
                seen.add(edge.pair)
                edges.append(edge)
        return edges

    @classmethod
    def from_dict(cls, data: Any) -> "PeerRegistry":
        """
        Build and validate a registry from parsed file content.

        Args:
            data: Mapping with 'peers' (list) and 'matrix' (mapping)

        Returns:
            PeerRegistry

        Raises:
            ConfigurationError: Listing every violation found
        """
        violations: List[str] = []

        if not isinstance(data, dict):
            raise ConfigurationError(["Peer file must contain a mapping with 'peers' and 'matrix'"])

        raw_peers = data.get("peers")
        raw_matrix = data.get("matrix") or {}

        if not isinstance(raw_peers, list) or not raw_peers:
            violations.append("'peers' must be a non-empty list")
            raw_peers = []
        if not isinstance(raw_matrix, dict):
            violations.append("'matrix' must be a mapping of peer name to a list of peer names")
            raw_matrix = {}

        peers: List[Peer] = []
        seen_names: Dict[str, int] = {}
        for index, raw in enumerate(raw_peers):
            peer = _parse_peer(raw, index, violations)
            if peer is None:
                continue
            if peer.name in seen_names:
                violations.append(
                    f"peers[{index}]: duplicate name '{peer.name}' "
                    f"(first defined at peers[{seen_names[peer.name]}])"
                )
                continue
            seen_names[peer.name] = index
            peers.append(peer)

        matrix: Dict[str, List[str]] = {}
        for source, targets in raw_matrix.items():
            source = str(source)
            if source not in seen_names:
                violations.append(f"matrix: source '{source}' is not a registered peer")
            if not isinstance(targets, list):
                violations.append(f"matrix['{source}']: targets must be a list")
                continue
            valid_targets = []
            for target in targets:
                target = str(target)
                if target == source:
                    violations.append(f"matrix['{source}']: self-edge not allowed")
                    continue
                if target not in seen_names:
                    violations.append(
                        f"matrix['{source}']: target '{target}' is not a registered peer"
                    )
                    continue
                if target not in valid_targets:
                    valid_targets.append(target)
            matrix[source] = valid_targets

        if violations:
            raise ConfigurationError(violations)

        return cls(peers, matrix)


def _parse_peer(raw: Any, index: int, violations: List[str]) -> Optional[Peer]:
    """Validate one peer entry, appending problems to `violations`."""
    where = f"peers[{index}]"
    if not isinstance(raw, dict):
        violations.append(f"{where}: entry must be a mapping")
        return None

    name = str(raw.get("name") or "").strip()
    if name:
        where = f"{where} ('{name}')"
    else:
        violations.append(f"{where}: 'name' is required")

    problems_before = len(violations)

    for field_name in REQUIRED_FIELDS:
        value = raw.get(field_name)
        if value is None or not str(value).strip():
            violations.append(f"{where}: '{field_name}' is required")

    role_arn = str(raw.get("role_arn") or "").strip()
    role_account = None
    if role_arn:
        match = ROLE_ARN_PATTERN.match(role_arn)
        if match:
            role_account = match.group(1)
        else:
            violations.append(f"{where}: invalid role_arn '{role_arn}'")

    account_id = str(raw.get("account_id") or "").strip()
    if account_id:
        if not ACCOUNT_ID_PATTERN.match(account_id):
            violations.append(f"{where}: account_id '{account_id}' must be a 12-digit number")
        elif role_account and role_account != account_id:
            violations.append(
                f"{where}: account_id '{account_id}' does not match role_arn account '{role_account}'"
            )
    else:
        account_id = role_account or ""

    for field_name in BOOLEAN_FIELDS:
        if field_name in raw and not isinstance(raw[field_name], bool):
            violations.append(f"{where}: '{field_name}' must be true or false")

    cidr_block = raw.get("cidr_block")
    if cidr_block is not None:
        try:
            ipaddress.ip_network(str(cidr_block), strict=True)
        except ValueError:
            violations.append(f"{where}: invalid cidr_block '{cidr_block}'")

    if not name or len(violations) > problems_before:
        return None

    return Peer(
        name=name,
        vpc_id=str(raw["vpc_id"]).strip(),
        account_id=account_id,
        region=str(raw["region"]).strip(),
        role_arn=role_arn,
        dns_resolution=raw.get("dns_resolution", True),
        has_additional_routes=raw.get("additional_routes", False),
        route_tag=str(raw.get("route_tag") or "").strip(),
        cidr_block=str(cidr_block) if cidr_block is not None else None,
    )


def load_registry(config_path: str) -> PeerRegistry:
    """
    Load and validate the peer file from JSON or YAML.

    The file format is detected by extension:
    - .json files are parsed as JSON
    - .yaml or .yml files are parsed as YAML

    Args:
        config_path: Path to the peer file

    Returns:
        Validated PeerRegistry

    Raises:
        ConfigurationError: If the file is missing, unparseable, or invalid
    """
    if not os.path.exists(config_path):
        raise ConfigurationError([f"Peer file not found: {config_path}"])

    _, ext = os.path.splitext(config_path)
    ext = ext.lower()

    with open(config_path, "r") as f:
        if ext == ".json":
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError([f"Invalid JSON in {config_path}: {e.msg}"])
        elif ext in (".yaml", ".yml"):
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError([f"Invalid YAML in {config_path}: {e}"])
        else:
            raise ConfigurationError(
                [f"Unsupported peer file format: {ext}. Use .json, .yaml, or .yml"]
            )

    registry = PeerRegistry.from_dict(data)
    log_progress(
        "Peer Registry",
        f"Loaded {len(registry)} peers and {len(registry.edges())} edges from {config_path}",
    )
    return registry
