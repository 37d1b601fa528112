"""
Credential/context resolver.

Assumes each peer's IAM role and hands out a region-scoped EC2 client for it.
Contexts are cached by peer name for the lifetime of a run; a rejected role
assumption is cached as well so every edge touching that peer fails fast
while unrelated edges carry on.
"""

import threading
from typing import Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from peering.config import Config
from peering.errors import AuthenticationError
from peering.models import Peer
from peering.retry import call_with_retries, is_transient
from peering.utils.locks import TableLocks
from peering.utils.logging_utils import log_progress, log_error


def _boto_config(region: str) -> BotoConfig:
    # Retries are handled by peering.retry, so botocore makes a single attempt
    return BotoConfig(
        region_name=region,
        retries={"mode": "standard", "max_attempts": 1},
        connect_timeout=Config.API_TIMEOUT,
        read_timeout=Config.API_TIMEOUT,
    )


class PeerContext:
    """Authenticated, region-scoped handle for one peer."""

    def __init__(self, peer: Peer, ec2, session=None):
        self.peer = peer
        self.ec2 = ec2
        self.session = session
        self._cidr: Optional[str] = peer.cidr_block
        self._cidr_lock = threading.Lock()

    @property
    def name(self) -> str:
        """Name of the peer this context belongs to."""
        return self.peer.name

    def vpc_cidr(self) -> str:
        """
        Return the peer's VPC CIDR, reading it from EC2 once if not configured.

        Returns:
            str: Primary IPv4 CIDR block of the VPC
        """
        with self._cidr_lock:
            if self._cidr is None:
                response = call_with_retries(
                    f"DescribeVpcs {self.peer.vpc_id}",
                    lambda: self.ec2.describe_vpcs(VpcIds=[self.peer.vpc_id]),
                )
                vpcs = response.get("Vpcs", [])
                if not vpcs:
                    raise ValueError(f"VPC {self.peer.vpc_id} not found for peer '{self.peer.name}'")
                self._cidr = vpcs[0]["CidrBlock"]
            return self._cidr

    def __repr__(self) -> str:
        return f"PeerContext({self.peer.name}, {self.peer.account_id}/{self.peer.region})"


class CredentialResolver:
    """
    Resolves peers to PeerContext objects via STS role assumption.

    Args:
        base_session: Session whose credentials call sts:AssumeRole
            (defaults to a session for Config.AWS_PROFILE)
        session_name: RoleSessionName for the assumed sessions
        external_id: Optional ExternalId passed to AssumeRole
    """

    def __init__(
        self,
        base_session: Optional[boto3.Session] = None,
        session_name: Optional[str] = None,
        external_id: Optional[str] = None,
    ):
        self._base_session = base_session
        self.session_name = session_name or Config.ROLE_SESSION_NAME
        self.external_id = external_id if external_id is not None else Config.ROLE_EXTERNAL_ID
        self._contexts: Dict[str, PeerContext] = {}
        self._failures: Dict[str, AuthenticationError] = {}
        self._locks = TableLocks()
        # boto3 Sessions are not thread-safe; guards the shared base session
        self._session_lock = threading.Lock()
        self.assume_count = 0

    @property
    def base_session(self) -> boto3.Session:
        """Session whose credentials call sts:AssumeRole, created on first use."""
        with self._session_lock:
            return self._ensure_base_session()

    def _ensure_base_session(self) -> boto3.Session:
        """Create the base session if needed; the caller holds _session_lock."""
        if self._base_session is None:
            session_kwargs = {}
            if Config.AWS_PROFILE:
                session_kwargs["profile_name"] = Config.AWS_PROFILE
            self._base_session = boto3.Session(**session_kwargs)
        return self._base_session

    def _sts_client(self, region: str):
        """Create an STS client from the base session, one thread at a time."""
        with self._session_lock:
            return self._ensure_base_session().client("sts", region_name=region)

    def resolve(self, peer: Peer) -> PeerContext:
        """
        Return the cached context for a peer, assuming its role on first use.

        Args:
            peer: Peer to authenticate as

        Returns:
            PeerContext with an EC2 client in the peer's region

        Raises:
            AuthenticationError: If the role assumption is rejected
        """
        with self._locks.hold(peer.name):
            if peer.name in self._contexts:
                return self._contexts[peer.name]
            if peer.name in self._failures:
                raise self._failures[peer.name]

            try:
                context = self._assume(peer)
            except AuthenticationError as e:
                self._failures[peer.name] = e
                raise

            self._contexts[peer.name] = context
            return context

    def _assume(self, peer: Peer) -> PeerContext:
        """Assume the peer's role and build an EC2 client from the temporary credentials."""
        log_progress("Credential Resolver", f"Assuming {peer.role_arn} for peer '{peer.name}'")

        request = {
            "RoleArn": peer.role_arn,
            "RoleSessionName": f"{self.session_name}-{peer.name}"[:64],
        }
        if self.external_id:
            request["ExternalId"] = self.external_id

        try:
            sts = self._sts_client(peer.region)
            response = call_with_retries(
                f"AssumeRole {peer.name}", lambda: sts.assume_role(**request)
            )
        except ClientError as e:
            log_error("Credential Resolver", f"Peer '{peer.name}': {e}")
            raise AuthenticationError(peer.name, e) from e
        except BotoCoreError as e:
            if is_transient(e):
                raise
            log_error("Credential Resolver", f"Peer '{peer.name}': {e}")
            raise AuthenticationError(peer.name, e) from e

        with self._session_lock:
            self.assume_count += 1
        credentials = response["Credentials"]
        session = boto3.Session(
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
            region_name=peer.region,
        )
        ec2 = session.client("ec2", config=_boto_config(peer.region))
        return PeerContext(peer, ec2, session=session)

    def clear_cache(self) -> None:
        """Forget cached contexts and failures so the next resolve assumes roles again."""
        self._contexts.clear()
        self._failures.clear()
