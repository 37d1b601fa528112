"""
Configuration module for the peering orchestrator.

Reads environment variables and provides configuration values for credential
handling, retry policy, concurrency, marker tags, and report output.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from peering.errors import ConfigurationError


def _load_dotenv_if_present(dotenv_path: Path) -> None:
    """
    Loads environment variables from a .env file if it exists and not running in AWS.

    Args:
        dotenv_path (Path): Path to the .env file.
    """
    # Detect if running outside of AWS (i.e., local)
    for aws_indicator in (
        "AWS_EXECUTION_ENV",
        "AWS_LAMBDA_FUNCTION_NAME",
        "ECS_CONTAINER_METADATA_URI",
    ):
        if os.getenv(aws_indicator):
            return
    if dotenv_path.exists():
        # Do not overwrite existing environment variables
        load_dotenv(dotenv_path=dotenv_path, override=False)


env_path = Path(__file__).parent.parent / ".env"
_load_dotenv_if_present(env_path)


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable; unparseable values become -1 for validate() to reject."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return -1


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable; unparseable values become -1.0 for validate() to reject."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return -1.0


class Config:
    """
    Configuration class that reads environment variables for the peering orchestrator.
    """

    # Peer file location
    PEERING_ENV: str = os.getenv("PEERING_ENV", "production")
    PEERING_CONFIG_PATH: str = os.getenv("PEERING_CONFIG_PATH", "")
    ENVIRONMENTS_DIR: str = os.getenv("ENVIRONMENTS_DIR", "environments")
    PEERING_FILE_NAME: str = "peering.yaml"

    # Credentials
    AWS_PROFILE: str = os.getenv("AWS_PROFILE", "")
    ROLE_SESSION_NAME: str = os.getenv("ROLE_SESSION_NAME", "vpc-peering")
    ROLE_EXTERNAL_ID: str = os.getenv("ROLE_EXTERNAL_ID", "")

    # Marker tag convention for subnet-level route scope
    PEERING_TAG_KEY: str = os.getenv("PEERING_TAG_KEY", "Peering")
    SOURCE_ROLE_SUFFIX: str = "source"
    PEER_ROLE_SUFFIX: str = "peer"
    MANAGED_BY_TAG_VALUE: str = "vpc-peering"

    # Concurrency and retry policy
    MAX_WORKERS: int = _env_int("MAX_WORKERS", 4)
    MAX_RETRIES: int = _env_int("MAX_RETRIES", 5)
    RETRY_BASE_DELAY: float = _env_float("RETRY_BASE_DELAY", 1.0)
    RETRY_MAX_DELAY: float = _env_float("RETRY_MAX_DELAY", 30.0)
    ACTIVATION_TIMEOUT: float = _env_float("ACTIVATION_TIMEOUT", 120.0)
    API_TIMEOUT: int = _env_int("API_TIMEOUT", 30)

    # Report output
    REPORT_BUCKET: str = os.getenv("REPORT_BUCKET", "")
    REPORT_PREFIX: str = os.getenv("REPORT_PREFIX", "logs/peering")

    @classmethod
    def validate(cls) -> None:
        """
        Validate that numeric settings are usable.

        Raises:
            ConfigurationError: Listing every invalid setting.
        """
        problems: List[str] = []

        if cls.MAX_WORKERS < 1:
            problems.append("MAX_WORKERS must be a positive integer")
        if cls.MAX_RETRIES < 1:
            problems.append("MAX_RETRIES must be a positive integer")
        if cls.RETRY_BASE_DELAY < 0:
            problems.append("RETRY_BASE_DELAY must be a non-negative number")
        if cls.RETRY_MAX_DELAY < cls.RETRY_BASE_DELAY:
            problems.append("RETRY_MAX_DELAY must be >= RETRY_BASE_DELAY")
        if cls.ACTIVATION_TIMEOUT <= 0:
            problems.append("ACTIVATION_TIMEOUT must be a positive number")
        if cls.API_TIMEOUT < 1:
            problems.append("API_TIMEOUT must be a positive integer")
        if not cls.PEERING_TAG_KEY:
            problems.append("PEERING_TAG_KEY must not be empty")

        if problems:
            raise ConfigurationError(problems)

    @classmethod
    def get_peering_file(cls, env: Optional[str] = None) -> str:
        """
        Resolve the peer file path for an environment.

        An explicit PEERING_CONFIG_PATH wins over the environment layout.

        Args:
            env: Environment name (e.g., 'production'); defaults to PEERING_ENV

        Returns:
            str: Path to the peer file
        """
        if cls.PEERING_CONFIG_PATH and env is None:
            return cls.PEERING_CONFIG_PATH
        env = env or cls.PEERING_ENV
        return str(Path(cls.ENVIRONMENTS_DIR) / env / cls.PEERING_FILE_NAME)

    @classmethod
    def get_marker_value(cls, route_tag: str, is_source: bool) -> str:
        """
        Build the marker tag value a subnet carries to opt into peering routes.

        Args:
            route_tag: The peer's route tag (e.g., 'app')
            is_source: Whether the peer is the source side of the edge

        Returns:
            str: Tag value such as 'app-source' or 'app-peer'
        """
        suffix = cls.SOURCE_ROLE_SUFFIX if is_source else cls.PEER_ROLE_SUFFIX
        return f"{route_tag}-{suffix}"

    @classmethod
    def get_report_key(cls, run_timestamp: datetime) -> str:
        """
        Generate the S3 key for a run report.

        Args:
            run_timestamp: Timestamp when the run started

        Returns:
            str: S3 key for the report file
        """
        date_str = run_timestamp.strftime("%Y/%m/%d")
        time_str = run_timestamp.strftime("%H%M%S")
        return f"{cls.REPORT_PREFIX}/{date_str}/run-{time_str}.json"
