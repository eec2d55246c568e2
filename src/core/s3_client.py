"""Boto3 client construction for S3 sources and stores.

This module encapsulates boto3 session creation so chunk sources and
series stores share profile, region, and timeout behavior.
"""

from __future__ import annotations

from typing import Any

from core.config import VitalConfig
from core.errors import VitalDependencyError


def create_s3_client(config: VitalConfig, timeout_seconds: float | None = None) -> Any:
    """Create a boto3 S3 client.

    Args:
        config: Runtime config containing optional profile/region.
        timeout_seconds: Optional connect/read timeout applied to each request.

    Returns:
        Boto3 S3 client.

    Raises:
        VitalDependencyError: If boto3 is missing.
    """
    try:
        import boto3
        from botocore.config import Config
    except ImportError as error:
        raise VitalDependencyError(
            "S3 support requires boto3, but it is not installed. "
            "Install boto3 to read s3:// exports or store series in S3."
        ) from error
    session = boto3.session.Session(**build_boto3_session_kwargs(config))
    if timeout_seconds is None:
        return session.client("s3")
    client_config = Config(
        connect_timeout=timeout_seconds,
        read_timeout=timeout_seconds,
        retries={"max_attempts": 1, "mode": "standard"},
    )
    return session.client("s3", config=client_config)


def build_boto3_session_kwargs(config: VitalConfig) -> dict[str, str]:
    """Build boto3 Session kwargs from config.

    Args:
        config: Runtime config.

    Returns:
        Session keyword arguments.
    """
    kwargs: dict[str, str] = {}
    if config.s3_profile:
        kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        kwargs["region_name"] = config.s3_region
    return kwargs
