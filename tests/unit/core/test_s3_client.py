"""Unit tests for S3 session helpers."""

from __future__ import annotations

from pathlib import Path

from core.config import VitalConfig
from core.s3_client import build_boto3_session_kwargs


def test_build_boto3_session_kwargs_includes_configured_values(tmp_path: Path) -> None:
    """Session kwargs should only carry configured profile and region."""
    config = VitalConfig(data_root=tmp_path, s3_profile="health", s3_region="eu-west-1")

    kwargs = build_boto3_session_kwargs(config)

    assert kwargs == {"profile_name": "health", "region_name": "eu-west-1"}
    assert build_boto3_session_kwargs(VitalConfig(data_root=tmp_path)) == {}
