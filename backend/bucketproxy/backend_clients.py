"""
Helper for creating the boto3 client that talks to the S3-compatible backend.
"""
from __future__ import annotations

import boto3
from botocore.config import Config

from .config import Settings

MAX_ATTEMPTS = 3


def create_client(settings: Settings):
    """
    Build one S3 client for the process.

    Every call is bounded by the configured connect/read timeouts and retried
    at most ``MAX_ATTEMPTS`` times. Path-style addressing keeps bucket names out
    of the hostname, which most S3-compatible providers require.
    """
    return boto3.client(
        "s3",
        endpoint_url=settings.endpoint,
        region_name=settings.region,
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        config=Config(
            connect_timeout=settings.storage_connect_timeout,
            read_timeout=settings.storage_read_timeout,
            retries={"max_attempts": MAX_ATTEMPTS, "mode": "standard"},
            s3={"addressing_style": "path"},
        ),
    )
