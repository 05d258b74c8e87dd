from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

from ..config import settings

# Presigned document URLs must be SigV4 for buckets outside us-east-1
_CLIENT_CONFIG = Config(retries={"max_attempts": 3}, signature_version="s3v4")


def boto3_client(service: str) -> Any:
    kwargs: dict[str, Any] = {"region_name": settings.aws.region, "config": _CLIENT_CONFIG}
    if settings.aws.access_key_id and settings.aws.secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws.access_key_id
        kwargs["aws_secret_access_key"] = settings.aws.secret_access_key
    if service == "s3" and settings.aws.s3_endpoint_url:
        kwargs["endpoint_url"] = settings.aws.s3_endpoint_url
    return boto3.client(service, **kwargs)


def public_object_url(bucket: str, key: str) -> str:
    """URL of a public-read object, honouring a custom S3 endpoint."""
    if settings.aws.s3_endpoint_url:
        return f"{settings.aws.s3_endpoint_url.rstrip('/')}/{bucket}/{key}"
    return f"https://{bucket}.s3.{settings.aws.region}.amazonaws.com/{key}"
