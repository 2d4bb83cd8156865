# pipenotify/utils/ssm.py
import os
from functools import lru_cache

import boto3

# Default region fallback (so code doesn't raise NoRegionError)
_REGION = os.getenv("AWS_DEFAULT_REGION", os.getenv("AWS_REGION", "us-east-1"))


@lru_cache(maxsize=1)
def _ssm_client():
    return boto3.client("ssm", region_name=_REGION)


def parameter_name(name: str, prefix: str = "") -> str:
    """Build the full SSM parameter path, e.g. ``/pipenotify/prod/DATABASE_URL``."""
    if not prefix:
        return name
    return f"{prefix.rstrip('/')}/{name}"


def get_param(name: str, decrypt: bool = True, prefix: str = "") -> str:
    """Fetch a parameter from AWS SSM Parameter Store (raises on AWS errors)."""
    client = _ssm_client()
    resp = client.get_parameter(Name=parameter_name(name, prefix), WithDecryption=decrypt)
    return resp["Parameter"]["Value"]
