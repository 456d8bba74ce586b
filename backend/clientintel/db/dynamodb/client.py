from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config

from ...settings import settings

# The SDK makes exactly one attempt. Counter writes are compare-and-swap and
# must not be replayed by botocore; reads opt into backoff through ddb_call.
_SINGLE_ATTEMPT = Config(
    retries={"total_max_attempts": 1, "mode": "standard"},
    connect_timeout=2,
    read_timeout=10,
)


def _boto_kwargs() -> dict[str, Any]:
    kwargs: dict[str, Any] = {"region_name": settings.aws_region, "config": _SINGLE_ATTEMPT}
    endpoint = str(settings.ddb_endpoint_url or "").strip()
    if endpoint:
        # DynamoDB Local / LocalStack during development.
        kwargs["endpoint_url"] = endpoint
    return kwargs


@lru_cache(maxsize=1)
def dynamodb_resource():
    return boto3.resource("dynamodb", **_boto_kwargs())


@lru_cache(maxsize=1)
def dynamodb_client():
    """Low-level client; TransactWriteItems is only exposed here."""
    return boto3.client("dynamodb", **_boto_kwargs())
