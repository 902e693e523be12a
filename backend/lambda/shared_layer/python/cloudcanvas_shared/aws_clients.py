"""cloudcanvas_shared.aws_clients — boto3 client factories.

The DynamoDB client is built per store instance (see ``store.DocumentStore``)
so callers control its lifetime. The EventBridge client is a lazy singleton:
it is only needed on the admin update path and holds no request state.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from cloudcanvas_shared.config import Settings

_eb = None


def _new_ddb_client(settings: Settings):
    """Create a DynamoDB client for the configured region/endpoint."""
    kwargs = {
        "region_name": settings.region,
        "config": Config(retries={"max_attempts": 5, "mode": "standard"}),
    }
    if settings.endpoint_url:
        kwargs["endpoint_url"] = settings.endpoint_url
    return boto3.client("dynamodb", **kwargs)


def _get_eb(region: Optional[str] = None):
    """Get (or create) the EventBridge client singleton."""
    global _eb
    if _eb is None:
        _eb = boto3.client(
            "events",
            region_name=region,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _eb
