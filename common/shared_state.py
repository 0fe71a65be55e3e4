"""Get-or-create storage for values that must not change between deployments.

Both stores implement the create-if-absent contract: two concurrent first
deployments of one environment agree on whichever value was stored first.
"""
import threading
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import ClientError

from common.log import logger


class SharedStateStore(Protocol):
    def get_or_create(self, key: str, value: str) -> str: ...


class SsmSharedStateStore:
    """SSM Parameter Store backed store using a conditional ``put_parameter``."""

    def __init__(self, client: Optional[Any] = None) -> None:
        self.client = client or boto3.client("ssm")

    def get_or_create(self, key: str, value: str) -> str:
        try:
            self.client.put_parameter(
                Name=key, Value=value, Type="String", Overwrite=False
            )
            logger.info("Created shared state value", key=key)
            return value
        except ClientError as e:
            error_info = e.response.get("Error", {})
            if error_info.get("Code") != "ParameterAlreadyExists":
                logger.exception("Failed to create shared state value", key=key)
                raise
        stored = self.client.get_parameter(Name=key)["Parameter"]["Value"]
        logger.info("Reusing shared state value", key=key)
        return stored


class InMemorySharedStateStore:
    """Process-local store; used for offline synthesis and tests."""

    def __init__(self, values: Optional[dict[str, str]] = None) -> None:
        self.values = dict(values or {})
        self._lock = threading.Lock()

    def get_or_create(self, key: str, value: str) -> str:
        with self._lock:
            return self.values.setdefault(key, value)
