"""Persisted key/value state kept as JSON objects in the blob bucket.

Holds the dedup cache, continuation checkpoints, pending triggers,
leases and runtime flags. Each key is one object
``<STATE_PREFIX>/<key>.json``.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from recording_lifecycle.storage.interface import StateStore
from recording_lifecycle.utils.errors import ConfigurationError, StorageError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3StateStore(StateStore):
    """JSON documents under a prefix of an S3-compatible bucket.

    Reads configuration from environment variables:
        BLOB_ENDPOINT, BLOB_BUCKET, BLOB_ACCESS_KEY_ID,
        BLOB_SECRET_ACCESS_KEY, BLOB_REGION, STATE_PREFIX
    """

    def __init__(
        self,
        prefix: str | None = None,
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region_name: str | None = None,
    ) -> None:
        self.prefix = (prefix or os.environ.get("STATE_PREFIX", "state")).strip("/")
        self.bucket = bucket or os.environ.get("BLOB_BUCKET", "")
        endpoint_url = endpoint_url or os.environ.get("BLOB_ENDPOINT", "")
        access_key_id = access_key_id or os.environ.get("BLOB_ACCESS_KEY_ID", "")
        secret_access_key = secret_access_key or os.environ.get(
            "BLOB_SECRET_ACCESS_KEY", ""
        )

        if not self.bucket:
            raise ConfigurationError("BLOB_BUCKET is required", setting="BLOB_BUCKET")

        client_kwargs: dict = {
            "region_name": region_name or os.environ.get("BLOB_REGION", "auto")
        }
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if access_key_id:
            client_kwargs["aws_access_key_id"] = access_key_id
            client_kwargs["aws_secret_access_key"] = secret_access_key
        self._client = boto3.client("s3", **client_kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{key}.json"

    def get_json(self, key: str) -> Any | None:
        object_key = self._key(key)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=object_key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "Unknown")
            if code in _MISSING_CODES:
                return None
            raise StorageError(
                f"Failed to read state '{key}': {code}", operation="get_state"
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to read state '{key}': {exc}", operation="get_state"
            ) from exc

        raw = response["Body"].read()
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unparseable state '%s'", key)
            return None

    def put_json(self, key: str, value: Any) -> None:
        body = json.dumps(value, ensure_ascii=False).encode("utf-8")
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=body,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to write state '{key}': {exc}", operation="put_state"
            ) from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=self._key(key))
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to delete state '{key}': {exc}", operation="delete_state"
            ) from exc


def read_flag(state: StateStore, key: str, default: bool = True) -> bool:
    """Interpret a boolean-like state value ("true", "false", 1, 0...)."""
    value = state.get_json(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in {"true", "1", "yes", "on"}
