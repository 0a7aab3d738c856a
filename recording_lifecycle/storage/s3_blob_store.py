"""S3-compatible blob store.

Each lifecycle location is a key prefix (its location id) in one bucket.
Blob descriptions, which carry retry marks, are kept in the object's
``description`` user metadata. A direct move is a server-side copy with
replaced metadata followed by a delete; ``copy`` re-uploads the bytes and
is used by the mover's fallback path.
"""

from __future__ import annotations

import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from recording_lifecycle.constants import Location
from recording_lifecycle.models import BlobInfo
from recording_lifecycle.storage.interface import BlobStore
from recording_lifecycle.utils.errors import ConfigurationError, StorageError

logger = logging.getLogger(__name__)

DESCRIPTION_METADATA_KEY = "description"


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "Unknown")
    return type(exc).__name__


class S3BlobStore(BlobStore):
    """Blob store over an S3-compatible bucket.

    Reads configuration from environment variables:
        BLOB_ENDPOINT, BLOB_BUCKET, BLOB_ACCESS_KEY_ID,
        BLOB_SECRET_ACCESS_KEY, BLOB_REGION
    """

    def __init__(
        self,
        location_ids: dict[Location, str],
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region_name: str | None = None,
    ) -> None:
        self.location_ids = dict(location_ids)
        self.endpoint_url = endpoint_url or os.environ.get("BLOB_ENDPOINT", "")
        self.bucket = bucket or os.environ.get("BLOB_BUCKET", "")
        self.access_key_id = access_key_id or os.environ.get(
            "BLOB_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "BLOB_SECRET_ACCESS_KEY", ""
        )
        self.region_name = region_name or os.environ.get("BLOB_REGION", "auto")

        if not self.bucket:
            raise ConfigurationError("BLOB_BUCKET is required", setting="BLOB_BUCKET")

        client_kwargs: dict = {"region_name": self.region_name}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.access_key_id:
            client_kwargs["aws_access_key_id"] = self.access_key_id
            client_kwargs["aws_secret_access_key"] = self.secret_access_key
        self._client = boto3.client("s3", **client_kwargs)

    def _prefix(self, location: Location) -> str:
        prefix = self.location_ids.get(location, "")
        if not prefix:
            raise ConfigurationError(
                f"No location id configured for '{location.value}'",
                setting=f"{location.name}_FOLDER_ID",
            )
        return prefix.strip("/")

    def _key(self, location: Location, name: str) -> str:
        return f"{self._prefix(location)}/{name}"

    def list(self, location: Location) -> list[BlobInfo]:
        prefix = self._prefix(location) + "/"
        blobs: list[BlobInfo] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(prefix):]
                    # Only direct children belong to the location.
                    if not name or "/" in name:
                        continue
                    blobs.append(self._describe(location, name, obj))
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to list '{prefix}': {_error_code(exc)}",
                operation="list",
            ) from exc
        return blobs

    def _describe(self, location: Location, name: str, obj: dict) -> BlobInfo:
        """Fetch metadata (description, content type) for a listed object."""
        head = self._client.head_object(
            Bucket=self.bucket, Key=self._key(location, name)
        )
        return BlobInfo(
            name=name,
            location=location,
            description=head.get("Metadata", {}).get(DESCRIPTION_METADATA_KEY, ""),
            size=int(obj.get("Size", head.get("ContentLength", 0))),
            content_type=head.get("ContentType", ""),
            created_at=obj.get("LastModified"),
        )

    def get_bytes(self, blob: BlobInfo) -> bytes:
        key = self._key(blob.location, blob.name)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to read '{key}': {_error_code(exc)}",
                operation="get_object",
            ) from exc

    def put(
        self,
        location: Location,
        name: str,
        data: bytes,
        description: str = "",
        content_type: str = "",
    ) -> BlobInfo:
        key = self._key(location, name)
        kwargs: dict = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "Metadata": {DESCRIPTION_METADATA_KEY: description},
        }
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self._client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to put '{key}': {_error_code(exc)}",
                operation="put_object",
            ) from exc
        return BlobInfo(
            name=name,
            location=location,
            description=description,
            size=len(data),
            content_type=content_type,
        )

    def move(
        self, blob: BlobInfo, location: Location, description: str | None = None
    ) -> BlobInfo:
        source_key = self._key(blob.location, blob.name)
        target_key = self._key(location, blob.name)
        new_description = blob.description if description is None else description
        copy_kwargs: dict = {
            "Bucket": self.bucket,
            "Key": target_key,
            "CopySource": {"Bucket": self.bucket, "Key": source_key},
            "Metadata": {DESCRIPTION_METADATA_KEY: new_description},
            "MetadataDirective": "REPLACE",
        }
        if blob.content_type:
            copy_kwargs["ContentType"] = blob.content_type
        try:
            self._client.copy_object(**copy_kwargs)
            self._client.delete_object(Bucket=self.bucket, Key=source_key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to move '{source_key}' to '{target_key}': "
                f"{_error_code(exc)}",
                operation="move",
            ) from exc
        return BlobInfo(
            name=blob.name,
            location=location,
            description=new_description,
            size=blob.size,
            content_type=blob.content_type,
            created_at=blob.created_at,
        )

    def copy(
        self, blob: BlobInfo, location: Location, description: str | None = None
    ) -> BlobInfo:
        data = self.get_bytes(blob)
        return self.put(
            location,
            blob.name,
            data,
            description=blob.description if description is None else description,
            content_type=blob.content_type,
        )

    def delete(self, blob: BlobInfo) -> None:
        key = self._key(blob.location, blob.name)
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to delete '{key}': {_error_code(exc)}",
                operation="delete_object",
            ) from exc
