"""S3 object store: stores objects in an AWS S3 (or S3-compatible) bucket.

Create-only writes use ``If-None-Match: *``; S3 answers 412
PreconditionFailed when the key already exists. boto3 is synchronous, so
every call runs in the event loop's default executor.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from refresh_guard.exceptions import TransportFailure
from refresh_guard.persistence.protocols import ObjectMetadata, PutOutcome

log = logging.getLogger(__name__)

T = TypeVar("T")

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
# 409 ConditionalRequestConflict: a concurrent conditional write is in flight.
_CONFLICT_CODES = frozenset({"PreconditionFailed", "412", "ConditionalRequestConflict", "409"})


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """Stores objects under ``prefix`` in an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str = "us-east-1",
        endpoint_url: str = "",
        kms_key_id: str = "",
        boto3_client: Any | None = None,
    ) -> None:
        self._bucket = bucket
        self._prefix = prefix
        self._kms_key_id = kms_key_id

        if boto3_client is not None:
            self._s3 = boto3_client
        else:
            import boto3

            self._s3 = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url or None,
            )

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def _call(self, operation: str, key: str, fn: Callable[..., T], **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        # ClientError is left to the caller, which knows which codes are benign.
        try:
            return await loop.run_in_executor(None, functools.partial(fn, **kwargs))
        except BotoCoreError as e:
            raise TransportFailure(operation, key, str(e)) from e

    async def get(self, key: str) -> bytes | None:
        try:
            response = await self._call(
                "get", key, self._s3.get_object, Bucket=self._bucket, Key=self._full_key(key)
            )
            return await self._call("get", key, response["Body"].read)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise TransportFailure("get", key, str(e)) from e

    async def put(self, key: str, data: bytes, *, create_only: bool = False) -> PutOutcome:
        put_kwargs: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": self._full_key(key),
            "Body": data,
            "ContentType": "application/json",
        }
        if create_only:
            put_kwargs["IfNoneMatch"] = "*"
        if self._kms_key_id:
            put_kwargs["ServerSideEncryption"] = "aws:kms"
            put_kwargs["SSEKMSKeyId"] = self._kms_key_id

        try:
            await self._call("put", key, self._s3.put_object, **put_kwargs)
        except ClientError as e:
            if create_only and _error_code(e) in _CONFLICT_CODES:
                log.debug("Create-only put rejected for existing key %s", key)
                return PutOutcome.CONFLICT
            raise TransportFailure("put", key, str(e)) from e
        log.debug("Saved %s to s3://%s/%s", key, self._bucket, self._full_key(key))
        return PutOutcome.WRITTEN

    async def delete(self, key: str) -> None:
        try:
            await self._call(
                "delete", key, self._s3.delete_object, Bucket=self._bucket, Key=self._full_key(key)
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return
            raise TransportFailure("delete", key, str(e)) from e

    async def metadata(self, key: str) -> ObjectMetadata | None:
        try:
            response = await self._call(
                "metadata", key, self._s3.head_object, Bucket=self._bucket, Key=self._full_key(key)
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise TransportFailure("metadata", key, str(e)) from e
        return ObjectMetadata(
            last_modified=response["LastModified"],
            size=int(response.get("ContentLength", 0)),
        )
