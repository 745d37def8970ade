"""
Storage gateway for the whitelisted buckets.

Every operation resolves the caller-supplied bucket name (alias or real form)
through the ``BucketRegistry`` before touching boto3, so an unknown name fails
with ``InvalidBucketError`` and never reaches the network. The boto3 client is
synchronous; FastAPI routes call these methods through the threadpool.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Dict, Iterator, List, Optional

from boto3.s3.transfer import TransferConfig
from botocore.exceptions import ClientError

from .buckets import BucketRegistry
from .models import ObjectEntry, ObjectListing

logger = logging.getLogger(__name__)

DELIMITER = "/"
LIST_PAGE_SIZE = 1000
DIRECTORY_ETAG = "folder"
DOWNLOAD_CHUNK_SIZE = 64 * 1024
MULTIPART_CHUNK_SIZE = 8 * 1024 * 1024

TRANSFER_CONFIG = TransferConfig(
    multipart_threshold=MULTIPART_CHUNK_SIZE,
    multipart_chunksize=MULTIPART_CHUNK_SIZE,
)

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


class ObjectNotFoundError(Exception):
    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


@dataclass
class StoredObject:
    body: Any
    content_type: Optional[str]
    content_length: Optional[int]
    last_modified: Optional[datetime]
    etag: Optional[str]

    def iter_chunks(self, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the body in bounded chunks; reading pauses while the consumer does."""
        while True:
            chunk = self.body.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        if self.body is not None:
            self.body.close()


def is_not_found(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


class StorageGateway:
    def __init__(self, registry: BucketRegistry, client):
        self.registry = registry
        self.client = client

    def get_object(self, bucket_name: str, key: str) -> StoredObject:
        """
        Open ``key`` for streaming. The caller owns the returned body and must
        close it.
        """
        bucket = self.registry.resolve(bucket_name)
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if is_not_found(exc):
                raise ObjectNotFoundError(key) from exc
            raise
        return _stored_object(response, response.get("Body"))

    def head_object(self, bucket_name: str, key: str) -> StoredObject:
        bucket = self.registry.resolve(bucket_name)
        try:
            response = self.client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if is_not_found(exc):
                raise ObjectNotFoundError(key) from exc
            raise
        return _stored_object(response, None)

    def list_objects(
        self,
        bucket_name: str,
        prefix: str = "",
        continuation_token: Optional[str] = None,
    ) -> ObjectListing:
        """
        Return one page (at most ``LIST_PAGE_SIZE`` keys) under ``prefix``.

        Keys sharing a ``/``-delimited prefix are folded into synthetic
        directory entries (size 0, ETag ``"folder"``) listed after the plain
        objects. Pass ``next_continuation_token`` back to fetch the next page.
        """
        bucket = self.registry.resolve(bucket_name)
        params: Dict[str, Any] = {
            "Bucket": bucket,
            "Prefix": prefix,
            "Delimiter": DELIMITER,
            "MaxKeys": LIST_PAGE_SIZE,
        }
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        response = self.client.list_objects_v2(**params)

        entries: List[ObjectEntry] = []
        for obj in response.get("Contents", []):
            last_modified = obj.get("LastModified")
            entries.append(
                ObjectEntry(
                    key=obj.get("Key", ""),
                    size=obj.get("Size", 0),
                    last_modified=last_modified.isoformat() if last_modified else None,
                    etag=obj.get("ETag", "").strip('"'),
                )
            )
        for common in response.get("CommonPrefixes", []):
            entries.append(
                ObjectEntry(
                    key=common.get("Prefix", ""),
                    size=0,
                    etag=DIRECTORY_ETAG,
                    is_directory=True,
                )
            )

        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ObjectListing(entries=entries, next_continuation_token=next_token)

    def put_object(
        self,
        bucket_name: str,
        key: str,
        fileobj: BinaryIO,
        content_type: Optional[str] = None,
    ) -> None:
        """Stream ``fileobj`` to ``key``; large payloads go up as a multipart upload."""
        bucket = self.registry.resolve(bucket_name)
        extra_args = {"ContentType": content_type} if content_type else None
        self.client.upload_fileobj(
            fileobj,
            bucket,
            key,
            ExtraArgs=extra_args,
            Config=TRANSFER_CONFIG,
        )
        logger.info("Uploaded %s to %s", key, bucket)

    def delete_object(self, bucket_name: str, key: str) -> None:
        bucket = self.registry.resolve(bucket_name)
        self.client.delete_object(Bucket=bucket, Key=key)
        logger.info("Deleted %s from %s", key, bucket)

    def copy_object(self, bucket_name: str, source_key: str, target_key: str) -> None:
        bucket = self.registry.resolve(bucket_name)
        self._copy(bucket, source_key, target_key)

    def move_object(self, bucket_name: str, source_key: str, target_key: str) -> None:
        """
        Copy ``source_key`` to ``target_key`` and then delete the source.

        The two steps are not atomic. If the delete fails the copy stays in
        place next to the source and the error propagates; nothing is rolled
        back or retried.
        """
        bucket = self.registry.resolve(bucket_name)
        self._copy(bucket, source_key, target_key)
        try:
            self.client.delete_object(Bucket=bucket, Key=source_key)
        except ClientError:
            logger.warning(
                "Copied %s to %s in %s but could not delete the source; both keys exist",
                source_key,
                target_key,
                bucket,
            )
            raise
        logger.info("Moved %s to %s in %s", source_key, target_key, bucket)

    def _copy(self, bucket: str, source_key: str, target_key: str) -> None:
        try:
            self.client.copy_object(
                Bucket=bucket,
                Key=target_key,
                CopySource={"Bucket": bucket, "Key": source_key},
            )
        except ClientError as exc:
            if is_not_found(exc):
                raise ObjectNotFoundError(source_key) from exc
            raise


def _stored_object(response: Dict[str, Any], body: Any) -> StoredObject:
    return StoredObject(
        body=body,
        content_type=response.get("ContentType"),
        content_length=response.get("ContentLength"),
        last_modified=response.get("LastModified"),
        etag=response.get("ETag"),
    )
