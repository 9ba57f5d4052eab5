from __future__ import annotations
"""Thin boto3 wrapper for the bucket operations the file manager needs."""
import logging
import threading
from typing import BinaryIO, Callable, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .models import ObjectDetails, ObjectListingPage, ObjectSummary, StoredObject

LOGGER = logging.getLogger(__name__)

DEFAULT_PART_SIZE = 5 * 1024 * 1024
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_SIGNED_URL_EXPIRY = 3600
NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class InvalidInputError(ValueError):
    """Raised when a file, name or path argument is missing or malformed."""


class ObjectNotFoundError(LookupError):
    """Raised when the requested key does not exist in the bucket."""

    def __init__(self, key: str):
        super().__init__(f"Object '{key}' does not exist")
        self.key = key


class TransferFailedError(RuntimeError):
    """Raised when an upload or download fails."""


class RenameFailedError(RuntimeError):
    """Raised when a rename could not copy every object and was rolled back."""


class TransferCancelledError(RuntimeError):
    """Raised when an upload or download is cancelled by the caller."""


def is_not_found(exc: Exception) -> bool:
    if not isinstance(exc, ClientError):
        return False
    error = exc.response.get("Error", {}) if hasattr(exc, "response") else {}
    return str(error.get("Code", "")) in NOT_FOUND_CODES


class ObjectStoreService:
    """Encapsulates S3 access for a single bucket independent of any UI."""

    def __init__(
        self,
        *,
        bucket_name: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region_name: str | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        client_factory: Callable[..., object] | None = None,
    ):
        if not bucket_name:
            raise InvalidInputError("A bucket name is required")
        self.bucket_name = bucket_name
        self._endpoint_url = endpoint_url or None
        self._access_key = access_key or None
        self._secret_key = secret_key or None
        self._region_name = region_name or None
        self._max_attempts = max(int(max_attempts), 1)
        self._client_factory = client_factory or boto3.client
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self):
        config = Config(
            signature_version="s3v4",
            retries={"max_attempts": self._max_attempts, "mode": "standard"},
        )
        return self._client_factory(
            "s3",
            endpoint_url=self._endpoint_url,
            region_name=self._region_name,
            aws_access_key_id=self._access_key,
            aws_secret_access_key=self._secret_key,
            config=config,
        )

    def list_objects(
        self,
        prefix: str = "",
        *,
        delimiter: str | None = None,
        continuation_token: str | None = None,
    ) -> ObjectListingPage:
        """Return one ``ListObjectsV2`` page.

        Raises:
            BotoCoreError | ClientError: when the bucket cannot be listed.
        """
        params = {"Bucket": self.bucket_name}
        if prefix:
            params["Prefix"] = prefix
        if delimiter:
            params["Delimiter"] = delimiter
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        response = self.client.list_objects_v2(**params)
        entries = [
            ObjectSummary(
                key=item["Key"],
                size=int(item.get("Size") or 0),
                last_modified=item.get("LastModified"),
                etag=item.get("ETag"),
            )
            for item in response.get("Contents", [])
        ]
        prefixes = [common["Prefix"] for common in response.get("CommonPrefixes", [])]
        next_token = None
        if response.get("IsTruncated"):
            next_token = response.get("NextContinuationToken")
        return ObjectListingPage(entries=entries, common_prefixes=prefixes, next_token=next_token)

    def get_object(self, key: str) -> StoredObject:
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as exc:
            if is_not_found(exc):
                raise ObjectNotFoundError(key) from exc
            raise
        return StoredObject(
            key=key,
            body=response.get("Body"),
            content_type=response.get("ContentType"),
            size=response.get("ContentLength"),
        )

    def get_object_details(self, key: str) -> ObjectDetails:
        """Fetch metadata about a single object."""

        try:
            response = self.client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as exc:
            if is_not_found(exc):
                raise ObjectNotFoundError(key) from exc
            raise
        return ObjectDetails(
            bucket=self.bucket_name,
            key=key,
            size=response.get("ContentLength"),
            last_modified=response.get("LastModified"),
            storage_class=response.get("StorageClass"),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def put_object(self, key: str, body: bytes | str = b"", content_type: str | None = None) -> None:
        params = {"Bucket": self.bucket_name, "Key": key, "Body": body}
        if content_type:
            params["ContentType"] = content_type
        self.client.put_object(**params)

    def delete_object(self, key: str) -> None:
        """Delete an object from the bucket."""

        LOGGER.debug("Deleting s3://%s/%s", self.bucket_name, key)
        self.client.delete_object(Bucket=self.bucket_name, Key=key)

    def copy_object(
        self,
        source_key: str,
        destination_key: str,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Server-side copy of ``source_key`` to ``destination_key``.

        When a content type is given the object metadata is replaced, so the
        caller passes the source metadata along to keep it.
        """

        params = {
            "Bucket": self.bucket_name,
            "Key": destination_key,
            "CopySource": {"Bucket": self.bucket_name, "Key": source_key},
        }
        if content_type:
            params["ContentType"] = content_type
            params["Metadata"] = dict(metadata or {})
            params["MetadataDirective"] = "REPLACE"
        LOGGER.debug("Copying %s to %s in bucket %s", source_key, destination_key, self.bucket_name)
        self.client.copy_object(**params)

    def generate_presigned_url(
        self,
        key: str,
        *,
        method: str = "get",
        expires_in: int = DEFAULT_SIGNED_URL_EXPIRY,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> str:
        """Create a presigned URL for the requested object operation."""

        operation = method.strip().lower()
        if operation not in {"get", "put"}:
            raise InvalidInputError("method must be either 'get' or 'put'")
        if expires_in <= 0:
            raise InvalidInputError("expires_in must be greater than zero")

        client_method = "get_object" if operation == "get" else "put_object"
        params: dict[str, str] = {"Bucket": self.bucket_name, "Key": key}
        if operation == "get":
            if content_type:
                params["ResponseContentType"] = content_type
            if content_disposition:
                params["ResponseContentDisposition"] = content_disposition
        else:
            if content_type:
                params["ContentType"] = content_type
            if content_disposition:
                params["ContentDisposition"] = content_disposition

        return self.client.generate_presigned_url(
            client_method,
            Params=params,
            ExpiresIn=expires_in,
        )

    def upload_fileobj(
        self,
        key: str,
        fileobj: BinaryIO,
        *,
        content_type: str | None = None,
        part_size: int = DEFAULT_PART_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Multipart upload of a binary stream.

        Parts of ``part_size`` bytes are sent with at most ``max_concurrency``
        in flight. A failing part aborts the whole multipart upload.
        """

        part_size = part_size if part_size and part_size > 0 else DEFAULT_PART_SIZE
        if max_concurrency is None or max_concurrency <= 0:
            max_concurrency = DEFAULT_MAX_CONCURRENCY
        config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=max_concurrency,
        )
        callback = self._build_transfer_callback(progress_callback, cancel_requested)
        self.client.upload_fileobj(
            fileobj,
            self.bucket_name,
            key,
            ExtraArgs={"ContentType": content_type or "application/octet-stream"},
            Callback=callback,
            Config=config,
        )

    def _build_transfer_callback(
        self,
        progress_callback: Optional[Callable[[int], None]],
        cancel_requested: Optional[Callable[[], bool]],
    ):
        if not progress_callback and not cancel_requested:
            return None

        transferred = 0
        lock = threading.Lock()

        def _callback(bytes_amount: int) -> None:
            nonlocal transferred
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by user")
            # Parts report from several worker threads.
            with lock:
                transferred += bytes_amount
                current = transferred
            if progress_callback:
                progress_callback(current)

        return _callback
