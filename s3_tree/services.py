from __future__ import annotations
"""Business logic for interacting with S3."""
import logging
import mimetypes
import time
from typing import Callable, Iterator, Optional
from urllib.parse import quote, urlsplit

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.client import Config
from botocore.exceptions import ClientError

from .errors import AuthError, NotFoundError, OperationCancelledError, ValidationError, classify_error
from .models import Bucket, ListingPage, ObjectDetails, S3Object, S3Prefix
from .paths import DELIMITER, ensure_trailing_slash
from .profiles import ConnectionProfile
from .retry import RetryPolicy, call_with_retry

LOGGER = logging.getLogger(__name__)

MAX_KEYS_PER_REQUEST = 1000
MAX_KEYS_PER_DELETE = 1000
FOLDER_CONTENT_TYPE = "application/x-directory"


class S3Service:
    """Listing and object primitives for one connection.

    The boto3 client is created lazily and reused for the lifetime of the
    service. Every remote call goes through :func:`call_with_retry`.
    """

    def __init__(
        self,
        profile: ConnectionProfile,
        *,
        client_factory: Callable[..., object] | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client_factory = client_factory or boto3.client
        self._profile = profile
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._client = None

    @property
    def profile(self) -> ConnectionProfile:
        return self._profile

    @property
    def client(self):
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self):
        profile = self._profile
        config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if profile.force_path_style else "virtual"},
            retries={"max_attempts": 1},
        )
        return self._client_factory(
            "s3",
            endpoint_url=profile.endpoint_url or None,
            aws_access_key_id=profile.access_key,
            aws_secret_access_key=profile.secret_key,
            region_name=profile.region or None,
            config=config,
        )

    def _call(self, operation: Callable[[], object], context: str):
        return call_with_retry(
            operation,
            policy=self._retry_policy,
            context=context,
            sleep=self._sleep,
        )

    # Listing

    def list_buckets(self) -> list[Bucket]:
        """Return the available buckets.

        Raises:
            S3TreeError: classified failure after the retry budget is spent.
        """

        response = self._call(self.client.list_buckets, "Failed to list buckets")
        return [
            Bucket(name=bucket["Name"], creation_date=bucket.get("CreationDate"))
            for bucket in response.get("Buckets", [])
        ]

    def list_objects(
        self,
        bucket: str,
        prefix: str | None = None,
        continuation_token: str | None = None,
        max_keys: int = MAX_KEYS_PER_REQUEST,
        delimiter: str | None = DELIMITER,
    ) -> ListingPage:
        """Return one page of ``bucket`` grouped by ``delimiter``.

        The prefix's own folder marker is left out of the object list.
        """

        if max_keys < 1:
            raise ValueError("max_keys must be greater than zero")
        list_params = {"Bucket": bucket, "MaxKeys": min(max_keys, MAX_KEYS_PER_REQUEST)}
        if prefix:
            list_params["Prefix"] = prefix
        if delimiter:
            list_params["Delimiter"] = delimiter
        if continuation_token:
            list_params["ContinuationToken"] = continuation_token

        response = self._list_page(bucket, list_params)
        objects = [
            self._object_from_entry(entry)
            for entry in response.get("Contents", [])
            if entry.get("Key") and entry["Key"] != prefix
        ]
        prefixes = [
            S3Prefix(prefix=common["Prefix"])
            for common in response.get("CommonPrefixes", [])
            if common.get("Prefix")
        ]
        truncated = bool(response.get("IsTruncated", False))
        return ListingPage(
            bucket=bucket,
            prefix=prefix or "",
            objects=objects,
            prefixes=prefixes,
            is_truncated=truncated,
            continuation_token=response.get("NextContinuationToken") if truncated else None,
        )

    def iter_all_recursive(
        self,
        bucket: str,
        prefix: str | None = None,
        max_objects: int | None = None,
    ) -> Iterator[list[S3Object]]:
        """Yield every object under ``prefix`` one page at a time, without grouping.

        Nested folder markers are included; only the prefix's own marker is
        skipped. Each page request is retried on its own.
        """

        continuation: Optional[str] = None
        fetched = 0
        while True:
            batch_size = MAX_KEYS_PER_REQUEST
            if max_objects is not None:
                batch_size = min(MAX_KEYS_PER_REQUEST, max_objects - fetched)
                if batch_size <= 0:
                    return
            list_params = {"Bucket": bucket, "MaxKeys": batch_size}
            if prefix:
                list_params["Prefix"] = prefix
            if continuation:
                list_params["ContinuationToken"] = continuation

            response = self._list_page(bucket, list_params)
            objects = [
                self._object_from_entry(entry)
                for entry in response.get("Contents", [])
                if entry.get("Key") and entry["Key"] != prefix
            ]
            if max_objects is not None:
                objects = objects[: max_objects - fetched]
            fetched += len(objects)
            yield objects

            continuation = response.get("NextContinuationToken") if response.get("IsTruncated") else None
            if not continuation:
                return
            if max_objects is not None and fetched >= max_objects:
                return

    def list_all_recursive(
        self,
        bucket: str,
        prefix: str | None = None,
        max_objects: int | None = None,
    ) -> list[S3Object]:
        objects: list[S3Object] = []
        for page in self.iter_all_recursive(bucket, prefix, max_objects):
            objects.extend(page)
        LOGGER.debug(
            "Recursive listing of %s/%s returned %d object(s)",
            bucket,
            prefix or "",
            len(objects),
        )
        return objects

    def search_objects(
        self,
        bucket: str,
        prefix: str | None = None,
        contains: str | None = None,
        max_results: int = 1000,
    ) -> list[S3Object]:
        """Recursive listing narrowed by a case-insensitive ``contains`` match."""

        needle = (contains or "").lower()
        results: list[S3Object] = []
        for page in self.iter_all_recursive(bucket, prefix):
            for obj in page:
                if needle in obj.key.lower():
                    results.append(obj)
                    if len(results) >= max_results:
                        return results
        return results

    def _list_page(self, bucket: str, list_params: dict) -> dict:
        try:
            return self._call(
                lambda: self.client.list_objects_v2(**list_params),
                f"Failed to list objects in bucket '{bucket}'",
            )
        except NotFoundError as exc:
            if exc.code == "NoSuchBucket":
                raise NotFoundError(
                    f"Bucket '{bucket}' does not exist",
                    code=exc.code,
                    status_code=exc.status_code,
                ) from exc
            raise

    @staticmethod
    def _object_from_entry(entry: dict) -> S3Object:
        size = entry.get("Size")
        return S3Object(
            key=entry["Key"],
            size=int(size) if size is not None else None,
            last_modified=entry.get("LastModified"),
            etag=entry.get("ETag"),
            storage_class=entry.get("StorageClass"),
        )

    # Objects

    def get_object_details(self, bucket: str, key: str) -> ObjectDetails:
        """Fetch metadata about a single object."""

        response = self._call(
            lambda: self.client.head_object(Bucket=bucket, Key=key),
            f"Failed to get metadata for object '{key}'",
        )
        return ObjectDetails(
            bucket=bucket,
            key=key,
            size=response.get("ContentLength"),
            last_modified=response.get("LastModified"),
            storage_class=response.get("StorageClass"),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            server_side_encryption=response.get("ServerSideEncryption"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes | str,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        data = body.encode("utf-8") if isinstance(body, str) else body
        params = {
            "Bucket": bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type or guess_content_type(key),
        }
        if metadata:
            params["Metadata"] = dict(metadata)
        self._call(lambda: self.client.put_object(**params), f"Failed to put object '{key}'")

    def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object from the target bucket/key."""

        self._call(
            lambda: self.client.delete_object(Bucket=bucket, Key=key),
            f"Failed to delete object '{key}'",
        )

    def delete_objects(self, bucket: str, keys: list[str]) -> list[tuple[str, str]]:
        """Issue one batched delete and return ``(key, message)`` per failed key.

        Request-level failures raise; per-key failures are returned so the
        caller decides how to aggregate them.
        """

        if not keys:
            return []
        if len(keys) > MAX_KEYS_PER_DELETE:
            raise ValueError(f"At most {MAX_KEYS_PER_DELETE} keys can be deleted per request")
        payload = {"Objects": [{"Key": key} for key in keys], "Quiet": True}
        response = self._call(
            lambda: self.client.delete_objects(Bucket=bucket, Delete=payload),
            "Failed to delete objects",
        )
        return [
            (error.get("Key", ""), f"{error.get('Code', 'Error')}: {error.get('Message', '')}".strip())
            for error in response.get("Errors") or []
        ]

    def copy_object(self, source_bucket: str, source_key: str, target_bucket: str, target_key: str) -> None:
        self._call(
            lambda: self.client.copy_object(
                CopySource={"Bucket": source_bucket, "Key": source_key},
                Bucket=target_bucket,
                Key=target_key,
            ),
            f"Failed to copy object from '{source_bucket}/{source_key}' to '{target_bucket}/{target_key}'",
        )

    def move_object(self, source_bucket: str, source_key: str, target_bucket: str, target_key: str) -> None:
        # Copy first so a failed copy never loses the source.
        self.copy_object(source_bucket, source_key, target_bucket, target_key)
        self.delete_object(source_bucket, source_key)

    def create_folder(self, bucket: str, prefix: str) -> str:
        folder_key = ensure_trailing_slash(prefix)
        if not folder_key:
            raise ValueError("Folder prefix cannot be empty")
        self.put_object(bucket, folder_key, b"", content_type=FOLDER_CONTENT_TYPE)
        return folder_key

    def folder_exists(self, bucket: str, prefix: str) -> bool:
        try:
            self.get_object_details(bucket, ensure_trailing_slash(prefix))
        except NotFoundError:
            return False
        return True

    # Transfers

    def upload_file(
        self,
        bucket: str,
        key: str,
        source_path: str,
        *,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
        multipart_threshold: int | None = None,
        multipart_chunk_size: int | None = None,
    ) -> None:
        """Upload a local file to the target bucket/key.

        ``progress_callback`` receives the running byte total. Large files are
        sent as multipart uploads by boto3's transfer manager.
        """

        context = f"Failed to upload file '{source_path}'"
        config = self._build_transfer_config(multipart_threshold, multipart_chunk_size)
        try:
            self._call(
                lambda: self.client.upload_file(
                    source_path,
                    bucket,
                    key,
                    Callback=self._build_transfer_callback(progress_callback, cancel_requested),
                    ExtraArgs={"ContentType": guess_content_type(key)},
                    Config=config,
                ),
                context,
            )
        except S3UploadFailedError as exc:
            cause = exc.__context__ if isinstance(exc.__context__, ClientError) else exc
            raise classify_error(cause, context) from exc

    def download_file(
        self,
        bucket: str,
        key: str,
        destination: str,
        *,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Download an S3 object to the provided destination path."""

        self._call(
            lambda: self.client.download_file(
                bucket,
                key,
                destination,
                Callback=self._build_transfer_callback(progress_callback, cancel_requested),
            ),
            f"Failed to download object '{key}'",
        )

    @staticmethod
    def _build_transfer_config(multipart_threshold: int | None, multipart_chunk_size: int | None):
        options = {}
        if multipart_threshold and multipart_threshold > 0:
            options["multipart_threshold"] = int(multipart_threshold)
        if multipart_chunk_size and multipart_chunk_size > 0:
            options["multipart_chunksize"] = int(multipart_chunk_size)
        return TransferConfig(**options) if options else None

    @staticmethod
    def _build_transfer_callback(
        progress_callback: Optional[Callable[[int], None]],
        cancel_requested: Optional[Callable[[], bool]],
    ):
        if not progress_callback and not cancel_requested:
            return None

        transferred = 0

        def _callback(bytes_amount: int) -> None:
            nonlocal transferred
            if cancel_requested and cancel_requested():
                raise OperationCancelledError("Transfer cancelled by user")
            transferred += bytes_amount
            if progress_callback:
                progress_callback(transferred)

        return _callback

    # URLs

    def generate_presigned_url(
        self,
        bucket: str,
        key: str,
        *,
        method: str = "get",
        expires_in: int = 3600,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> str:
        """Create a presigned URL for the requested object operation."""

        operation = method.strip().lower()
        if operation not in {"get", "put"}:
            raise ValueError("method must be either 'get' or 'put'")
        if expires_in <= 0:
            raise ValueError("expires_in must be greater than zero")

        client_method = "get_object" if operation == "get" else "put_object"
        params: dict[str, str] = {"Bucket": bucket, "Key": key}
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

        return self._call(
            lambda: self.client.generate_presigned_url(
                client_method,
                Params=params,
                ExpiresIn=expires_in,
            ),
            f"Failed to generate presigned URL for '{key}'",
        )

    def generate_public_url(self, bucket: str, key: str, *, include_bucket: bool = True) -> str:
        profile = self._profile
        endpoint = (profile.custom_domain or profile.endpoint_url).rstrip("/")
        if not endpoint:
            raise ValidationError("An endpoint URL or custom domain is required for public URLs")
        encoded_key = "/".join(quote(part, safe="") for part in key.split("/"))
        if not include_bucket:
            return f"{endpoint}/{encoded_key}"
        if profile.custom_domain or profile.force_path_style:
            return f"{endpoint}/{bucket}/{encoded_key}"
        parts = urlsplit(endpoint)
        return f"{parts.scheme}://{bucket}.{parts.netloc}/{encoded_key}"

    def test_connection(self) -> list[Bucket]:
        """List buckets once, rewording auth failures for the user."""

        try:
            return self.list_buckets()
        except AuthError as exc:
            raise AuthError(
                "Authentication failed. Please check your access credentials.",
                code=exc.code,
                status_code=exc.status_code,
            ) from exc
        except NotFoundError as exc:
            raise ValidationError(
                f"Endpoint not found. Please verify the endpoint URL: {self._profile.endpoint_url}",
                code=exc.code,
                status_code=exc.status_code,
            ) from exc


def guess_content_type(key: str) -> str:
    guessed, _ = mimetypes.guess_type(key)
    return guessed or "application/octet-stream"
