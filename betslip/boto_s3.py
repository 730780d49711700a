from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from types_boto3_s3 import S3Client
else:
    S3Client = object

from betslip.utils import Settings, log


class StoreError(Exception):
    """An object store operation failed."""


class ObjectStore(Protocol):
    def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None = None,
        cache_seconds: int = 3600,
    ) -> str: ...

    def public_url(self, bucket: str, key: str) -> str: ...

    def delete(self, bucket: str, key_or_url: str) -> None: ...


def create_s3_client(settings: Settings) -> S3Client:
    """Create an S3 client from the configured profile and endpoint."""
    if settings.aws_profile_name:
        log.debug(f"Creating S3 client with profile: {settings.aws_profile_name}")
        session = boto3.Session(profile_name=settings.aws_profile_name)
    else:
        log.debug("Creating S3 client with default profile")
        session = boto3.Session()
    return session.client(
        "s3",
        region_name=settings.aws_region_name,
        endpoint_url=settings.aws_endpoint_url,
    )


def _error_message(e: ClientError) -> str:
    error = e.response.get("Error", {})
    if error.get("Code") in ("PreconditionFailed", "ConditionalRequestConflict"):
        return "The resource already exists"
    return error.get("Message") or str(e)


class S3ObjectStore:
    """
    Blob store over an S3 bucket.

    Writes never overwrite an existing key.
    """

    def __init__(self, client: S3Client, public_base_url: str | None = None):
        self._client = client
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None = None,
        cache_seconds: int = 3600,
    ) -> str:
        """
        Upload bytes to a new key.

        :param bucket: S3 bucket
        :param key: S3 key (path), must not exist yet
        :param data: bytes to upload
        :param content_type: MIME type (optional)
        :param cache_seconds: max-age sent as Cache-Control
        :return: the key written
        :raises StoreError: if the key exists or the upload fails
        """
        extra_args = {}
        if content_type:
            extra_args["ContentType"] = content_type
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                CacheControl=f"max-age={cache_seconds}",
                IfNoneMatch="*",
                **extra_args,
            )
        except ClientError as e:
            log.error(e)
            raise StoreError(_error_message(e)) from e
        except BotoCoreError as e:
            log.error(e)
            raise StoreError(str(e)) from e
        log.debug(f"Uploaded {key} to bucket {bucket}")
        return key

    def public_url(self, bucket: str, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{bucket}/{quote(key)}"

        region = self._client.meta.region_name
        if not region:
            raise StoreError(
                f"Could not resolve a public URL for {key}: no region or public base URL configured"
            )
        return f"https://{bucket}.s3.{region}.amazonaws.com/{quote(key)}"

    def key_from_url(self, bucket: str, key_or_url: str) -> str:
        """Accept either a storage key or a URL returned by `public_url`."""
        if not key_or_url.startswith(("http://", "https://")):
            return key_or_url
        prefix = self.public_url(bucket, "")
        if not key_or_url.startswith(prefix):
            raise StoreError(f"{key_or_url} does not belong to bucket {bucket}")
        return unquote(key_or_url[len(prefix):])

    def delete(self, bucket: str, key_or_url: str) -> None:
        key = self.key_from_url(bucket, key_or_url)
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            log.error(e)
            raise StoreError(f"Could not delete {key} from bucket {bucket}: {e}") from e
        log.debug(f"Deleted {key} from bucket {bucket}")
