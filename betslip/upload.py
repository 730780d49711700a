"""
Upload images to the object store with optional best-effort compression.

`upload_image` never raises, every failure comes back as an `UploadResult`.
"""
import logging
import secrets
import string
import time
from typing import NamedTuple

from starlette.concurrency import run_in_threadpool

from betslip.boto_s3 import ObjectStore, StoreError
from betslip.compression import CompressionError, compress_image
from betslip.schema import (
    CompressionInfo,
    CompressionOptions,
    FailureKind,
    ImageAsset,
    UploadOptions,
    UploadResult,
)

log = logging.getLogger(__name__)

INVALID_FILE_MESSAGE = "Invalid file: Please provide a valid image file"
DEFAULT_EXTENSION = "webp"
SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
SUFFIX_LENGTH = 6


class Compressed(NamedTuple):
    asset: ImageAsset
    info: CompressionInfo


class Uncompressed(NamedTuple):
    asset: ImageAsset
    reason: str | None
    """Why compression was skipped, None when it was not requested."""


async def compress_or_keep(
    asset: ImageAsset, options: CompressionOptions | None
) -> Compressed | Uncompressed:
    if options is None:
        return Uncompressed(asset, None)
    try:
        result = await compress_image(asset, options)
    except CompressionError as e:
        log.warning(f"Compression failed, uploading original: {e}")
        return Uncompressed(asset, str(e))
    return Compressed(result.file, result.compression_info)


def _random_suffix() -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))


def build_storage_key(
    filename: str, folder: str | None = None, unique: bool = False
) -> str:
    """
    Derive the storage key for a file.

    Unique names look like `1718000000000-k3x9qa.webp`. A file without a name
    always gets a unique one.
    """
    name = filename
    if unique or not name:
        _, dot, extension = filename.rpartition(".")
        if not dot or not extension:
            extension = DEFAULT_EXTENSION
        name = f"{int(time.time() * 1000)}-{_random_suffix()}.{extension}"

    if folder and folder.strip("/"):
        name = f"{folder.strip('/')}/{name}"
    return name


async def upload_image(
    asset: ImageAsset,
    options: UploadOptions,
    store: ObjectStore,
    cache_seconds: int = 3600,
) -> UploadResult:
    """
    Upload an image, compressing it first when `options.compression` is set.

    :param asset: the image file to upload
    :param options: bucket, folder, naming and compression settings
    :param store: object store the file is written to
    :param cache_seconds: Cache-Control max-age for the stored object
    :return: the public URL on success, an error message otherwise
    """
    if not asset.is_image:
        return UploadResult.failed(FailureKind.invalid_input, INVALID_FILE_MESSAGE)

    try:
        outcome = await compress_or_keep(asset, options.compression)
        to_upload = outcome.asset

        key = build_storage_key(
            to_upload.filename, options.folder, options.generate_unique_file_name
        )

        try:
            await run_in_threadpool(
                store.put,
                options.bucket,
                key,
                to_upload.data,
                to_upload.mime_type,
                cache_seconds,
            )
        except StoreError as e:
            log.error(f"Error uploading image {key}: {e}")
            return UploadResult.failed(FailureKind.store_write, f"Upload failed: {e}")

        try:
            url = await run_in_threadpool(store.public_url, options.bucket, key)
        except StoreError as e:
            log.error(f"Uploaded {key} but could not resolve its URL: {e}")
            return UploadResult.failed(
                FailureKind.store_readback,
                f"Upload succeeded but the image URL could not be resolved: {e}",
                key=key,
            )
    except Exception as e:
        log.exception("Error in upload_image")
        return UploadResult.failed(FailureKind.unexpected, f"Unexpected error: {e}")

    if isinstance(outcome, Compressed):
        return UploadResult(
            success=True, url=url, key=key, compression_info=outcome.info
        )
    return UploadResult(
        success=True, url=url, key=key, compression_error=outcome.reason
    )
