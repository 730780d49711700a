"""
Submit a betting entry: screenshot upload followed by the database insert.

If the insert fails the uploaded screenshot is deleted again. That delete is a
compensating action, not a transaction: when it fails too the blob is left
behind and only logged.
"""
import logging
from typing import Protocol

from starlette.concurrency import run_in_threadpool

from betslip.boto_s3 import ObjectStore, StoreError
from betslip.compression import CompressionError, compress_image
from betslip.database import DatabaseInsertError
from betslip.schema import (
    CompressionOptions,
    ImageAsset,
    SubmissionFailure,
    SubmissionPost,
    SubmissionResult,
    UploadOptions,
)
from betslip.upload import INVALID_FILE_MESSAGE, upload_image

log = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Submission successful! Thank you for participating."
ALREADY_SUBMITTED_MESSAGE = "This email has already submitted an entry."
IMAGE_TOO_LARGE_MESSAGE = (
    "Image is too large. Please upload a smaller image (max 2MB after compression)"
)
IMAGE_UNREADABLE_MESSAGE = "Failed to process image. Please try again."

DUPLICATE_MARKERS = ("duplicate key", "unique constraint", "already exists")


class ImageRejectedError(Exception):
    pass


class SubmissionStore(Protocol):
    async def insert(self, entry: SubmissionPost, payment_confirmation_url: str) -> int: ...


def is_duplicate_error(message: str) -> bool:
    message = message.lower()
    return any(marker in message for marker in DUPLICATE_MARKERS)


async def prepare_payment_image(
    asset: ImageAsset, options: CompressionOptions, max_bytes: int
) -> ImageAsset:
    """
    Compress the screenshot and enforce the hard size ceiling.

    :raises ImageRejectedError: with a message meant for the user
    """
    if not asset.is_image:
        raise ImageRejectedError(INVALID_FILE_MESSAGE)
    try:
        result = await compress_image(asset, options)
    except CompressionError as e:
        log.warning(f"Image compression failed: {e}")
        raise ImageRejectedError(IMAGE_UNREADABLE_MESSAGE) from e

    if result.file.size > max_bytes:
        raise ImageRejectedError(IMAGE_TOO_LARGE_MESSAGE)

    log.info(f"Image compression successful: {result.compression_info.model_dump()}")
    return result.file


async def _rollback_upload(store: ObjectStore, bucket: str, key: str) -> bool:
    try:
        await run_in_threadpool(store.delete, bucket, key)
    except StoreError as e:
        log.error(f"Could not remove orphaned upload {bucket}/{key}: {e}")
        return False
    log.info(f"Removed orphaned upload {bucket}/{key}")
    return True


async def submit_entry(
    entry: SubmissionPost,
    image: ImageAsset,
    *,
    store: ObjectStore,
    table: SubmissionStore,
    upload_options: UploadOptions,
    cache_seconds: int = 3600,
) -> SubmissionResult:
    """
    Upload the payment screenshot, then record the entry.

    :param entry: name, email and picks
    :param image: payment confirmation screenshot
    :param store: object store for the screenshot
    :param table: where the entry is recorded
    :param upload_options: bucket, folder and compression for the screenshot
    :return: the outcome with a message ready to show to the user
    """
    upload = await upload_image(image, upload_options, store, cache_seconds)
    if not upload.success:
        return SubmissionResult(
            success=False,
            message=f"Error submitting form: {upload.error}",
            failure=SubmissionFailure.upload_failed,
        )

    try:
        submission_id = await table.insert(entry, upload.url)
    except DatabaseInsertError as e:
        log.error(f"Error submitting form for {entry.email}: {e}")
        rolled_back = await _rollback_upload(store, upload_options.bucket, upload.key)
        if is_duplicate_error(str(e)):
            return SubmissionResult(
                success=False,
                message=ALREADY_SUBMITTED_MESSAGE,
                failure=SubmissionFailure.duplicate,
                rolled_back=rolled_back,
            )
        return SubmissionResult(
            success=False,
            message=f"Error submitting form: {e}",
            failure=SubmissionFailure.insert_failed,
            rolled_back=rolled_back,
        )

    return SubmissionResult(
        success=True,
        message=SUCCESS_MESSAGE,
        submission_id=submission_id,
        payment_confirmation_url=upload.url,
    )
