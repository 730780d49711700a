"""Tests for entry submission and upload rollback."""

from __future__ import annotations

import pytest

from betslip.schema import CompressionOptions, SubmissionFailure, UploadOptions
from betslip.submissions import (
    ALREADY_SUBMITTED_MESSAGE,
    IMAGE_TOO_LARGE_MESSAGE,
    IMAGE_UNREADABLE_MESSAGE,
    SUCCESS_MESSAGE,
    ImageRejectedError,
    is_duplicate_error,
    prepare_payment_image,
    submit_entry,
)
from betslip.upload import INVALID_FILE_MESSAGE
from tests.fakes import (
    FakeObjectStore,
    FakeSubmissionTable,
    make_asset,
    make_entry,
    make_noise_jpeg,
    make_oversized_png,
)

UPLOAD_OPTIONS = UploadOptions(
    bucket="betting-images",
    folder="payment-confirmations",
    generate_unique_file_name=True,
    compression=CompressionOptions(max_size_mb=1, max_width_or_height=1000),
)


class TestSubmitEntry:
    """Test submit_entry."""

    @pytest.mark.asyncio
    async def test_submit_success(self) -> None:
        store = FakeObjectStore()
        table = FakeSubmissionTable()

        result = await submit_entry(
            make_entry(), make_asset(), store=store, table=table, upload_options=UPLOAD_OPTIONS
        )

        assert result.success is True
        assert result.message == SUCCESS_MESSAGE
        assert result.submission_id == 1
        assert len(store.objects) == 1
        entry, url = table.rows[0]
        assert entry.email == "alex@uni.example"
        assert url == result.payment_confirmation_url
        assert store.delete_calls == []

    @pytest.mark.asyncio
    async def test_duplicate_rolls_back_upload(self) -> None:
        store = FakeObjectStore()
        table = FakeSubmissionTable(
            error='duplicate key value violates unique constraint "betting_submissions_email_key"'
        )

        result = await submit_entry(
            make_entry(), make_asset(), store=store, table=table, upload_options=UPLOAD_OPTIONS
        )

        assert result.success is False
        assert result.failure is SubmissionFailure.duplicate
        assert result.message == ALREADY_SUBMITTED_MESSAGE
        assert result.rolled_back is True
        assert len(store.put_calls) == 1
        assert store.delete_calls == store.put_calls
        assert store.objects == {}

    @pytest.mark.asyncio
    async def test_other_insert_error_rolls_back_upload(self) -> None:
        store = FakeObjectStore()
        table = FakeSubmissionTable(error="disk I/O error")

        result = await submit_entry(
            make_entry(), make_asset(), store=store, table=table, upload_options=UPLOAD_OPTIONS
        )

        assert result.failure is SubmissionFailure.insert_failed
        assert result.message == "Error submitting form: disk I/O error"
        assert result.rolled_back is True
        assert store.objects == {}

    @pytest.mark.asyncio
    async def test_failed_rollback_is_reported(self) -> None:
        """A failed delete leaves the orphan and is not retried."""
        store = FakeObjectStore(delete_error="access denied")
        table = FakeSubmissionTable(error="UNIQUE constraint failed: betting_submissions.email")

        result = await submit_entry(
            make_entry(), make_asset(), store=store, table=table, upload_options=UPLOAD_OPTIONS
        )

        assert result.failure is SubmissionFailure.duplicate
        assert result.rolled_back is False
        assert len(store.delete_calls) == 1
        assert len(store.objects) == 1

    @pytest.mark.asyncio
    async def test_upload_failure_skips_insert(self) -> None:
        store = FakeObjectStore(put_error="bucket not found")
        table = FakeSubmissionTable()

        result = await submit_entry(
            make_entry(), make_asset(), store=store, table=table, upload_options=UPLOAD_OPTIONS
        )

        assert result.success is False
        assert result.failure is SubmissionFailure.upload_failed
        assert result.message == "Error submitting form: Upload failed: bucket not found"
        assert table.rows == []
        assert store.delete_calls == []


class TestIsDuplicateError:
    @pytest.mark.parametrize(
        "message",
        [
            'duplicate key value violates unique constraint "betting_submissions_email_key"',
            "UNIQUE constraint failed: betting_submissions.email",
            "Entry already exists",
        ],
    )
    def test_duplicate_messages(self, message: str) -> None:
        assert is_duplicate_error(message) is True

    def test_other_messages(self) -> None:
        assert is_duplicate_error("connection reset by peer") is False


class TestPreparePaymentImage:
    @pytest.mark.asyncio
    async def test_compresses_to_webp(self) -> None:
        asset = make_asset(data=make_noise_jpeg((2400, 1600)))

        image = await prepare_payment_image(asset, CompressionOptions(), 2 * 1024 * 1024)

        assert image.mime_type == "image/webp"
        assert image.size < asset.size

    @pytest.mark.asyncio
    async def test_too_large_after_compression(self) -> None:
        with pytest.raises(ImageRejectedError) as exc_info:
            await prepare_payment_image(make_asset(), CompressionOptions(), 10)

        assert str(exc_info.value) == IMAGE_TOO_LARGE_MESSAGE

    @pytest.mark.asyncio
    async def test_not_an_image(self) -> None:
        asset = make_asset("notes.txt", "text/plain", b"hello")

        with pytest.raises(ImageRejectedError) as exc_info:
            await prepare_payment_image(asset, CompressionOptions(), 1024)

        assert str(exc_info.value) == INVALID_FILE_MESSAGE

    @pytest.mark.asyncio
    async def test_unreadable_image(self) -> None:
        asset = make_asset(data=b"not an image")

        with pytest.raises(ImageRejectedError) as exc_info:
            await prepare_payment_image(asset, CompressionOptions(), 1024)

        assert str(exc_info.value) == IMAGE_UNREADABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_oversized_dimensions(self) -> None:
        asset = make_asset("huge.png", "image/png", make_oversized_png())

        with pytest.raises(ImageRejectedError) as exc_info:
            await prepare_payment_image(asset, CompressionOptions(), 2 * 1024 * 1024)

        assert str(exc_info.value) == IMAGE_UNREADABLE_MESSAGE
