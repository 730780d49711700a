from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ImageAsset(BaseModel):
    """
    An in-memory image file as received from the form.
    """

    model_config = ConfigDict(frozen=True)

    filename: str = Field("", description="Original file name, may be empty.")
    mime_type: str = Field(..., description="Declared MIME type, e.g. image/png.")
    data: bytes = Field(..., repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


class CompressionOptions(BaseModel):
    """
    Target configuration for a single compression pass.

    `max_size_mb` is guidance only, the compressor never re-encodes to meet it.
    """

    model_config = ConfigDict(frozen=True)

    max_size_mb: float = Field(2.0, gt=0)
    max_width_or_height: int = Field(1200, gt=0)
    quality: float = Field(0.8, ge=0.0, le=1.0)
    file_type: str = Field("image/webp", pattern=r"^image/[\w.+-]+$")

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


class CompressionInfo(BaseModel):
    original_size: int
    compressed_size: int
    compression_ratio: float
    """compressed_size / original_size"""
    original_format: str
    final_format: str


class CompressionResult(BaseModel):
    file: ImageAsset
    compression_info: CompressionInfo


class UploadOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: str = Field(..., min_length=1)
    folder: str | None = None
    generate_unique_file_name: bool = False
    compression: CompressionOptions | None = None


class FailureKind(str, Enum):
    invalid_input = "invalid_input"
    store_write = "store_write"
    store_readback = "store_readback"
    unexpected = "unexpected"


class UploadResult(BaseModel):
    """
    Outcome of an upload. Either `url` or `error` is set, never both.
    """

    success: bool
    url: str | None = None
    key: str | None = None
    """Storage key of the written object, also set on a failed URL lookup."""
    error: str | None = None
    failure: FailureKind | None = None
    compression_info: CompressionInfo | None = None
    compression_error: str | None = None
    """Set when compression was requested but the original file was uploaded."""

    @model_validator(mode="after")
    def _check_tagged(self) -> "UploadResult":
        if self.success and (self.url is None or self.error is not None):
            raise ValueError("a successful upload carries a url and no error")
        if not self.success and (self.error is None or self.url is not None):
            raise ValueError("a failed upload carries an error and no url")
        return self

    @classmethod
    def failed(
        cls, failure: FailureKind, error: str, key: str | None = None
    ) -> "UploadResult":
        return cls(success=False, failure=failure, error=error, key=key)


class SubmissionPost(BaseModel):
    """
    A betting entry as submitted by the form.
    """

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    sports: list[str] = Field(..., min_length=1)
    teams: list[str] = Field(..., min_length=1)


class SubmissionFailure(str, Enum):
    image_rejected = "image_rejected"
    upload_failed = "upload_failed"
    duplicate = "duplicate"
    insert_failed = "insert_failed"


class SubmissionResult(BaseModel):
    success: bool
    message: str
    submission_id: int | None = None
    payment_confirmation_url: str | None = None
    failure: SubmissionFailure | None = None
    rolled_back: bool = False
    """True when the uploaded screenshot was deleted after a failed insert."""
