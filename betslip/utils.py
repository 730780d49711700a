import logging
from functools import lru_cache

from pydantic import computed_field, FilePath, NewPath
from pydantic_settings import BaseSettings

from betslip.logging import LogLevels
from betslip.schema import CompressionOptions, UploadOptions

log = logging.getLogger(__name__)


class Settings(BaseSettings):
    # cors
    allowed_origins: str | None = None
    """A comma-separated list of allowed origins for CORS. No spaces allowed."""
    allowed_origins_regex: str | None = None

    @computed_field
    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse the allowed origins into a list."""
        if not self.allowed_origins:
            return []

        return [origin.strip() for origin in self.allowed_origins.split(",")]

    # object store (AWS S3 or any S3-compatible endpoint, e.g. Supabase Storage)
    aws_s3_bucket: str = "betting-images"
    aws_profile_name: str | None = None
    aws_region_name: str | None = None
    aws_endpoint_url: str | None = None
    public_base_url: str | None = None
    """Public objects are served from `<public_base_url>/<bucket>/<key>`."""

    upload_folder: str | None = "payment-confirmations"
    upload_cache_seconds: int = 3600

    # compression applied when the screenshot is received
    preview_max_size_mb: float = 2.0
    preview_max_dimension: int = 1200
    preview_quality: float = 0.8
    preview_file_type: str = "image/webp"

    # compression applied again right before the upload
    upload_max_size_mb: float = 1.0
    upload_max_dimension: int = 1000
    upload_quality: float = 0.8
    upload_file_type: str = "image/webp"

    max_image_bytes: int = 2 * 1024 * 1024  # hard ceiling after compression

    log_level: LogLevels = LogLevels.error

    db_file: FilePath | NewPath = "submissions.sqlite"

    @computed_field
    @property
    def sqlite_db(self) -> str:
        """Construct the SQLite database URL."""
        return f"sqlite+aiosqlite:///{self.db_file}"

    def preview_compression(self) -> CompressionOptions:
        return CompressionOptions(
            max_size_mb=self.preview_max_size_mb,
            max_width_or_height=self.preview_max_dimension,
            quality=self.preview_quality,
            file_type=self.preview_file_type,
        )

    def upload_options(self) -> UploadOptions:
        """Options used to store payment confirmation screenshots."""
        return UploadOptions(
            bucket=self.aws_s3_bucket,
            folder=self.upload_folder,
            generate_unique_file_name=True,
            compression=CompressionOptions(
                max_size_mb=self.upload_max_size_mb,
                max_width_or_height=self.upload_max_dimension,
                quality=self.upload_quality,
                file_type=self.upload_file_type,
            ),
        )


@lru_cache
def get_settings() -> Settings:
    """Get application settings from environment variables."""
    return Settings()
