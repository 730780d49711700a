"""
Pillow based image compression.

A single decode -> downscale -> re-encode pass. The size ceiling in
`CompressionOptions` is never enforced here, callers check the result against
their own limit.
"""
import io
import logging
from pathlib import PurePosixPath

from PIL import Image, ImageOps, UnidentifiedImageError
from PIL import features
from starlette.concurrency import run_in_threadpool

from betslip.schema import CompressionInfo, CompressionOptions, CompressionResult, ImageAsset

log = logging.getLogger(__name__)

# target MIME type -> (Pillow format, file extension, lossy)
TARGET_FORMATS = {
    "image/webp": ("WEBP", "webp", True),
    "image/jpeg": ("JPEG", "jpg", True),
    # non-standard alias, reported as image/jpeg
    "image/jpg": ("JPEG", "jpg", True),
    "image/avif": ("AVIF", "avif", True),
    "image/png": ("PNG", "png", False),
    "image/gif": ("GIF", "gif", False),
}


class CompressionError(Exception):
    """The input could not be decoded or the target format could not be written."""


def supported_formats() -> dict[str, bool]:
    """Which target formats the installed Pillow can encode."""
    return {
        "avif": features.check_module("avif"),
        "webp": features.check_module("webp"),
        "jpeg": features.check_codec("jpg"),
        "png": features.check_codec("zlib"),
        "gif": True,
    }


def _target_size(width: int, height: int, max_edge: int) -> tuple[int, int]:
    """Scale so the longer edge equals `max_edge`. Never upscales."""
    longer = max(width, height)
    if longer <= max_edge:
        return width, height
    scale = max_edge / longer
    if width >= height:
        return max_edge, max(1, round(height * scale))
    return max(1, round(width * scale)), max_edge


def _prepare_mode(img: Image.Image, pil_format: str) -> Image.Image:
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )
    if pil_format == "JPEG":
        if img.mode in ("RGB", "L"):
            return img
        if has_alpha:
            # flatten onto white, JPEG has no alpha channel
            rgba = img.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        return img.convert("RGB")
    if pil_format == "GIF":
        return img
    if img.mode in ("RGB", "RGBA", "L"):
        return img
    return img.convert("RGBA" if has_alpha else "RGB")


def _output_name(filename: str, extension: str) -> str:
    stem = PurePosixPath(filename).stem if filename else ""
    return f"{stem or 'image'}.{extension}"


def _compress(asset: ImageAsset, options: CompressionOptions) -> CompressionResult:
    target = TARGET_FORMATS.get(options.file_type.lower())
    if target is None:
        raise CompressionError(f"Unsupported target format: {options.file_type}")
    pil_format, extension, lossy = target

    try:
        with Image.open(io.BytesIO(asset.data)) as src:
            src.load()
            img = ImageOps.exif_transpose(src)

        width, height = img.size
        new_size = _target_size(width, height, options.max_width_or_height)
        if new_size != (width, height):
            log.debug(f"Resizing image from {width}x{height} to {new_size[0]}x{new_size[1]}")
            img = img.resize(new_size, Image.Resampling.LANCZOS)

        img = _prepare_mode(img, pil_format)

        save_args = {}
        if lossy:
            save_args["quality"] = min(100, max(1, round(options.quality * 100)))
        if pil_format in ("JPEG", "PNG"):
            save_args["optimize"] = True

        buffer = io.BytesIO()
        img.save(buffer, format=pil_format, **save_args)
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise CompressionError(f"Could not decode image: {e}") from e
    except (OSError, KeyError, ValueError, MemoryError) as e:
        raise CompressionError(f"Could not compress image to {options.file_type}: {e}") from e

    data = buffer.getvalue()
    if len(data) > options.max_size_bytes:
        log.warning(
            f"Compressed image is {len(data)} bytes, above the "
            f"{options.max_size_mb} MB target"
        )

    final_format = "image/jpeg" if pil_format == "JPEG" else options.file_type.lower()
    compressed = ImageAsset(
        filename=_output_name(asset.filename, extension),
        mime_type=final_format,
        data=data,
    )
    info = CompressionInfo(
        original_size=asset.size,
        compressed_size=compressed.size,
        compression_ratio=compressed.size / asset.size if asset.size else 0.0,
        original_format=asset.mime_type,
        final_format=final_format,
    )
    log.debug(f"Compressed {asset.filename!r}: {info.model_dump()}")
    return CompressionResult(file=compressed, compression_info=info)


async def compress_image(
    asset: ImageAsset, options: CompressionOptions
) -> CompressionResult:
    """
    Downscale and re-encode an image.

    :param asset: image to compress, left untouched
    :param options: target size, dimension, quality and format
    :return: the compressed file and before/after statistics
    :raises CompressionError: if decoding or encoding fails
    """
    return await run_in_threadpool(_compress, asset, options)
