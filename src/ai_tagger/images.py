"""Turn photos on disk (RAW or standard formats) into small JPEGs for the model."""

from io import BytesIO
from pathlib import Path

import rawpy
from loguru import logger
from PIL import Image

JPEG_MIME_TYPE = "image/jpeg"
NON_RAW_EXTENSIONS = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".webp",
        ".bmp",
        ".gif",
        ".jpe",
        ".jp2",
        ".tif",
        ".tiff",
        ".heic",
        ".heif",
        ".avif",
        ".psd",
        ".ico",
        ".ppm",
        ".pgm",
        ".pbm",
    },
)


def _pil_from_image_path(image_path: Path) -> Image.Image:
    """Open an image from a path with PIL, using rawpy unless format is known non-RAW."""
    suffix = image_path.suffix.lower()
    if suffix in NON_RAW_EXTENSIONS:
        logger.debug("skipping_rawpy_for_known_format", extension=suffix)
    else:
        try:
            with rawpy.imread(str(image_path)) as raw:  # type: ignore[no-untyped-call]
                rgb = raw.postprocess()  # 8-bit RGB np.ndarray
            logger.debug("image_opened_with_rawpy")
            return Image.fromarray(rgb)
        except Exception as exc:  # noqa: BLE001
            logger.warning("rawpy_failed_falling_back_to_pil", error=str(exc))

    logger.debug("opening_image_with_pil", extension=suffix or "")
    return Image.open(image_path)


def encode_jpeg(img: Image.Image, *, jpeg_quality: int, max_size: int) -> bytes:
    """
    Flatten, downscale and JPEG-encode an image in memory.

    Transparent images are composited onto white; the aspect ratio is kept and images are
    never upscaled.
    """
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        alpha = img.convert("RGBA")
        bg = Image.new("RGBA", alpha.size, (255, 255, 255, 255))
        img = Image.alpha_composite(bg, alpha).convert("RGB")
    else:
        img = img.convert("RGB")

    img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

    buf = BytesIO()
    img.save(buf, format="JPEG", quality=jpeg_quality)
    jpeg_bytes = buf.getvalue()
    logger.debug(
        "image_encoded",
        width=img.width,
        height=img.height,
        size_kb=len(jpeg_bytes) // 1024,
    )
    return jpeg_bytes


def prepare_image(image_path: Path, *, jpeg_quality: int = 80, max_size: int = 1280) -> bytes:
    """
    Load a photo and return JPEG bytes ready to send to a provider.

    Handles RAW (CR2, CR3, NEF, ARW, RW2, RAF, DNG) and standard (JPG, PNG, WEBP, BMP) formats.
    The entire process is done in memory; no temporary files are created.

    Args:
        image_path: Path to the input image file
        jpeg_quality: JPEG compression quality (1-100, recommended: 80)
        max_size: Maximum dimension in pixels for resizing (recommended: <=1280)

    """
    try:
        with _pil_from_image_path(image_path) as img:
            return encode_jpeg(img, jpeg_quality=jpeg_quality, max_size=max_size)
    except Exception as e:
        logger.exception("image_preparation_failed", error=str(e))
        raise
