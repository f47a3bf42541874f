"""Tests for in-memory JPEG preparation."""

from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

import ai_tagger.images as images


def _decode(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


def test_encode_jpeg_downscales_keeping_aspect_ratio() -> None:
    """Large images are shrunk to fit the maximum size; small ones are left alone."""
    big = Image.new("RGB", (2000, 1000), (10, 120, 200))
    out = _decode(images.encode_jpeg(big, jpeg_quality=80, max_size=500))
    assert out.format == "JPEG"
    assert out.size == (500, 250)

    small = Image.new("RGB", (300, 200), (10, 120, 200))
    assert _decode(images.encode_jpeg(small, jpeg_quality=80, max_size=500)).size == (300, 200)


def test_encode_jpeg_flattens_transparency_on_white() -> None:
    """Fully transparent pixels become white in the JPEG."""
    transparent = Image.new("RGBA", (64, 64), (0, 0, 0, 0))
    out = _decode(images.encode_jpeg(transparent, jpeg_quality=95, max_size=64))
    assert out.mode == "RGB"
    red, green, blue = out.getpixel((32, 32))  # type: ignore[misc]
    assert min(red, green, blue) > 245


def test_prepare_image_reads_standard_formats_without_rawpy(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Known non-RAW extensions are opened with Pillow directly."""

    def fail_imread(path: str) -> None:
        msg = f"rawpy should not open {path}"
        raise AssertionError(msg)

    monkeypatch.setattr(images.rawpy, "imread", fail_imread)
    source = tmp_path / "photo.png"
    Image.new("RGB", (1600, 1200), (200, 30, 30)).save(source)

    data = images.prepare_image(source, jpeg_quality=70, max_size=800)

    assert data.startswith(b"\xff\xd8")
    assert _decode(data).size == (800, 600)


def test_prepare_image_falls_back_to_pillow_when_rawpy_fails(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Unknown extensions try rawpy first and fall back to Pillow."""

    def broken_imread(path: str) -> None:
        msg = f"not a raw file: {path}"
        raise ValueError(msg)

    monkeypatch.setattr(images.rawpy, "imread", broken_imread)
    source = tmp_path / "photo.dat"
    Image.new("RGB", (100, 100), (0, 0, 0)).save(source, format="PNG")

    assert _decode(images.prepare_image(source)).size == (100, 100)


def test_prepare_image_raises_for_unreadable_file(tmp_path: Path) -> None:
    """Files that no decoder understands raise, for the caller to report."""
    source = tmp_path / "notes.jpg"
    source.write_text("not an image", encoding="utf-8")

    with pytest.raises(OSError, match="cannot identify image file"):
        images.prepare_image(source)
