"""Project camera, exposure and location context out of a photo for prompt enrichment."""

from collections.abc import Mapping
from fractions import Fraction
from pathlib import Path
from typing import Any, Protocol

from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolExecuteError
from loguru import logger
from pydantic import BaseModel


class PhotoContext(Protocol):
    """Read-only access to formatted metadata fields of a photo, by field name."""

    def get_formatted_metadata(self, field: str) -> str | None: ...


class LocationInfo(BaseModel):
    city: str | None = None
    state_province: str | None = None
    country: str | None = None
    sublocation: str | None = None

    def parts(self) -> list[str]:
        return [
            part
            for part in (self.city, self.state_province, self.country, self.sublocation)
            if part
        ]


class CameraInfo(BaseModel):
    make: str | None = None
    model: str | None = None
    lens: str | None = None


class ShootingSettings(BaseModel):
    focal_length: str | None = None
    aperture: str | None = None
    shutter_speed: str | None = None
    iso: str | None = None
    flash: str | None = None


class ImageInfo(BaseModel):
    dimensions: str | None = None
    cropped_dimensions: str | None = None


class PhotoMetadata(BaseModel):
    """Technical context of a photo; each group is None when none of its fields is known."""

    gps: str | None = None
    copyright: str | None = None
    location: LocationInfo | None = None
    camera: CameraInfo | None = None
    settings: ShootingSettings | None = None
    datetime: str | None = None
    image: ImageInfo | None = None


class MappingPhotoContext:
    """PhotoContext over a plain mapping of field name to value."""

    def __init__(self, fields: Mapping[str, Any]) -> None:
        self._fields = dict(fields)

    def get_formatted_metadata(self, field: str) -> str | None:
        value = self._fields.get(field)
        return None if value is None else str(value)


def _field(photo: PhotoContext, name: str) -> str | None:
    value = photo.get_formatted_metadata(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def extract_metadata(photo: PhotoContext) -> PhotoMetadata | None:
    """
    Collect the fields used for enrichment.

    Returns None (rather than an empty structure) when the photo exposes none of them.

    Examples:
        >>> extract_metadata(MappingPhotoContext({"cameraMake": "Canon"})).camera.make
        'Canon'
        >>> extract_metadata(MappingPhotoContext({"cameraMake": "  "})) is None
        True

    """
    location = LocationInfo(
        city=_field(photo, "city"),
        state_province=_field(photo, "stateProvince"),
        country=_field(photo, "country"),
        sublocation=_field(photo, "location"),
    )
    camera = CameraInfo(
        make=_field(photo, "cameraMake"),
        model=_field(photo, "cameraModel"),
        lens=_field(photo, "lens"),
    )
    settings = ShootingSettings(
        focal_length=_field(photo, "focalLength"),
        aperture=_field(photo, "aperture"),
        shutter_speed=_field(photo, "shutterSpeed"),
        iso=_field(photo, "isoSpeedRating"),
        flash=_field(photo, "flash"),
    )
    image = ImageInfo(
        dimensions=_field(photo, "dimensions"),
        cropped_dimensions=_field(photo, "croppedDimensions"),
    )

    def present(group: BaseModel) -> bool:
        return any(value is not None for value in group.model_dump().values())

    metadata = PhotoMetadata(
        gps=_field(photo, "gps"),
        copyright=_field(photo, "copyright"),
        location=location if present(location) else None,
        camera=camera if present(camera) else None,
        settings=settings if present(settings) else None,
        datetime=_field(photo, "dateTimeOriginal"),
        image=image if present(image) else None,
    )
    if not present(metadata):
        return None
    return metadata


# Field name -> ExifTool tag names (without group prefix), first match wins.
EXIFTOOL_FIELDS: dict[str, tuple[str, ...]] = {
    "gps": ("GPSPosition",),
    "copyright": ("Rights", "Copyright", "CopyrightNotice"),
    "city": ("City",),
    "stateProvince": ("State", "Province-State"),
    "country": ("Country", "Country-PrimaryLocationName"),
    "location": ("Location", "Sub-location"),
    "cameraMake": ("Make",),
    "cameraModel": ("Model",),
    "lens": ("LensModel", "LensID", "Lens"),
    "focalLength": ("FocalLength",),
    "aperture": ("Aperture", "FNumber"),
    "shutterSpeed": ("ShutterSpeed", "ExposureTime"),
    "isoSpeedRating": ("ISO",),
    "flash": ("Flash",),
    "dateTimeOriginal": ("DateTimeOriginal",),
    "dimensions": ("ImageSize",),
}


def _format_aperture(value: str) -> str:
    """
    Render an f-number the way photo managers display it.

    Examples:
        >>> _format_aperture("2.8")
        'f/2.8'
        >>> _format_aperture("f/4")
        'f/4'

    """
    return value if value.lower().startswith("f/") else f"f/{value}"


def _format_shutter_speed(value: str) -> str:
    """
    Render an exposure time as a fraction of a second.

    Examples:
        >>> _format_shutter_speed("1/250")
        '1/250 sec'
        >>> _format_shutter_speed("0.004")
        '1/250 sec'
        >>> _format_shutter_speed("2")
        '2 sec'

    """
    if value.endswith("sec"):
        return value
    try:
        seconds = Fraction(value).limit_denominator(8000)
    except (ValueError, ZeroDivisionError):
        return value
    if 0 < seconds < 1:
        return f"1/{round(1 / seconds)} sec"
    return f"{float(seconds):g} sec"


def _metadata_targets(image_path: Path) -> list[str]:
    """
    Return the file paths that may contain metadata for an image.

    Examples:
        >>> _metadata_targets(Path("/photos/image.cr3"))  # doctest: +SKIP
        ['/photos/image.cr3', '/photos/image.xmp']

    """
    targets: list[str] = []
    xmp_path = image_path.with_suffix(".xmp")
    if image_path.exists():
        targets.append(str(image_path))
    if xmp_path.exists():
        targets.append(str(xmp_path))
    return targets


class ExifToolPhotoContext:
    """
    PhotoContext reading an image file (and its XMP sidecar) with ExifTool.

    Tags are read once, on first access. Values come back in ExifTool's print format,
    so exposure values are already human readable.
    """

    def __init__(self, image_path: Path) -> None:
        self.image_path = image_path
        self._tags: dict[str, str] | None = None

    def _read_tags(self) -> dict[str, str]:
        targets = _metadata_targets(self.image_path)
        if not targets:
            return {}
        wanted = sorted({tag for tags in EXIFTOOL_FIELDS.values() for tag in tags})
        try:
            with ExifToolHelper(common_args=["-G"]) as et:  # type: ignore[no-untyped-call]
                metadata_blocks = et.get_tags(files=targets, tags=wanted)
        except (OSError, ValueError, TypeError, ExifToolExecuteError) as e:
            logger.exception("failed_to_read_photo_context", error=str(e))
            return {}

        collected: dict[str, str] = {}
        # The image file wins over the sidecar: later blocks only fill gaps.
        for block in metadata_blocks:
            for key, value in block.items():
                tag = key.rsplit(":", 1)[-1]
                if tag in collected or value in (None, ""):
                    continue
                if isinstance(value, (list, tuple)):
                    value = ", ".join(str(v) for v in value if str(v).strip())
                collected[tag] = str(value)
        logger.debug("photo_context_read", file=self.image_path.name, tag_count=len(collected))
        return collected

    def get_formatted_metadata(self, field: str) -> str | None:
        if self._tags is None:
            self._tags = self._read_tags()
        for tag in EXIFTOOL_FIELDS.get(field, ()):
            if value := self._tags.get(tag):
                if field == "aperture":
                    return _format_aperture(value)
                if field == "shutterSpeed":
                    return _format_shutter_speed(value)
                return value
        return None
