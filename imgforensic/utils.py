"""
Shared data types and helpers for the image forensics toolkit.

Provides:
- PixelBuffer: immutable decoded image samples handed to every analysis
- ImageMetadata: the metadata map supplied by the external decoder
- ToolResult: tagged success/failure envelope returned by the public tools
- Decoder adapter (load_pixel_buffer, pixel_buffer_from_image) built on Pillow,
  for callers that start from a file or an encoded byte string
"""

from __future__ import annotations

import io
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generic, Mapping, Optional, Tuple, TypeVar, Union

import cv2
import numpy as np
import PIL
from PIL import Image, UnidentifiedImageError

from .errors import ForensicError, InvalidImage, UnsupportedInput

T = TypeVar("T")

# EXIF tag ids
_TAG_ORIENTATION = 274
_TAG_SOFTWARE = 305
_TAG_DATETIME = 306
_TAG_EXIF_IFD = 0x8769
_TAG_DATETIME_ORIGINAL = 36867

GRAYSCALE_MODES = ("1", "L", "LA", "I", "I;16", "I;16B", "I;16L", "F")


# ── Data classes ─────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """Decoded image: row-major interleaved uint8 samples.

    ``data`` is stored as a flat read-only numpy array.  Construction never
    fails on bad geometry; call :meth:`validate` (or let the analysis
    functions do it) to get the appropriate error.
    """
    width: int
    height: int
    channels: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if isinstance(self.data, (bytes, bytearray, memoryview)):
            arr = np.frombuffer(bytes(self.data), dtype=np.uint8)
        else:
            arr = np.array(self.data, dtype=np.uint8).ravel()
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PixelBuffer":
        """Build a buffer from an ``(H, W)`` or ``(H, W, C)`` uint8 array."""
        a = np.asarray(arr)
        if a.ndim == 2:
            h, w = a.shape
            c = 1
        elif a.ndim == 3:
            h, w, c = a.shape
        else:
            raise UnsupportedInput(f"expected a 2-D or 3-D array, got {a.ndim}-D")
        return cls(width=int(w), height=int(h), channels=int(c), data=a)

    @property
    def area(self) -> int:
        return max(self.width, 0) * max(self.height, 0)

    @property
    def has_alpha(self) -> bool:
        return self.channels in (2, 4)

    def require_area(self) -> None:
        """Raise ``InvalidImage`` on zero, negative or unknown dimensions."""
        if not self.width or not self.height or self.width < 0 or self.height < 0:
            raise InvalidImage(
                f"invalid image dimensions {self.width}x{self.height}"
            )

    def check_layout(self) -> None:
        """Raise ``UnsupportedInput`` when the samples do not match the geometry."""
        if self.data.size == 0:
            raise UnsupportedInput("empty pixel buffer")
        if self.channels not in (1, 2, 3, 4):
            raise UnsupportedInput(f"unsupported channel count {self.channels}")
        expected = self.width * self.height * self.channels
        if self.data.size != expected:
            raise UnsupportedInput(
                f"buffer holds {self.data.size} samples, expected "
                f"{self.width}x{self.height}x{self.channels}={expected}"
            )

    def validate(self) -> "PixelBuffer":
        self.require_area()
        self.check_layout()
        return self

    def as_array(self) -> np.ndarray:
        """Return an ``(H, W, C)`` read-only view of the samples."""
        self.check_layout()
        return self.data.reshape(self.height, self.width, self.channels)


@dataclass
class ImageMetadata:
    """Metadata supplied by the external decoder alongside the pixels."""
    orientation: Optional[int] = None
    color_space: Optional[str] = None
    software: Optional[str] = None
    date_time_original: Optional[Union[str, datetime]] = None
    date_time_modified: Optional[Union[str, datetime]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    # Accepted spellings for each field, first match wins
    _ALIASES = {
        "orientation": ("orientation", "exif_orientation", "Orientation"),
        "color_space": ("color_space", "colorSpace", "space", "ColorSpace"),
        "software": ("software", "Software"),
        "date_time_original": (
            "date_time_original", "dateTimeOriginal", "original_timestamp",
            "DateTimeOriginal",
        ),
        "date_time_modified": (
            "date_time_modified", "dateTimeModified", "modified_timestamp",
            "ModifyDate", "DateTime",
        ),
    }

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "ImageMetadata":
        if mapping is None:
            return cls()
        if isinstance(mapping, ImageMetadata):
            return mapping
        values: Dict[str, Any] = {}
        used = set()
        for attr, keys in cls._ALIASES.items():
            for key in keys:
                if mapping.get(key) is not None:
                    values[attr] = mapping[key]
                    used.add(key)
                    break
        orientation = values.get("orientation")
        if orientation is not None:
            try:
                values["orientation"] = int(orientation)
            except (TypeError, ValueError):
                values["orientation"] = None
        extra = {k: v for k, v in mapping.items() if k not in used}
        return cls(extra=extra, **values)

    def to_dict(self) -> Dict[str, Any]:
        def _ts(v):
            return v.isoformat() if isinstance(v, datetime) else v
        return {
            "orientation": self.orientation,
            "colorSpace": self.color_space,
            "software": self.software,
            "dateTimeOriginal": _ts(self.date_time_original),
            "dateTimeModified": _ts(self.date_time_modified),
        }


@dataclass
class ToolResult(Generic[T]):
    """Tagged success/failure envelope for the public tool entry points."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: T, started: float, tool_version: str) -> "ToolResult[T]":
        return cls(
            success=True,
            data=data,
            metadata=_run_metadata(started, tool_version),
        )

    @classmethod
    def failure(cls, exc: BaseException, started: float, tool_version: str) -> "ToolResult[T]":
        kind = exc.kind if isinstance(exc, ForensicError) else type(exc).__name__
        return cls(
            success=False,
            error=str(exc) or kind,
            error_type=kind,
            metadata=_run_metadata(started, tool_version),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        return {
            "success": self.success,
            "data": data,
            "error": self.error,
            "errorType": self.error_type,
            "metadata": dict(self.metadata),
        }


def _run_metadata(started: float, tool_version: str) -> Dict[str, Any]:
    return {
        "processing_time_ms": (time.perf_counter() - started) * 1000.0,
        "tool_version": tool_version,
    }


def library_versions() -> str:
    """Versions of the numeric/imaging stack, for ToolResult metadata."""
    return f"numpy {np.__version__}; opencv {cv2.__version__}; Pillow {PIL.__version__}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an EXIF (``YYYY:MM:DD HH:MM:SS``) or ISO-8601 timestamp.

    Returns ``None`` when the value is missing or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).strip().rstrip("\x00")
    if not text:
        return None
    for fmt in ("%Y:%m:%d %H:%M:%S", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(text[:19], fmt)
        except ValueError:
            continue
    if len(text) == 10:
        try:
            return datetime.strptime(text, "%Y:%m:%d")
        except ValueError:
            pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


# ── Decoder adapter (Pillow) ─────────────────────────────────────────

def pixel_buffer_from_image(img: Image.Image) -> PixelBuffer:
    """
    Convert a Pillow image into a PixelBuffer, keeping alpha when present.

    Grayscale modes become 1 (or 2, with alpha) channels; palette images
    expand to RGB or RGBA depending on transparency; everything else
    (CMYK, YCbCr, HSV, ...) is converted to RGB.
    """
    if img.mode in ("L", "LA", "RGB", "RGBA"):
        converted = img
    elif img.mode == "P":
        converted = img.convert("RGBA" if "transparency" in img.info else "RGB")
    elif img.mode == "PA":
        converted = img.convert("RGBA")
    elif img.mode in GRAYSCALE_MODES:
        converted = img.convert("L")
    else:
        converted = img.convert("RGB")
    return PixelBuffer.from_array(np.array(converted, dtype=np.uint8))


def extract_metadata(img: Image.Image) -> ImageMetadata:
    """Read orientation, colour space, software tag and timestamps from *img*.

    The colour space comes from the decoded mode, so a ``b-w`` tag always
    pairs with a 1- or 2-channel buffer from :func:`pixel_buffer_from_image`.
    The grayscale-tag-on-colour anomaly therefore only fires for metadata
    supplied by the caller's own decoder.
    """
    exif = img.getexif() if hasattr(img, "getexif") else None
    orientation = software = modified = original = None
    if exif:
        orientation = exif.get(_TAG_ORIENTATION)
        software = exif.get(_TAG_SOFTWARE)
        modified = exif.get(_TAG_DATETIME)
        try:
            original = exif.get_ifd(_TAG_EXIF_IFD).get(_TAG_DATETIME_ORIGINAL)
        except (AttributeError, KeyError):
            original = None

    mode = img.mode or ""
    if mode in GRAYSCALE_MODES:
        space = "b-w"
    elif mode == "CMYK":
        space = "cmyk"
    else:
        space = "srgb"

    return ImageMetadata(
        orientation=int(orientation) if orientation is not None else None,
        color_space=space,
        software=str(software).strip() if software else None,
        date_time_original=original,
        date_time_modified=modified,
        extra={"format": img.format, "mode": mode},
    )


def load_pixel_buffer(
    source: Union[str, Path, bytes, bytearray],
) -> Tuple[PixelBuffer, ImageMetadata]:
    """Decode a file path or encoded bytes into ``(PixelBuffer, ImageMetadata)``.

    Raises
    ------
    InvalidImage
        When Pillow cannot identify or decode the input.
    """
    try:
        if isinstance(source, (bytes, bytearray)):
            img = Image.open(io.BytesIO(bytes(source)))
        else:
            img = Image.open(Path(source))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise InvalidImage(f"cannot decode image: {exc}") from exc

    return pixel_buffer_from_image(img), extract_metadata(img)


ToolInput = Union[PixelBuffer, str, Path, bytes, bytearray]


def coerce_input(source: ToolInput) -> Tuple[PixelBuffer, Optional[ImageMetadata]]:
    """Accept an already decoded buffer, or decode a path / encoded bytes."""
    if isinstance(source, PixelBuffer):
        return source, None
    return load_pixel_buffer(source)
