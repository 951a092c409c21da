"""
Lossy codec capability used by the recompression model.

The ELA core only needs ``encode(buffer, quality) -> bytes`` and
``decode(data) -> PixelBuffer``; anything providing those two methods can
stand in for the JPEG codec (tests use a deterministic fake).
"""

from __future__ import annotations

import io
import logging
from typing import Protocol, runtime_checkable

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import CodecFailure
from .utils import PixelBuffer, pixel_buffer_from_image

logger = logging.getLogger(__name__)


@runtime_checkable
class LossyCodec(Protocol):
    name: str

    def encode(self, buffer: PixelBuffer, quality: int) -> bytes:
        ...

    def decode(self, data: bytes) -> PixelBuffer:
        ...


class JpegCodec:
    """Pillow JPEG encoder/decoder.

    JPEG carries no alpha, so RGBA buffers are encoded as RGB and gray+alpha
    as L; the recompression model realigns the channel layouts afterwards.
    """

    name = "jpeg"

    def __init__(self, subsampling: int = -1, optimize: bool = False):
        self.subsampling = subsampling
        self.optimize = optimize

    def encode(self, buffer: PixelBuffer, quality: int) -> bytes:
        arr = buffer.as_array()
        if buffer.channels in (1, 2):
            img = Image.fromarray(np.ascontiguousarray(arr[..., 0]))
        else:
            img = Image.fromarray(np.ascontiguousarray(arr[..., :3]))

        out = io.BytesIO()
        try:
            img.save(
                out,
                format="JPEG",
                quality=int(quality),
                subsampling=self.subsampling,
                optimize=self.optimize,
            )
        except (OSError, ValueError) as exc:
            raise CodecFailure(f"JPEG encode failed at quality {quality}: {exc}") from exc
        logger.debug(
            "JPEG q=%d %dx%d -> %d bytes", quality, buffer.width, buffer.height, out.tell()
        )
        return out.getvalue()

    def decode(self, data: bytes) -> PixelBuffer:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise CodecFailure(f"JPEG decode failed: {exc}") from exc
        return pixel_buffer_from_image(img)
