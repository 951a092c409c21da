"""
Error Level Analysis (ELA) via a single fixed-quality recompression pass.

Algorithm
---------
1. Encode the original buffer through the lossy codec at ``quality``
   (default 85) and decode it back.
2. Check the decoded dimensions and align the channel layouts (the JPEG
   codec drops alpha, and may return gray for gray input).
3. ``score = min(100, sqrt(MSE) * scale)`` over every aligned sample.
   Larger-than-expected reconstruction error under a fixed pass points to
   a prior compression at a different quality, i.e. re-saving or editing.
4. Block map: mean absolute error of each non-overlapping 8x8 block over
   all aligned samples.  Trailing partial blocks are dropped.

Failure policy: this module raises (``InvalidImage`` on zero/unknown
dimensions, ``CodecFailure`` when the codec fails or returns a different
size, ``UnsupportedInput`` on channel layouts that cannot be aligned).
``ForensicAnalyzer`` turns any of these into a score of 0.

Usage
-----
    from imgforensic.ela import ela_analyze
    result = ela_analyze(buffer, quality=85, scale=10.0)
    print(result.score, len(result.block_map))
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .codec import JpegCodec, LossyCodec
from .errors import CodecFailure, ForensicError, UnsupportedInput
from .transforms import block_view
from .utils import PixelBuffer

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 85
DEFAULT_SCALE = 10.0
BLOCK_SIZE = 8
MAX_SCORE = 100.0


# ---------------------------------------------------------------------------
# Data class
# ---------------------------------------------------------------------------

@dataclass
class ELAResult:
    """Outcome of one recompression pass."""

    score: float                     # [0, 100]
    mse: float                       # mean squared error over aligned samples
    block_map: List[float]           # per-block mean absolute error, row-major
    blocks_x: int
    blocks_y: int
    quality: int
    scale: float
    channels_compared: int
    notes: List[str] = field(default_factory=list)

    @property
    def block_variance(self) -> float:
        return block_map_variance(self.block_map)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _luma(arr: np.ndarray) -> np.ndarray:
    """BT.601 luma of an ``(H, W, 3)`` float array, kept 3-D."""
    rgb = arr[..., :3]
    y = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
    return y[..., np.newaxis]


def align_channels(
    original: PixelBuffer,
    recompressed: PixelBuffer,
) -> Tuple[np.ndarray, np.ndarray, List[str]]:
    """Return two float64 ``(H, W, C)`` arrays with matching channel layout.

    Handles the layouts a lossy codec realistically produces: alpha
    stripped (4 -> 3, 2 -> 1) and gray <-> colour.
    """
    if (original.width, original.height) != (recompressed.width, recompressed.height):
        raise CodecFailure(
            f"codec returned {recompressed.width}x{recompressed.height}, "
            f"expected {original.width}x{original.height}"
        )

    a = original.as_array().astype(np.float64)
    b = recompressed.as_array().astype(np.float64)
    notes: List[str] = []

    if a.shape[2] == b.shape[2]:
        return a, b, notes

    # Alpha carries no compression signal; compare colour/gray samples only
    if original.has_alpha:
        a = a[..., :-1]
        notes.append("alpha channel excluded from comparison")
    if recompressed.has_alpha:
        b = b[..., :-1]

    if a.shape[2] == b.shape[2]:
        return a, b, notes
    if a.shape[2] == 3 and b.shape[2] == 1:
        a = _luma(a)
        notes.append("codec returned grayscale; compared on luma")
    elif a.shape[2] == 1 and b.shape[2] == 3:
        b = _luma(b)
        notes.append("codec returned colour for gray input; compared on luma")
    else:
        raise UnsupportedInput(
            f"cannot align {original.channels}-channel original with "
            f"{recompressed.channels}-channel recompressed buffer"
        )
    return a, b, notes


def recompress(
    buffer: PixelBuffer,
    codec: Optional[LossyCodec] = None,
    quality: int = DEFAULT_QUALITY,
) -> PixelBuffer:
    """Round-trip *buffer* through *codec* at *quality*."""
    buffer.validate()
    codec = codec or JpegCodec()
    try:
        encoded = codec.encode(buffer, quality)
        decoded = codec.decode(encoded)
    except ForensicError:
        raise
    except Exception as exc:
        raise CodecFailure(f"{getattr(codec, 'name', type(codec).__name__)} failed: {exc}") from exc
    decoded.validate()
    return decoded


def _mse(original: np.ndarray, recompressed: np.ndarray) -> float:
    diff = original - recompressed
    return float(np.mean(diff * diff))


def ela_score_from_mse(mse: float, scale: float = DEFAULT_SCALE) -> float:
    return float(min(MAX_SCORE, max(0.0, math.sqrt(max(mse, 0.0)) * scale)))


def ela_score(
    original: np.ndarray,
    recompressed: np.ndarray,
    scale: float = DEFAULT_SCALE,
) -> float:
    """``min(100, sqrt(MSE) * scale)`` for two aligned sample arrays."""
    return ela_score_from_mse(_mse(original, recompressed), scale)


def block_map_variance(block_map: List[float]) -> float:
    """Population variance of the block map; 0 for an empty map."""
    if not block_map:
        return 0.0
    return float(np.var(np.asarray(block_map, dtype=np.float64)))


def ela_block_map(
    original: np.ndarray,
    recompressed: np.ndarray,
    block_size: int = BLOCK_SIZE,
) -> Tuple[List[float], int, int]:
    """Mean absolute error per ``block_size`` block.

    Returns ``(block_map, blocks_x, blocks_y)`` with ``block_map`` in
    row-major block order.
    """
    diff = np.abs(original - recompressed)
    blocks = block_view(diff, block_size)
    rows, cols = blocks.shape[:2]
    if rows == 0 or cols == 0:
        return [], cols, rows
    means = blocks.reshape(rows, cols, -1).mean(axis=2)
    return [float(v) for v in means.ravel()], cols, rows


# ---------------------------------------------------------------------------
# Main public functions
# ---------------------------------------------------------------------------

def ela_analyze(
    buffer: PixelBuffer,
    codec: Optional[LossyCodec] = None,
    *,
    quality: int = DEFAULT_QUALITY,
    scale: float = DEFAULT_SCALE,
    block_size: int = BLOCK_SIZE,
) -> ELAResult:
    """Run one fixed-quality ELA pass over *buffer*.

    Parameters
    ----------
    buffer : PixelBuffer
        Decoded original image.
    codec : LossyCodec, optional
        Re-encode/decode capability; Pillow JPEG when omitted.
    quality : int
        Codec quality for the re-encode pass (1-100).
    scale : float
        Multiplier applied to the RMS error before clamping to 100.
    block_size : int
        Side of the square blocks in the spatial error map.

    Returns
    -------
    ELAResult
    """
    if not 1 <= quality <= 100:
        raise UnsupportedInput(f"quality must be in [1, 100], got {quality}")
    if scale <= 0:
        raise UnsupportedInput(f"scale must be positive, got {scale}")

    buffer.validate()
    decoded = recompress(buffer, codec, quality)
    original, recompressed, notes = align_channels(buffer, decoded)

    mse = _mse(original, recompressed)
    score = ela_score_from_mse(mse, scale)
    block_map, blocks_x, blocks_y = ela_block_map(original, recompressed, block_size)

    logger.debug(
        "ELA %dx%dx%d q=%d: mse=%.4f score=%.2f blocks=%dx%d",
        buffer.width, buffer.height, buffer.channels, quality, mse, score,
        blocks_x, blocks_y,
    )
    return ELAResult(
        score=score,
        mse=mse,
        block_map=block_map,
        blocks_x=blocks_x,
        blocks_y=blocks_y,
        quality=quality,
        scale=scale,
        channels_compared=int(original.shape[2]),
        notes=notes,
    )


def ela_visualization(
    buffer: PixelBuffer,
    codec: Optional[LossyCodec] = None,
    *,
    quality: int = DEFAULT_QUALITY,
    amplify: float = 5.0,
    output_quality: int = 95,
) -> bytes:
    """Encode an amplified ``|original - recompressed|`` image through *codec*.

    Bright regions recompress with more error than their surroundings.
    """
    codec = codec or JpegCodec()
    buffer.validate()
    decoded = recompress(buffer, codec, quality)
    original, recompressed, _ = align_channels(buffer, decoded)
    ela = np.clip(np.abs(original - recompressed) * amplify, 0, 255).astype(np.uint8)
    return codec.encode(PixelBuffer.from_array(ela), output_quality)
