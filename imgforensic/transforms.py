"""
Pixel-level transforms shared by the hashing and recompression modules.

Resampling
----------
Every resize in the package goes through :func:`resize`, which uses
OpenCV's ``INTER_AREA`` (pixel-area relation) filter.  It is deterministic:
the same source samples and target size always give byte-identical
output, which the perceptual hashes depend on.

Grayscale
---------
ITU-R BT.601 luma via ``cv2.cvtColor`` for RGB/RGBA; single-channel
buffers pass through and gray+alpha buffers drop the alpha.

Wavelets
--------
Full-depth 1-D Haar via PyWavelets (``haar`` + ``periodization``), whose
coefficient list ``[cA_n, cD_n, ..., cD_1]`` concatenates to the usual
in-place layout.  The 2-D version is the standard (separable)
decomposition: every row first, then every column.

DCT
---
2-D DCT-II with coefficient ``(u, v)`` scaled by ``c(u) c(v) / (2 sqrt(N M))``,
``c(0) = 1/sqrt(2)`` and 1 otherwise.  That is exactly the orthonormal DCT
divided by four, so even-sized blocks use ``cv2.dct``; odd sizes fall back
to an explicit cosine-basis product.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import cv2
import numpy as np
import pywt

from .errors import UnsupportedInput
from .utils import PixelBuffer

logger = logging.getLogger(__name__)

RESAMPLE_INTERPOLATION = cv2.INTER_AREA


def _cv_input(arr: np.ndarray) -> np.ndarray:
    """Contiguous, writeable uint8 copy when needed (OpenCV rejects read-only views)."""
    return np.require(arr, dtype=np.uint8, requirements=["C", "W"])


def _is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


# ── Grayscale / resampling ───────────────────────────────────────────

def to_grayscale(buffer: PixelBuffer) -> np.ndarray:
    """Reduce *buffer* to an ``(H, W)`` uint8 luma image."""
    arr = buffer.as_array()
    c = buffer.channels
    if c in (1, 2):
        return arr[..., 0].copy()
    if c == 3:
        return cv2.cvtColor(_cv_input(arr), cv2.COLOR_RGB2GRAY)
    return cv2.cvtColor(_cv_input(arr), cv2.COLOR_RGBA2GRAY)


def resize(arr: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resample *arr* (``(H, W)`` or ``(H, W, C)``) to ``width x height``."""
    if width < 1 or height < 1:
        raise UnsupportedInput(f"invalid target size {width}x{height}")
    a = np.asarray(arr)
    if a.size == 0 or a.ndim not in (2, 3):
        raise UnsupportedInput(f"cannot resample array of shape {a.shape}")
    out = cv2.resize(_cv_input(a), (int(width), int(height)), interpolation=RESAMPLE_INTERPOLATION)
    if a.ndim == 3 and out.ndim == 2:
        out = out[..., np.newaxis]
    return out


def grayscale_resized(buffer: PixelBuffer, width: int, height: int) -> np.ndarray:
    """Grayscale then resample; the input of every hash algorithm."""
    return resize(to_grayscale(buffer), width, height)


def resize_buffer(buffer: PixelBuffer, width: int, height: int) -> np.ndarray:
    """Resample all channels of *buffer*; returns ``(height, width, C)`` uint8."""
    return resize(buffer.as_array(), width, height)


def block_view(arr: np.ndarray, block_size: int) -> np.ndarray:
    """Partition into non-overlapping ``block_size`` squares.

    Returns shape ``(rows, cols, block_size, block_size, ...)``.  Trailing
    partial blocks on the right and bottom edges are dropped.
    """
    if block_size < 1:
        raise UnsupportedInput(f"invalid block size {block_size}")
    a = np.asarray(arr)
    h, w = a.shape[:2]
    rows, cols = h // block_size, w // block_size
    trimmed = a[: rows * block_size, : cols * block_size]
    shape = (rows, block_size, cols, block_size) + a.shape[2:]
    blocks = trimmed.reshape(shape)
    order = (0, 2, 1, 3) + tuple(range(4, blocks.ndim))
    return blocks.transpose(order)


# ── Haar wavelet ─────────────────────────────────────────────────────

def _haar_along(arr: np.ndarray, axis: int) -> np.ndarray:
    n = arr.shape[axis]
    if n == 1:
        return arr
    level = n.bit_length() - 1
    coeffs = pywt.wavedec(arr, "haar", mode="periodization", level=level, axis=axis)
    return np.concatenate(coeffs, axis=axis)


def haar_1d(values: Sequence[float]) -> np.ndarray:
    """Full-depth 1-D Haar transform.

    Each step halves the working prefix into pairwise averages and
    differences, both scaled by ``1/sqrt(2)``, until one value remains.

    Raises
    ------
    UnsupportedInput
        When the input is empty or its length is not a power of two.
    """
    a = np.asarray(values, dtype=np.float64).ravel()
    if not _is_power_of_two(a.size):
        raise UnsupportedInput(f"Haar transform needs a power-of-two length, got {a.size}")
    return _haar_along(a.copy(), axis=0)


def haar_2d(matrix: np.ndarray) -> np.ndarray:
    """Separable 2-D Haar: the 1-D transform on every row, then every column."""
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim != 2:
        raise UnsupportedInput(f"Haar 2-D needs a 2-D array, got shape {m.shape}")
    h, w = m.shape
    if not (_is_power_of_two(h) and _is_power_of_two(w)):
        raise UnsupportedInput(f"Haar 2-D needs power-of-two sides, got {w}x{h}")
    rows_done = _haar_along(m.copy(), axis=1)
    return _haar_along(rows_done, axis=0)


# ── DCT ──────────────────────────────────────────────────────────────

def _scaled_basis(n: int) -> np.ndarray:
    k = np.arange(n)
    basis = np.cos(np.outer(k, 2 * k + 1) * math.pi / (2 * n))
    basis[0] *= 1.0 / math.sqrt(2.0)
    return basis


def dct_2d(block: np.ndarray) -> np.ndarray:
    """2-D DCT-II of an ``N x M`` block (see module docstring for scaling)."""
    b = np.asarray(block, dtype=np.float64)
    if b.ndim != 2 or b.size == 0:
        raise UnsupportedInput(f"DCT needs a non-empty 2-D block, got shape {b.shape}")
    n, m = b.shape
    if n % 2 == 0 and m % 2 == 0:
        return cv2.dct(np.ascontiguousarray(b)) / 4.0
    return _scaled_basis(n) @ b @ _scaled_basis(m).T / (2.0 * math.sqrt(n * m))
