"""
Perceptual hashes: average (aHash), difference (dHash), DCT (pHash) and
Haar-wavelet (wHash).

Every algorithm produces ``hash_size ** 2`` bits, hex-encoded with the
first processed bit as the most significant one and left-padded with
zeros to ``hash_size ** 2 / 4`` digits (16 for the default size of 8).
Hashes are plain Python ints under the hood, so sizes above 8 (more than
64 bits) need no special handling.

Algorithm summary
-----------------
aHash
    Resample to ``s x s`` gray; bit = sample strictly above the mean.
dHash
    Resample to ``(s+1) x s`` gray; row-major, bit = left pixel strictly
    brighter than its right neighbour.
pHash
    Resample to 32x32 gray, 2-D DCT, keep the top-left ``s x s`` block.
    The mean excludes the DC term; bit i (i >= 1) = coefficient above the
    mean.  The DC slot (the most significant bit) is always 0.
wHash
    Resample to 32x32 gray, scale to [0, 1], 2-D Haar, keep the top-left
    ``s x s`` block; bit = coefficient above the block median (the upper
    middle element when the count is even).

Usage
-----
    from imgforensic.hashing import HashCalculator
    result = HashCalculator().process(buffer)
    if result.success:
        print(result.data.to_dict())
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .config import ForensicConfig, is_power_of_two
from .errors import UnsupportedInput
from .transforms import dct_2d, grayscale_resized, haar_2d
from .utils import PixelBuffer, ToolInput, ToolResult, coerce_input, library_versions

logger = logging.getLogger(__name__)

DCT_SIZE = 32
WAVELET_SIZE = 32


# ---------------------------------------------------------------------------
# Hex codec
# ---------------------------------------------------------------------------

def bits_to_hex(bits: Sequence[bool]) -> str:
    """Pack *bits* (first = most significant) into zero-padded lowercase hex."""
    b = np.asarray(bits, dtype=bool).ravel()
    if b.size == 0:
        raise UnsupportedInput("cannot encode an empty bit vector")
    value = 0
    for bit in b:
        value = (value << 1) | int(bit)
    width = (b.size + 3) // 4
    return f"{value:0{width}x}"


def hex_to_int(hex_str: str) -> int:
    """Parse a canonical hash string; no sign, no ``0x`` prefix."""
    text = hex_str.strip().lower()
    if not text or any(ch not in "0123456789abcdef" for ch in text):
        raise UnsupportedInput(f"not a hex hash string: {hex_str!r}")
    return int(text, 16)


def hex_to_bits(hex_str: str, n_bits: Optional[int] = None) -> np.ndarray:
    """Inverse of :func:`bits_to_hex`.

    *n_bits* defaults to four bits per hex digit.
    """
    value = hex_to_int(hex_str)
    if n_bits is None:
        n_bits = len(hex_str.strip()) * 4
    if value.bit_length() > n_bits:
        raise UnsupportedInput(f"{hex_str!r} does not fit in {n_bits} bits")
    return np.array(
        [(value >> (n_bits - 1 - i)) & 1 for i in range(n_bits)], dtype=bool
    )


# ---------------------------------------------------------------------------
# Algorithms
# ---------------------------------------------------------------------------

def _check(buffer: PixelBuffer, hash_size: int, max_size: Optional[int] = None) -> None:
    buffer.require_area()
    if not is_power_of_two(hash_size) or hash_size < 2:
        raise UnsupportedInput(f"hash_size must be a power of two >= 2, got {hash_size}")
    if max_size is not None and hash_size > max_size:
        raise UnsupportedInput(f"hash_size {hash_size} exceeds the {max_size}x{max_size} working size")


def average_hash(buffer: PixelBuffer, hash_size: int = 8) -> str:
    _check(buffer, hash_size)
    px = grayscale_resized(buffer, hash_size, hash_size).astype(np.float64).ravel()
    return bits_to_hex(px > px.mean())


def difference_hash(buffer: PixelBuffer, hash_size: int = 8) -> str:
    _check(buffer, hash_size)
    px = grayscale_resized(buffer, hash_size + 1, hash_size).astype(np.int16)
    return bits_to_hex((px[:, :-1] > px[:, 1:]).ravel())


def perceptual_hash(buffer: PixelBuffer, hash_size: int = 8) -> str:
    _check(buffer, hash_size, DCT_SIZE)
    px = grayscale_resized(buffer, DCT_SIZE, DCT_SIZE)
    coeffs = dct_2d(px)[:hash_size, :hash_size].ravel()
    mean = coeffs[1:].mean()
    bits = coeffs > mean
    bits[0] = False
    return bits_to_hex(bits)


def wavelet_hash(buffer: PixelBuffer, hash_size: int = 8) -> str:
    _check(buffer, hash_size, WAVELET_SIZE)
    px = grayscale_resized(buffer, WAVELET_SIZE, WAVELET_SIZE).astype(np.float64) / 255.0
    coeffs = haar_2d(px)[:hash_size, :hash_size].ravel()
    median = np.sort(coeffs)[coeffs.size // 2]
    return bits_to_hex(coeffs > median)


ALGORITHMS: Dict[str, Callable[[PixelBuffer, int], str]] = {
    "aHash": average_hash,
    "pHash": perceptual_hash,
    "dHash": difference_hash,
    "wHash": wavelet_hash,
}


# ---------------------------------------------------------------------------
# Result type and orchestration
# ---------------------------------------------------------------------------

@dataclass
class ImageHash:
    """Hash set for one image; a ``None`` field means that algorithm failed."""
    a_hash: Optional[str] = None
    p_hash: Optional[str] = None
    d_hash: Optional[str] = None
    w_hash: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)

    _FIELDS = {"aHash": "a_hash", "pHash": "p_hash", "dHash": "d_hash", "wHash": "w_hash"}

    def get(self, algorithm: str) -> Optional[str]:
        return getattr(self, self._FIELDS[algorithm])

    def set(self, algorithm: str, value: Optional[str]) -> None:
        setattr(self, self._FIELDS[algorithm], value)

    def present(self) -> Dict[str, str]:
        return {k: self.get(k) for k in ALGORITHMS if self.get(k) is not None}

    def to_dict(self) -> Dict[str, str]:
        return self.present()


def compute_hashes(
    buffer: PixelBuffer,
    hash_size: int = 8,
    algorithms: Sequence[str] = tuple(ALGORITHMS),
    max_workers: int = 1,
) -> ImageHash:
    """Compute the requested hashes for *buffer*.

    The algorithms are independent and run in a thread pool when
    ``max_workers > 1``.  A failing algorithm is logged and left out of
    the result; if every requested algorithm fails the first error is
    re-raised.
    """
    unknown = [a for a in algorithms if a not in ALGORITHMS]
    if unknown:
        raise ValueError(f"Unknown hash algorithms: {unknown}")

    result = ImageHash()
    failures: List[Exception] = []

    def _record(name: str, fn: Callable[[], str]) -> None:
        try:
            result.set(name, fn())
        except Exception as exc:
            logger.warning("%s failed: %s: %s", name, type(exc).__name__, exc)
            result.errors[name] = f"{type(exc).__name__}: {exc}"
            failures.append(exc)

    if max_workers > 1 and len(algorithms) > 1:
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                name: executor.submit(ALGORITHMS[name], buffer, hash_size)
                for name in algorithms
            }
            for name, future in futures.items():
                _record(name, future.result)
    else:
        for name in algorithms:
            _record(name, lambda fn=ALGORITHMS[name]: fn(buffer, hash_size))

    if algorithms and len(failures) == len(algorithms):
        raise failures[0]
    logger.debug("hashes for %dx%d buffer: %s", buffer.width, buffer.height, result.present())
    return result


class HashCalculator:
    """Tool wrapper around :func:`compute_hashes` returning ``ToolResult``."""

    name = "HashCalculator"
    version = "1.0.0"

    def __init__(
        self,
        config: Optional[ForensicConfig] = None,
        algorithms: Sequence[str] = tuple(ALGORITHMS),
    ):
        self.config = config or ForensicConfig()
        self.algorithms = tuple(algorithms)

    @property
    def tool_version(self) -> str:
        return f"{self.name}/{self.version} ({library_versions()})"

    def is_available(self) -> bool:
        try:
            probe = PixelBuffer(width=2, height=2, channels=1, data=bytes([0, 64, 128, 255]))
            average_hash(probe, 2)
        except Exception:
            logger.exception("hash backend self-check failed")
            return False
        return True

    def process(self, source: ToolInput) -> ToolResult[ImageHash]:
        started = time.perf_counter()
        try:
            buffer, _ = coerce_input(source)
            buffer.validate()
            hashes = compute_hashes(
                buffer,
                hash_size=self.config.hash_size,
                algorithms=self.algorithms,
                max_workers=self.config.max_workers,
            )
        except Exception as exc:
            return ToolResult.failure(exc, started, self.tool_version)
        return ToolResult.ok(hashes, started, self.tool_version)

    def batch(self, sources: Sequence[ToolInput]) -> List[ToolResult[ImageHash]]:
        """Process every input; a failure never stops the remaining ones."""
        return [self.process(s) for s in sources]
