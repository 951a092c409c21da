"""Hamming comparison of perceptual hash strings."""

from __future__ import annotations

from typing import Dict, Optional, Union

from .config import ForensicConfig
from .errors import UnsupportedInput
from .hashing import ImageHash, hex_to_int

DEFAULT_THRESHOLD = 5


def hamming_distance(hash1: str, hash2: str) -> int:
    """Number of differing bits between two equal-length hex hashes.

    Raises
    ------
    UnsupportedInput
        When the hashes differ in bit length or are not hex strings.
    """
    len1, len2 = len(hash1.strip()), len(hash2.strip())
    if len1 != len2:
        raise UnsupportedInput(
            f"hash bit lengths differ: {len1 * 4} vs {len2 * 4}"
        )
    return bin(hex_to_int(hash1) ^ hex_to_int(hash2)).count("1")


def are_similar(hash1: str, hash2: str, threshold: int = DEFAULT_THRESHOLD) -> bool:
    return hamming_distance(hash1, hash2) <= threshold


def compare_hashes(
    first: Union[ImageHash, Dict[str, str]],
    second: Union[ImageHash, Dict[str, str]],
) -> Dict[str, int]:
    """Per-algorithm distances for the algorithms present in both hash sets."""
    a = first.present() if isinstance(first, ImageHash) else dict(first)
    b = second.present() if isinstance(second, ImageHash) else dict(second)
    return {
        name: hamming_distance(a[name], b[name])
        for name in a
        if b.get(name) is not None and a[name] is not None
    }


def matches(
    first: Union[ImageHash, Dict[str, str]],
    second: Union[ImageHash, Dict[str, str]],
    config: Optional[ForensicConfig] = None,
) -> Dict[str, bool]:
    """Per-algorithm similarity verdicts at ``config.similarity_threshold``."""
    threshold = (config or ForensicConfig()).similarity_threshold
    return {
        name: distance <= threshold
        for name, distance in compare_hashes(first, second).items()
    }
