"""
Heuristic manipulation indicators from metadata and derived statistics.

Every rule is evaluated independently and in a fixed order; the output is
an ordered list of human-readable anomaly strings.

Rules
-----
1. Software tag names a known editing tool.
2. Aspect ratio (width / height) outside ``(0.1, 10)``.
3. Colour-space tag says grayscale while the buffer carries colour channels.
4. More than 3 histogram bins above the spike threshold (recompression).
5. ELA block-map variance above threshold (localized editing).
6. EXIF orientation other than "normal" (image may have been rotated).
7. Modification timestamp earlier than the original capture timestamp.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import numpy as np

from .config import ForensicConfig
from .ela import block_map_variance
from .transforms import resize_buffer
from .utils import ImageMetadata, PixelBuffer, parse_timestamp

logger = logging.getLogger(__name__)

GRAYSCALE_SPACES = ("b-w", "bw", "gray", "grey", "grayscale", "greyscale", "l")

MSG_EDITOR = "Editing software detected in metadata: {software}"
MSG_ASPECT = "Unusual aspect ratio detected"
MSG_GRAYSCALE = "Image is in grayscale but may have been color"
MSG_SPIKES = "Multiple histogram spikes detected - possible recompression"
MSG_ELA_VARIANCE = "High variance in error levels - possible localized editing"
MSG_ORIENTATION = "Image has EXIF orientation tag - may be rotated"
MSG_TIMESTAMP = "Modification timestamp precedes original capture time"


def quality_histogram(buffer: PixelBuffer, size: int = 256) -> List[int]:
    """256-bin intensity histogram of a ``size x size`` resample.

    Each pixel contributes ``floor(mean(R, G, B))``; single-channel (and
    gray+alpha) buffers contribute the gray sample.
    """
    buffer.validate()
    px = resize_buffer(buffer, size, size)
    if px.shape[2] >= 3:
        values = px[..., :3].astype(np.uint16).sum(axis=2) // 3
    else:
        values = px[..., 0]
    return [int(v) for v in np.bincount(values.ravel(), minlength=256)[:256]]


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).strip().rstrip("\x00")
    return text or None


def _as_int(value: Any) -> Optional[int]:
    """Integer tag value, or ``None`` when it is missing or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("ignoring non-integer orientation tag: %r", value)
        return None


def _editor_match(software: Optional[str], editors: Sequence[str]) -> Optional[str]:
    if not software:
        return None
    lowered = software.lower()
    for editor in editors:
        if editor.lower() in lowered:
            return editor
    return None


def count_spikes(histogram: Sequence[int], threshold: int) -> int:
    return sum(1 for v in histogram if v > threshold)


def detect_anomalies(
    metadata: Optional[ImageMetadata],
    buffer: PixelBuffer,
    histogram: Optional[Sequence[int]],
    ela_map: Optional[Sequence[float]],
    config: Optional[ForensicConfig] = None,
) -> List[str]:
    """Evaluate every rule and return the anomalies found, in rule order."""
    cfg = config or ForensicConfig()
    meta = metadata or ImageMetadata()
    anomalies: List[str] = []

    software = _as_text(meta.software)
    orientation = _as_int(meta.orientation)

    # 1. Editing software
    if _editor_match(software, cfg.known_editors):
        anomalies.append(MSG_EDITOR.format(software=software))

    # 2. Aspect ratio
    if buffer.width > 0 and buffer.height > 0:
        aspect = buffer.width / buffer.height
        if not cfg.aspect_ratio_min < aspect < cfg.aspect_ratio_max:
            anomalies.append(MSG_ASPECT)

    # 3. Grayscale tag on a colour buffer
    space = (_as_text(meta.color_space) or "").lower()
    if space in GRAYSCALE_SPACES and buffer.channels >= 3:
        anomalies.append(MSG_GRAYSCALE)

    # 4. Histogram spikes
    if histogram:
        spikes = count_spikes(histogram, cfg.spike_threshold)
        if spikes > cfg.spike_bin_limit:
            anomalies.append(MSG_SPIKES)

    # 5. ELA spatial variance
    if ela_map:
        variance = block_map_variance(list(ela_map))
        if variance > cfg.ela_variance_threshold:
            anomalies.append(MSG_ELA_VARIANCE)

    # 6. Orientation
    if orientation is not None and orientation > 1:
        anomalies.append(MSG_ORIENTATION)

    # 7. Timestamps
    original = parse_timestamp(meta.date_time_original)
    modified = parse_timestamp(meta.date_time_modified)
    if original is not None and modified is not None and modified < original:
        anomalies.append(MSG_TIMESTAMP)

    logger.debug("anomalies for %dx%d: %s", buffer.width, buffer.height, anomalies)
    return anomalies
