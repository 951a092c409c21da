"""Tests for the quality histogram and the anomaly rules."""

import numpy as np
import pytest

from imgforensic.anomalies import (
    MSG_ASPECT,
    MSG_EDITOR,
    MSG_ELA_VARIANCE,
    MSG_GRAYSCALE,
    MSG_ORIENTATION,
    MSG_SPIKES,
    MSG_TIMESTAMP,
    count_spikes,
    detect_anomalies,
    quality_histogram,
)
from imgforensic.config import ForensicConfig
from imgforensic.errors import InvalidImage
from imgforensic.utils import ImageMetadata, PixelBuffer


def _buf(w: int = 100, h: int = 100, channels: int = 3, value: int = 128) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((h, w, channels), value, dtype=np.uint8))


def _flat_histogram() -> list:
    return [256] * 256


# ── Histogram ─────────────────────────────────────────────────────────

def test_histogram_has_256_bins_summing_to_resample_area():
    hist = quality_histogram(_buf(37, 53))
    assert len(hist) == 256
    assert sum(hist) == 256 * 256


def test_histogram_of_solid_image_is_a_single_bin():
    hist = quality_histogram(_buf(value=128))
    assert hist[128] == 65536


def test_histogram_uses_floor_of_channel_mean():
    arr = np.zeros((10, 10, 3), dtype=np.uint8)
    arr[..., 0], arr[..., 1], arr[..., 2] = 10, 11, 13  # mean 11.33
    hist = quality_histogram(PixelBuffer.from_array(arr))
    assert hist[11] == 65536


def test_histogram_of_split_image_concentrates_at_extremes():
    arr = np.zeros((100, 100, 3), dtype=np.uint8)
    arr[:, 50:] = 255
    hist = quality_histogram(PixelBuffer.from_array(arr))
    assert hist[0] + hist[255] >= 0.95 * 65536


def test_histogram_of_gray_buffer():
    hist = quality_histogram(_buf(channels=1, value=42))
    assert hist[42] == 65536


def test_histogram_rejects_zero_area():
    with pytest.raises(InvalidImage):
        quality_histogram(PixelBuffer(width=0, height=0, channels=3, data=b""))


def test_count_spikes_is_strict():
    assert count_spikes([50, 51, 0, 100], 50) == 2


# ── Rules ─────────────────────────────────────────────────────────────

def test_clean_image_has_no_anomalies():
    assert detect_anomalies(ImageMetadata(), _buf(), [0] * 256, [1.0] * 4) == []


def test_missing_metadata_is_treated_as_empty():
    assert detect_anomalies(None, _buf(), None, None) == []


@pytest.mark.parametrize("software", ["Adobe Photoshop CC 2019", "GIMP 2.10.30", "Canva"])
def test_editing_software_detected(software):
    out = detect_anomalies(ImageMetadata(software=software), _buf(), None, None)
    assert out == [MSG_EDITOR.format(software=software)]


def test_camera_firmware_is_not_an_editor():
    assert detect_anomalies(ImageMetadata(software="Ver.1.01"), _buf(), None, None) == []


@pytest.mark.parametrize("w,h", [(1100, 100), (100, 1100), (1000, 100), (10, 100)])
def test_extreme_aspect_ratio(w, h):
    out = detect_anomalies(None, PixelBuffer(width=w, height=h, channels=1, data=b""), None, None)
    assert out == [MSG_ASPECT]


def test_moderate_aspect_ratio_is_fine():
    out = detect_anomalies(None, PixelBuffer(width=999, height=100, channels=1, data=b""), None, None)
    assert out == []


def test_grayscale_tag_on_colour_buffer():
    out = detect_anomalies(ImageMetadata(color_space="b-w"), _buf(channels=3), None, None)
    assert out == [MSG_GRAYSCALE]


def test_grayscale_tag_on_gray_buffer_is_consistent():
    assert detect_anomalies(ImageMetadata(color_space="b-w"), _buf(channels=1), None, None) == []


def test_histogram_spike_rule_needs_more_than_three():
    hist = [0] * 256
    for i in range(3):
        hist[i * 10] = 1000
    assert detect_anomalies(None, _buf(), hist, None) == []
    hist[200] = 1000
    assert detect_anomalies(None, _buf(), hist, None) == [MSG_SPIKES]


def test_high_block_map_variance():
    ela_map = [0.0] * 108 + [200.0] * 36
    assert detect_anomalies(None, _buf(), None, ela_map) == [MSG_ELA_VARIANCE]


def test_low_block_map_variance():
    assert detect_anomalies(None, _buf(), None, [5.0, 6.0, 7.0]) == []


def test_orientation_tag():
    assert detect_anomalies(ImageMetadata(orientation=6), _buf(), None, None) == [MSG_ORIENTATION]
    assert detect_anomalies(ImageMetadata(orientation=1), _buf(), None, None) == []


def test_modified_before_original():
    meta = ImageMetadata(
        date_time_original="2023:05:01 12:00:00",
        date_time_modified="2021:01:01 08:30:00",
    )
    assert detect_anomalies(meta, _buf(), None, None) == [MSG_TIMESTAMP]


def test_modified_after_original_is_fine():
    meta = ImageMetadata(
        date_time_original="2021-01-01T08:30:00",
        date_time_modified="2023:05:01 12:00:00",
    )
    assert detect_anomalies(meta, _buf(), None, None) == []


def test_rules_report_in_fixed_order():
    meta = ImageMetadata(software="Photoshop", color_space="b-w", orientation=3)
    hist = [1000] * 256
    ela_map = [0.0] * 108 + [200.0] * 36
    out = detect_anomalies(meta, _buf(2000, 100), hist, ela_map)
    assert out == [
        MSG_EDITOR.format(software="Photoshop"),
        MSG_ASPECT,
        MSG_GRAYSCALE,
        MSG_SPIKES,
        MSG_ELA_VARIANCE,
        MSG_ORIENTATION,
    ]


def test_thresholds_come_from_config():
    cfg = ForensicConfig(spike_threshold=2000, ela_variance_threshold=1e9)
    out = detect_anomalies(None, _buf(), [1000] * 256, [0.0, 500.0], cfg)
    assert out == []


def test_editor_list_is_configurable():
    cfg = ForensicConfig(known_editors=("darktable",))
    meta = ImageMetadata(software="darktable 4.2")
    assert detect_anomalies(meta, _buf(), None, None, cfg) == [MSG_EDITOR.format(software="darktable 4.2")]
    assert detect_anomalies(ImageMetadata(software="GIMP"), _buf(), None, None, cfg) == []


def test_bad_orientation_keeps_other_rules():
    meta = ImageMetadata(software="Adobe Photoshop", orientation="sideways")
    assert detect_anomalies(meta, _buf(), None, None) == [MSG_EDITOR.format(software="Adobe Photoshop")]


def test_numeric_string_orientation_is_read():
    meta = ImageMetadata(software="Adobe Photoshop", orientation="6")
    assert detect_anomalies(meta, _buf(), None, None) == [
        MSG_EDITOR.format(software="Adobe Photoshop"),
        MSG_ORIENTATION,
    ]


def test_non_string_tags_are_tolerated():
    meta = ImageMetadata(software=b"GIMP 2.10", color_space=3, orientation=[1])
    assert detect_anomalies(meta, _buf(), None, None) == [MSG_EDITOR.format(software="GIMP 2.10")]
