"""End-to-end tests for ForensicAnalyzer."""

import io

import numpy as np
import pytest
from PIL import Image

from imgforensic.analyzer import ForensicAnalyzer, ForensicResult
from imgforensic.anomalies import MSG_EDITOR, MSG_ELA_VARIANCE, MSG_ORIENTATION
from imgforensic.config import ForensicConfig
from imgforensic.utils import ImageMetadata, PixelBuffer


class _PatchCodec:
    """Raw codec that brightens the top-left 48x48 region on the way back."""

    name = "patch"

    def encode(self, buffer, quality):
        arr = buffer.as_array().astype(np.int16)
        arr[:48, :48] += 200
        arr = np.clip(arr, 0, 255).astype(np.uint8)
        h, w, c = arr.shape
        return f"{w},{h},{c};".encode() + arr.tobytes()

    def decode(self, data):
        header, _, raw = data.partition(b";")
        w, h, c = (int(v) for v in header.decode().split(","))
        return PixelBuffer(width=w, height=h, channels=c, data=raw)


class _FailingCodec:
    name = "broken"

    def encode(self, buffer, quality):
        raise RuntimeError("no encoder")

    def decode(self, data):
        raise RuntimeError("no decoder")


def _solid(w: int = 100, h: int = 100, value: int = 128, channels: int = 3) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((h, w, channels), value, dtype=np.uint8))


def test_clean_solid_image():
    result = ForensicAnalyzer().process(_solid())
    assert result.success
    data = result.data
    assert data.ela_score < 5.0
    assert data.manipulation_probability == "low"
    assert data.anomalies == []
    assert len(data.quality_histogram) == 256
    assert data.quality_histogram[128] == 65536
    assert data.errors == {}


def test_editor_metadata_raises_probability():
    result = ForensicAnalyzer().process(_solid(), {"software": "Adobe Photoshop 2023"})
    assert result.data.anomalies == [MSG_EDITOR.format(software="Adobe Photoshop 2023")]
    assert result.data.manipulation_probability == "medium"


def test_three_anomalies_is_high():
    meta = ImageMetadata(software="GIMP", orientation=8)
    result = ForensicAnalyzer(codec=_PatchCodec()).process(_solid(value=20), meta)
    assert result.data.anomalies == [
        MSG_EDITOR.format(software="GIMP"),
        MSG_ELA_VARIANCE,
        MSG_ORIENTATION,
    ]
    assert result.data.manipulation_probability == "high"


def test_codec_failure_degrades_to_zero_score():
    result = ForensicAnalyzer(codec=_FailingCodec()).process(_solid())
    assert result.success
    assert result.data.ela_score == 0.0
    assert result.data.ela_block_map == []
    assert "ela" in result.data.errors
    assert result.data.quality_histogram[128] == 65536
    assert result.data.manipulation_probability == "low"


def test_invalid_buffer_fails_the_call():
    result = ForensicAnalyzer().process(PixelBuffer(width=0, height=0, channels=3, data=b""))
    assert result.success is False
    assert result.error_type == "InvalidImage"


def test_inconsistent_buffer_fails_the_call():
    result = ForensicAnalyzer().process(PixelBuffer(width=4, height=4, channels=3, data=bytes(7)))
    assert result.success is False
    assert result.error_type == "UnsupportedInput"


def test_concurrent_matches_sequential():
    rng = np.random.default_rng(8)
    buf = PixelBuffer.from_array(rng.integers(0, 256, (64, 96, 3), dtype=np.uint8))
    seq = ForensicAnalyzer(ForensicConfig(max_workers=1)).process(buf).data
    par = ForensicAnalyzer(ForensicConfig(max_workers=4)).process(buf).data
    assert seq.to_dict() == par.to_dict()


def test_decoded_metadata_used_when_none_given(tmp_path):
    exif = Image.Exif()
    exif[305] = "GIMP 2.10"
    path = tmp_path / "edited.jpg"
    Image.new("RGB", (64, 64), (128, 128, 128)).save(path, format="JPEG", quality=95, exif=exif)
    result = ForensicAnalyzer().process(path)
    assert result.success
    assert MSG_EDITOR.format(software="GIMP 2.10") in result.data.anomalies


def test_explicit_metadata_overrides_decoded(tmp_path):
    exif = Image.Exif()
    exif[305] = "GIMP 2.10"
    path = tmp_path / "edited.jpg"
    Image.new("RGB", (64, 64), (128, 128, 128)).save(path, format="JPEG", quality=95, exif=exif)
    result = ForensicAnalyzer().process(path, {})
    assert result.data.anomalies == []


def test_batch_continues_after_failure():
    items = [
        _solid(),
        PixelBuffer(width=0, height=0, channels=3, data=b""),
        (_solid(), {"software": "Snapseed"}),
    ]
    results = ForensicAnalyzer().batch(items)
    assert [r.success for r in results] == [True, False, True]
    assert results[2].data.manipulation_probability == "medium"


def test_result_dict_keys():
    out = ForensicAnalyzer().process(_solid(16, 16)).to_dict()
    assert out["success"] is True
    assert set(out["data"]) == {
        "elaScore", "manipulationProbability", "anomalies",
        "qualityHistogram", "elaBlockMap", "errors",
    }
    assert out["metadata"]["tool_version"].startswith("ForensicAnalyzer/1.0.0")


def test_default_result_is_conservative():
    empty = ForensicResult()
    assert empty.ela_score == 0.0
    assert empty.manipulation_probability == "low"
    assert empty.quality_histogram == [0] * 256


def test_visualization():
    rng = np.random.default_rng(1)
    buf = PixelBuffer.from_array(rng.integers(0, 256, (24, 40, 3), dtype=np.uint8))
    res = ForensicAnalyzer().generate_ela_visualization(buf)
    assert res.success
    assert Image.open(io.BytesIO(res.data)).size == (40, 24)


def test_visualization_failure_is_reported():
    res = ForensicAnalyzer(codec=_FailingCodec()).generate_ela_visualization(_solid())
    assert res.success is False
    assert res.error_type == "CodecFailure"


def test_is_available():
    assert ForensicAnalyzer().is_available() is True
    assert ForensicAnalyzer(codec=_FailingCodec()).is_available() is False


@pytest.mark.parametrize("channels", [1, 2, 4])
def test_non_rgb_layouts_analyze(channels):
    result = ForensicAnalyzer().process(_solid(32, 32, 90, channels=channels))
    assert result.success
    assert result.data.errors == {}
    assert result.data.ela_score < 5.0


def test_aspect_ratio_end_to_end():
    wide = ForensicAnalyzer().process(_solid(1000, 10)).data
    assert wide.anomalies == ["Unusual aspect ratio detected"]
    assert wide.manipulation_probability == "medium"
    square = ForensicAnalyzer().process(_solid(100, 100)).data
    assert "Unusual aspect ratio detected" not in square.anomalies


def test_black_white_split_histogram():
    arr = np.zeros((100, 100, 3), dtype=np.uint8)
    arr[:, 50:] = 255
    hist = ForensicAnalyzer().process(PixelBuffer.from_array(arr)).data.quality_histogram
    assert hist[0] + hist[255] >= 0.95 * 65536


def test_mistyped_orientation_does_not_hide_editor():
    meta = ImageMetadata(software="Adobe Photoshop", orientation="rotated")
    data = ForensicAnalyzer().process(_solid(), meta).data
    assert data.anomalies == [MSG_EDITOR.format(software="Adobe Photoshop")]
    assert data.manipulation_probability == "medium"
    assert "anomalies" not in data.errors
