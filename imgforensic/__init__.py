"""
imgforensic — perceptual hashing and manipulation scoring for decoded images.

The package works on decoded pixel buffers plus a metadata map supplied by
an external decoder (a Pillow adapter is included in ``utils``).  Each
analysis lives in its own module; ``analyzer`` ties them together.

Modules
-------
utils          PixelBuffer, ImageMetadata, ToolResult, Pillow decoder adapter
errors         InvalidImage / UnsupportedInput / CodecFailure
config         ForensicConfig thresholds + YAML loading
transforms     Grayscale, deterministic resampling, Haar wavelet, 2-D DCT
hashing        aHash / dHash / pHash / wHash and the HashCalculator tool
compare        Hamming distance and similarity between hashes
codec          Lossy codec capability and the Pillow JPEG codec
ela            Error Level Analysis: score, block map, visualization
anomalies      Quality histogram and anomaly rules
scoring        low / medium / high manipulation probability
analyzer       ForensicAnalyzer orchestration
"""

__version__ = "1.0.0"

from .errors import CodecFailure, ForensicError, InvalidImage, UnsupportedInput
from .utils import ImageMetadata, PixelBuffer, ToolResult, load_pixel_buffer
from .config import ForensicConfig, load_config
from .hashing import HashCalculator, ImageHash, compute_hashes
from .compare import are_similar, compare_hashes, hamming_distance, matches
from .codec import JpegCodec, LossyCodec
from .ela import ELAResult, ela_analyze, ela_score
from .anomalies import detect_anomalies, quality_histogram
from .scoring import manipulation_probability
from .analyzer import ForensicAnalyzer, ForensicResult

__all__ = [
    "CodecFailure", "ForensicError", "InvalidImage", "UnsupportedInput",
    "ImageMetadata", "PixelBuffer", "ToolResult", "load_pixel_buffer",
    "ForensicConfig", "load_config",
    "HashCalculator", "ImageHash", "compute_hashes",
    "are_similar", "compare_hashes", "hamming_distance", "matches",
    "JpegCodec", "LossyCodec",
    "ELAResult", "ela_analyze", "ela_score",
    "detect_anomalies", "quality_histogram",
    "manipulation_probability",
    "ForensicAnalyzer", "ForensicResult",
]
