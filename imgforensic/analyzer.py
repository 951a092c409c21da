"""
ForensicAnalyzer — orchestrates the recompression model, the quality
histogram, anomaly detection and scoring for one decoded image.

Flow
----
  1. validate buffer      — InvalidImage / UnsupportedInput end the call
  2. ela_analyze          — fixed-quality recompression score + block map
  3. quality_histogram    — 256-bin histogram of a 256x256 resample
  4. detect_anomalies     — metadata and statistics rules
  5. scoring              — low / medium / high

Steps 2 and 3 are independent and run in a thread pool when
``config.max_workers > 1``.  A failing step degrades to its conservative
default (score 0, empty block map, zero histogram, no anomalies) and is
recorded in ``ForensicResult.errors``; it never aborts the call.

Usage
-----
    from imgforensic.analyzer import ForensicAnalyzer
    analyzer = ForensicAnalyzer()
    result = analyzer.process(buffer, {"software": "GIMP 2.10"})
    print(result.data.to_dict() if result.success else result.error)
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .anomalies import detect_anomalies, quality_histogram
from .codec import JpegCodec, LossyCodec
from .config import ForensicConfig
from .ela import ELAResult, ela_analyze, ela_visualization
from .scoring import manipulation_probability
from .utils import (
    ImageMetadata,
    PixelBuffer,
    ToolInput,
    ToolResult,
    coerce_input,
    library_versions,
)

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = 256

MetadataInput = Optional[Union[ImageMetadata, Mapping[str, Any]]]


# ─────────────────────────────────────────────────────────────────────────────
# ForensicResult
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class ForensicResult:
    """Scores and indicators for a single image."""

    ela_score: float = 0.0
    manipulation_probability: str = "low"
    anomalies: List[str] = field(default_factory=list)
    quality_histogram: List[int] = field(default_factory=lambda: [0] * HISTOGRAM_BINS)

    # ── Supporting detail ───────────────────────────────────────────────────
    ela_block_map: List[float] = field(default_factory=list)
    ela_notes: List[str] = field(default_factory=list)

    # ── Degraded sub-analyses: name -> "ErrorType: message" ─────────────────
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "elaScore": round(self.ela_score, 4),
            "manipulationProbability": self.manipulation_probability,
            "anomalies": list(self.anomalies),
            "qualityHistogram": list(self.quality_histogram),
            "elaBlockMap": [round(v, 4) for v in self.ela_block_map],
            "errors": dict(self.errors),
        }


# ─────────────────────────────────────────────────────────────────────────────
# ForensicAnalyzer
# ─────────────────────────────────────────────────────────────────────────────

class ForensicAnalyzer:
    """
    Runs ELA, histogram, anomaly detection and scoring, and wraps the
    outcome in a ToolResult.

    Usage
    -----
        analyzer = ForensicAnalyzer(ForensicConfig(ela_quality=90))
        res = analyzer.process("photo.jpg")
        results = analyzer.batch([buf1, buf2])
    """

    name = "ForensicAnalyzer"
    version = "1.0.0"

    def __init__(
        self,
        config: Optional[ForensicConfig] = None,
        codec: Optional[LossyCodec] = None,
    ):
        self.config = config or ForensicConfig()
        self.codec = codec or JpegCodec()

    @property
    def tool_version(self) -> str:
        return f"{self.name}/{self.version} ({library_versions()})"

    def is_available(self) -> bool:
        try:
            probe = PixelBuffer(width=8, height=8, channels=1, data=bytes(range(0, 256, 4)))
            self.codec.decode(self.codec.encode(probe, self.config.ela_quality))
        except Exception:
            logger.exception("codec self-check failed")
            return False
        return True

    # ── Public interface ─────────────────────────────────────────────────────

    def process(
        self,
        source: ToolInput,
        metadata: MetadataInput = None,
    ) -> ToolResult[ForensicResult]:
        """Analyze one image; never raises.

        Parameters
        ----------
        source : PixelBuffer, path or bytes
            Decoded buffer, or something the Pillow adapter can decode.
        metadata : ImageMetadata or mapping, optional
            Decoder metadata.  When omitted and *source* was decoded here,
            the metadata read by the adapter is used.
        """
        started = time.perf_counter()
        try:
            buffer, decoded_meta = coerce_input(source)
            meta = (
                ImageMetadata.from_mapping(metadata)
                if metadata is not None
                else decoded_meta or ImageMetadata()
            )
            result = self.analyze(buffer, meta)
        except Exception as exc:
            logger.info("%s failed: %s: %s", self.name, type(exc).__name__, exc)
            return ToolResult.failure(exc, started, self.tool_version)
        return ToolResult.ok(result, started, self.tool_version)

    def batch(
        self,
        items: Sequence[Union[ToolInput, Tuple[ToolInput, MetadataInput]]],
    ) -> List[ToolResult[ForensicResult]]:
        """Process every item (a source, or ``(source, metadata)``).

        A failed item yields a failed ToolResult and processing continues.
        """
        results: List[ToolResult[ForensicResult]] = []
        total = len(items)
        for idx, item in enumerate(items):
            if isinstance(item, tuple):
                source, metadata = item
            else:
                source, metadata = item, None
            res = self.process(source, metadata)
            if res.success:
                logger.info(
                    "[%d/%d] ela=%.2f prob=%s anomalies=%d",
                    idx + 1, total, res.data.ela_score,
                    res.data.manipulation_probability, len(res.data.anomalies),
                )
            else:
                logger.info("[%d/%d] FAILED %s: %s", idx + 1, total, res.error_type, res.error)
            results.append(res)
        return results

    def analyze(self, buffer: PixelBuffer, metadata: Optional[ImageMetadata] = None) -> ForensicResult:
        """Run the full analysis on a validated buffer.

        Raises ``InvalidImage`` / ``UnsupportedInput`` for an unusable
        buffer; sub-analysis failures degrade instead of raising.
        """
        buffer.validate()
        cfg = self.config
        out = ForensicResult()

        tasks: Dict[str, Callable[[], Any]] = {
            "ela": lambda: ela_analyze(
                buffer,
                self.codec,
                quality=cfg.ela_quality,
                scale=cfg.ela_scale,
                block_size=cfg.ela_block_size,
            ),
            "histogram": lambda: quality_histogram(buffer, cfg.histogram_size),
        }
        values = self._run_tasks(tasks, out.errors)

        ela: Optional[ELAResult] = values.get("ela")
        if ela is not None:
            out.ela_score = ela.score
            out.ela_block_map = ela.block_map
            out.ela_notes = ela.notes
        histogram = values.get("histogram")
        if histogram is not None:
            out.quality_histogram = histogram

        # ------------------------------------------------------------------
        # Anomalies
        # ------------------------------------------------------------------
        try:
            out.anomalies = detect_anomalies(
                metadata,
                buffer,
                out.quality_histogram if histogram is not None else None,
                out.ela_block_map,
                cfg,
            )
        except Exception as exc:
            self._degrade("anomalies", exc, out.errors)
            out.anomalies = []

        out.manipulation_probability = manipulation_probability(
            out.ela_score, out.anomalies, cfg
        )
        return out

    def generate_ela_visualization(self, source: ToolInput) -> ToolResult[bytes]:
        """Amplified recompression-error image, encoded through the codec."""
        started = time.perf_counter()
        try:
            buffer, _ = coerce_input(source)
            data = ela_visualization(buffer, self.codec, quality=self.config.ela_quality)
        except Exception as exc:
            return ToolResult.failure(exc, started, self.tool_version)
        return ToolResult.ok(data, started, self.tool_version)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _run_tasks(
        self,
        tasks: Dict[str, Callable[[], Any]],
        errors: Dict[str, str],
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if self.config.max_workers > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                futures = {key: executor.submit(fn) for key, fn in tasks.items()}
                for key, future in futures.items():
                    try:
                        values[key] = future.result()
                    except Exception as exc:
                        self._degrade(key, exc, errors)
        else:
            for key, fn in tasks.items():
                try:
                    values[key] = fn()
                except Exception as exc:
                    self._degrade(key, exc, errors)
        return values

    @staticmethod
    def _degrade(stage: str, exc: Exception, errors: Dict[str, str]) -> None:
        errors[stage] = f"{type(exc).__name__}: {exc}"
        logger.warning("%s degraded to default: %s", stage, errors[stage])
