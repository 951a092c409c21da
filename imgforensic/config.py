"""
Analysis configuration.

All empirical thresholds live here as named fields so they can be tuned
or overridden in tests.  Values can be loaded from YAML; the shipped
defaults are in ``configs/forensics.yaml``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml


CONFIG_PATH = Path(__file__).parent.parent / "configs" / "forensics.yaml"

# Case-insensitive substrings matched against the metadata software tag
KNOWN_EDITORS: Tuple[str, ...] = (
    "photoshop",
    "gimp",
    "lightroom",
    "affinity",
    "paint.net",
    "pixelmator",
    "photopea",
    "snapseed",
    "picsart",
    "facetune",
    "canva",
    "krita",
    "corel",
    "illustrator",
    "photoscape",
    "luminar",
    "capture one",
    "fotor",
    "inkscape",
)


@dataclass(frozen=True)
class ForensicConfig:
    """Tunable parameters for hashing, ELA, anomaly detection and scoring."""

    # Recompression model
    ela_quality: int = 85
    ela_scale: float = 10.0
    ela_block_size: int = 8

    # Hashing
    hash_size: int = 8
    similarity_threshold: int = 5

    # Anomaly detection
    histogram_size: int = 256
    spike_threshold: int = 50
    spike_bin_limit: int = 3
    ela_variance_threshold: float = 1000.0
    aspect_ratio_min: float = 0.1
    aspect_ratio_max: float = 10.0
    known_editors: Tuple[str, ...] = field(default=KNOWN_EDITORS)

    # Scoring
    ela_high: float = 50.0
    ela_medium: float = 25.0
    anomaly_high: int = 3
    anomaly_medium: int = 1

    # Execution: 1 runs sub-analyses sequentially
    max_workers: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.known_editors, tuple):
            object.__setattr__(self, "known_editors", tuple(self.known_editors))
        self.validate()

    def validate(self) -> None:
        if not 1 <= self.ela_quality <= 100:
            raise ValueError(f"ela_quality must be in [1, 100], got {self.ela_quality}")
        if self.ela_scale <= 0:
            raise ValueError(f"ela_scale must be positive, got {self.ela_scale}")
        if self.ela_block_size < 1:
            raise ValueError(f"ela_block_size must be >= 1, got {self.ela_block_size}")
        if not is_power_of_two(self.hash_size) or not 2 <= self.hash_size <= 32:
            raise ValueError(
                f"hash_size must be a power of two in [2, 32], got {self.hash_size}"
            )
        if self.histogram_size < 1:
            raise ValueError(f"histogram_size must be >= 1, got {self.histogram_size}")
        if self.ela_medium > self.ela_high:
            raise ValueError("ela_medium must not exceed ela_high")
        if self.anomaly_medium > self.anomaly_high:
            raise ValueError("anomaly_medium must not exceed anomaly_high")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    def with_overrides(self, **overrides: Any) -> "ForensicConfig":
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["known_editors"] = list(self.known_editors)
        return d

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ForensicConfig":
        """Build a config from a mapping; unknown keys are rejected."""
        if not data:
            return cls()
        names = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - names)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)


def is_power_of_two(n: int) -> bool:
    return isinstance(n, int) and n > 0 and (n & (n - 1)) == 0


def load_config(config_path: Union[str, Path] = CONFIG_PATH) -> ForensicConfig:
    """Load a ForensicConfig from YAML.

    The file may hold the fields at top level or under a ``forensics:``
    section.  A missing file yields the built-in defaults.
    """
    path = Path(config_path)
    if not path.exists():
        return ForensicConfig()
    with open(path, encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(cfg).__name__}")
    section = cfg.get("forensics", cfg)
    return ForensicConfig.from_dict(section)
