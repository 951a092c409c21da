"""Three-level manipulation probability from the ELA score and anomaly count."""

from __future__ import annotations

from typing import Optional, Sequence

from .config import ForensicConfig

LOW = "low"
MEDIUM = "medium"
HIGH = "high"
LEVELS = (LOW, MEDIUM, HIGH)


def manipulation_probability(
    ela_score: float,
    anomalies: Sequence[str],
    config: Optional[ForensicConfig] = None,
) -> str:
    """``high`` if either signal crosses its high threshold, else ``medium``
    if either crosses its medium threshold, else ``low``."""
    cfg = config or ForensicConfig()
    count = len(anomalies)

    if ela_score >= cfg.ela_high or count >= cfg.anomaly_high:
        return HIGH
    if ela_score >= cfg.ela_medium or count >= cfg.anomaly_medium:
        return MEDIUM
    return LOW
