"""
Error taxonomy shared by every analysis module.

Internal functions raise these; the public tool entry points
(``HashCalculator.process``, ``ForensicAnalyzer.process`` and friends)
catch them and return a failed ``ToolResult`` instead.
"""

from __future__ import annotations


class ForensicError(Exception):
    """Base class for all image-forensics errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class InvalidImage(ForensicError, ValueError):
    """Zero or unknown dimensions, or an undecodable buffer."""


class UnsupportedInput(ForensicError, ValueError):
    """Buffer too small or inconsistent for the requested transform."""


class CodecFailure(ForensicError, RuntimeError):
    """The external lossy recompression step failed."""
