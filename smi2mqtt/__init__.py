"""smi2mqtt: publish NVIDIA GPU metrics to an MQTT broker."""

from __future__ import annotations

from importlib import metadata
from typing import Optional, Sequence

try:
    __version__ = metadata.version("smi2mqtt")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"

from .app.master import main, run as _run


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Convenience wrapper that runs the async entry point; returns the exit status."""
    return _run(list(argv) if argv is not None else None)


__all__ = ["__version__", "main", "run"]
