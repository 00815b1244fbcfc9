"""Application entrypoints for smi2mqtt."""

from .master import main, parse_args, run, serve

__all__ = ["main", "parse_args", "run", "serve"]
