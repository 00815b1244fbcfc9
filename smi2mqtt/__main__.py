"""Allow ``python -m smi2mqtt`` to launch the bridge."""

from __future__ import annotations

import sys


def main() -> None:
    from smi2mqtt import run
    raise SystemExit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
