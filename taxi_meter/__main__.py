"""Module entry point: python -m taxi_meter ..."""

from __future__ import annotations

from taxi_meter.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
