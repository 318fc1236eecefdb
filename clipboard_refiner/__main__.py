"""Module entrypoint for running Clipboard Refiner as ``python -m clipboard_refiner``."""

from __future__ import annotations

from clipboard_refiner.cli import main


if __name__ == "__main__":
    main()
