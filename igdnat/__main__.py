"""Entry point for ``python -m igdnat``."""

from __future__ import annotations

from igdnat.cli.main import main

if __name__ == "__main__":
    main()
