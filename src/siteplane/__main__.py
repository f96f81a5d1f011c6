"""Module entrypoint for ``python -m siteplane``."""

from __future__ import annotations

from siteplane.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
