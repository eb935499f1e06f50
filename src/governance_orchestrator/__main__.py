"""Module entrypoint for ``python -m governance_orchestrator``."""

from __future__ import annotations

from governance_orchestrator.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
