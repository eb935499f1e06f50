"""
governance-orchestrator — package root

File: src/governance_orchestrator/__init__.py

Purpose
- Governance-workflow orchestration core: turns detected issues into tracked,
  resumable, multi-stage decision workflows.

What should be included in this file
- Version export and a minimal public surface.
- No heavy imports at import time; planes are imported explicitly by callers.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
