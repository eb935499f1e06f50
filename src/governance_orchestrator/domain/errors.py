"""Root of the orchestration core's exception hierarchy."""

from __future__ import annotations


class GovernanceError(RuntimeError):
    """Base class for errors raised by the governance planes."""


__all__ = ["GovernanceError"]
