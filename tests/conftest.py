from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest_asyncio

from governance_orchestrator.control_plane.orchestrator import Orchestrator

from . import ScriptedProvider, build_orchestrator


@pytest_asyncio.fixture
async def orchestrator_factory() -> AsyncIterator[Callable[..., Orchestrator]]:
    """Build orchestrators that are stopped, queues included, at teardown."""

    built: list[Orchestrator] = []

    def factory(provider: ScriptedProvider | None = None, **kwargs: Any) -> Orchestrator:
        orchestrator = build_orchestrator(
            provider if provider is not None else ScriptedProvider(), **kwargs
        )
        built.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in built:
        await orchestrator.stop()
