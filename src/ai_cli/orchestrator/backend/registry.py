"""Immutable mapping from backend identifiers to adapters."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType

from ai_cli.orchestrator.backend.base import AdapterId, BackendAdapter
from ai_cli.orchestrator.backend.claude import ClaudeAdapter
from ai_cli.orchestrator.backend.codex import CodexAdapter
from ai_cli.orchestrator.backend.copilot import CopilotAdapter


class BackendRegistry:
    """Read-only lookup built once per process."""

    def __init__(self, adapters: Iterable[BackendAdapter]) -> None:
        by_id: dict[AdapterId, BackendAdapter] = {}
        for adapter in adapters:
            if adapter.id in by_id:
                raise ValueError(f"Duplicate backend adapter: {adapter.id.value}")
            by_id[adapter.id] = adapter
        self._adapters = MappingProxyType(by_id)

    def resolve(self, backend_id: str) -> BackendAdapter | None:
        """Return the adapter for ``backend_id`` or ``None``; never raises."""

        try:
            key = AdapterId(backend_id)
        except ValueError:
            return None
        return self._adapters.get(key)

    def adapters(self) -> list[BackendAdapter]:
        order = list(AdapterId)
        return sorted(self._adapters.values(), key=lambda adapter: order.index(adapter.id))

    def ids(self) -> list[str]:
        return [adapter.id.value for adapter in self.adapters()]


def build_default_registry(
    commands: Mapping[str, Sequence[str]] | None = None,
) -> BackendRegistry:
    """Register every known backend, honoring per-backend command overrides."""

    overrides = commands or {}
    return BackendRegistry(
        [
            CopilotAdapter(overrides.get(AdapterId.COPILOT.value)),
            CodexAdapter(overrides.get(AdapterId.CODEX.value)),
            ClaudeAdapter(),
        ],
    )
