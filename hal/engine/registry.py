"""
Engine registry.

Maps engine names to factories. The default map is built explicitly by
default_registry(); importing an adapter module registers nothing.
"""

from __future__ import annotations

from typing import Callable, Optional

from hal.engine.amp import AmpEngine
from hal.engine.claude import ClaudeEngine
from hal.engine.codex import CodexEngine
from hal.engine.pi import PiEngine
from hal.engine.types import Engine, EngineConfig
from hal.errors import EngineNotFoundError

EngineFactory = Callable[[EngineConfig], Engine]


class EngineRegistry:
    """Name -> factory map. Names are case-insensitive."""

    def __init__(self) -> None:
        self._factories: dict[str, EngineFactory] = {}

    def register(self, name: str, factory: EngineFactory) -> None:
        self._factories[name.lower()] = factory

    def new(self, name: str, cfg: Optional[EngineConfig] = None) -> Engine:
        """
        Build an engine by name.

        Raises:
            EngineNotFoundError: If no engine is registered under name.
        """
        factory = self._factories.get(name.lower())
        if factory is None:
            raise EngineNotFoundError(name, self.available())
        return factory(cfg if cfg is not None else EngineConfig())

    def available(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._factories


def default_registry() -> EngineRegistry:
    """Registry holding every built-in engine."""
    registry = EngineRegistry()
    registry.register("claude", ClaudeEngine)
    registry.register("codex", CodexEngine)
    registry.register("pi", PiEngine)
    registry.register("amp", AmpEngine)
    return registry


_default: Optional[EngineRegistry] = None


def _registry() -> EngineRegistry:
    global _default
    if _default is None:
        _default = default_registry()
    return _default


def new_engine(name: str, cfg: Optional[EngineConfig] = None) -> Engine:
    """Build a built-in engine by name."""
    return _registry().new(name, cfg)


def available_engines() -> list[str]:
    """Names of the built-in engines, sorted."""
    return _registry().available()
