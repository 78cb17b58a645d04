"""
Engine adapters and the shared runtime around them.

Each adapter turns one coding-agent CLI's output into Event objects and
reports a Result per invocation. The display renders those events live.
"""

from hal.engine.display import Display, HeaderContext, StoryInfo
from hal.engine.registry import EngineRegistry, available_engines, default_registry, new_engine
from hal.engine.spinner import SpinnerFSM, SpinnerState, SpinnerTransitionError
from hal.engine.types import (
    COMPLETION_MARKER,
    DEFAULT_TIMEOUT,
    Engine,
    EngineConfig,
    Event,
    EventData,
    EventType,
    OutputParser,
    Result,
    is_complete,
)

__all__ = [
    "COMPLETION_MARKER",
    "DEFAULT_TIMEOUT",
    "Display",
    "Engine",
    "EngineConfig",
    "EngineRegistry",
    "Event",
    "EventData",
    "EventType",
    "HeaderContext",
    "OutputParser",
    "Result",
    "SpinnerFSM",
    "SpinnerState",
    "SpinnerTransitionError",
    "StoryInfo",
    "available_engines",
    "default_registry",
    "is_complete",
    "new_engine",
]
