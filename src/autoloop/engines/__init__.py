"""CLI agent engine adapters."""

from autoloop.engines.base import AIEngine, BaseEngine
from autoloop.engines.models import (
    AIResult,
    EngineErrorKind,
    EngineOptions,
    ProgressCallback,
)
from autoloop.engines.registry import SUPPORTED_ENGINES, create_engine

__all__ = [
    "SUPPORTED_ENGINES",
    "AIEngine",
    "AIResult",
    "BaseEngine",
    "EngineErrorKind",
    "EngineOptions",
    "ProgressCallback",
    "create_engine",
]
