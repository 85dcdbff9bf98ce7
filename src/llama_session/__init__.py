"""llama_session package initializer.

Single-model streaming text generation on llama.cpp: one loaded model, one
reusable context, requests served one at a time with output delivered
fragment by fragment. The llama.cpp binding (``llama_session.llama_backend``)
is imported on first initialization, not here.
"""

from __future__ import annotations

from ._about import __version__
from .backend import Backend
from .config import EngineConfig, PieceOverflowPolicy
from .engine import (
    NOT_READY_FRAGMENT,
    EngineSession,
    EngineState,
    initialize_engine,
)
from .errors import (
    ContextCreationError,
    DecodeError,
    ErrorKind,
    InitializationError,
    LlamaSessionError,
    ModelLoadError,
    NotReadyError,
    TokenizationError,
    ValidationError,
)
from .generation import GenerationResult, StopReason
from .lifecycle import BackendLifecycle, shutdown
from .log import disable_logging, reset_logging, set_log_level
from .prompt import PromptTemplate, translation_template
from .sink import CallbackTarget

__all__ = [
    "EngineSession",
    "EngineState",
    "EngineConfig",
    "PieceOverflowPolicy",
    "PromptTemplate",
    "translation_template",
    "CallbackTarget",
    "GenerationResult",
    "StopReason",
    "NOT_READY_FRAGMENT",
    "initialize_engine",
    "Backend",
    "BackendLifecycle",
    "set_log_level",
    "disable_logging",
    "reset_logging",
    "LlamaSessionError",
    "ErrorKind",
    "InitializationError",
    "ModelLoadError",
    "ContextCreationError",
    "TokenizationError",
    "DecodeError",
    "NotReadyError",
    "ValidationError",
    "shutdown",
    "__version__",
]
