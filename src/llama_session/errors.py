"""Exception hierarchy for llama-session.

Every error carries an :class:`ErrorKind` so a host boundary can map failures
to its own idiom (status codes, UI messages) without matching on classes.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INITIALIZATION = "initialization"
    MODEL_LOAD = "model_load"
    CONTEXT_CREATION = "context_creation"
    TOKENIZATION = "tokenization"
    DECODE = "decode"
    NOT_READY = "not_ready"
    VALIDATION = "validation"


class LlamaSessionError(Exception):
    """Base exception for llama-session errors."""

    kind: ErrorKind = ErrorKind.INITIALIZATION


class InitializationError(LlamaSessionError):
    """The inference backend could not be initialized. Not retryable."""

    kind = ErrorKind.INITIALIZATION


class ModelLoadError(LlamaSessionError):
    """Failed to load model file."""

    kind = ErrorKind.MODEL_LOAD

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        message = f"Failed to load model: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ContextCreationError(LlamaSessionError):
    """Model loaded but the inference context could not be allocated."""

    kind = ErrorKind.CONTEXT_CREATION

    def __init__(self, path: str, n_ctx: int, n_batch: int, reason: str = "") -> None:
        self.path = path
        self.n_ctx = n_ctx
        self.n_batch = n_batch
        message = f"Failed to create context for {path} (n_ctx={n_ctx}, n_batch={n_batch})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TokenizationError(LlamaSessionError):
    """Text could not be converted to token ids."""

    kind = ErrorKind.TOKENIZATION


class DecodeError(LlamaSessionError):
    """Feeding tokens through the model failed. Aborts only the current request."""

    kind = ErrorKind.DECODE

    def __init__(self, stage: str, n_tokens: int, reason: str = "") -> None:
        self.stage = stage
        self.n_tokens = n_tokens
        message = f"Decode failed during {stage} ({n_tokens} tokens)"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotReadyError(LlamaSessionError):
    """Generation was requested before the engine finished initializing."""

    kind = ErrorKind.NOT_READY


class ValidationError(LlamaSessionError):
    """Invalid input parameters."""

    kind = ErrorKind.VALIDATION
