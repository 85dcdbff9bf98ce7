"""The single mutable decode context bound to a loaded model."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Sequence
from typing import Any

from .backend import Backend
from .errors import ContextCreationError, DecodeError, LlamaSessionError
from .model import Model

logger = logging.getLogger(__name__)


class InferenceSession:
    """Exclusive owner of one engine context.

    **NOT THREAD-SAFE by itself** - callers must hold :attr:`lock` for the
    whole of a request. :class:`llama_session.engine.EngineSession` does this,
    so concurrent requests queue rather than interleave.

    Attributes:
        model: The model this context is bound to.
        n_ctx: Maximum number of positions the context can hold.
        n_batch: Maximum number of tokens per decode call.
        n_past: Positions currently filled.
        lock: The mutual-exclusion guard for this context.
    """

    def __init__(
        self,
        backend: Backend,
        model: Model,
        ctx: Any,
        n_ctx: int,
        n_batch: int,
        lock: threading.Lock | None = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.ctx = ctx
        self.n_ctx = n_ctx
        self.n_batch = n_batch
        self.n_past = 0
        self.lock = lock if lock is not None else threading.Lock()

    @property
    def closed(self) -> bool:
        return self.ctx is None

    @property
    def n_remaining(self) -> int:
        return self.n_ctx - self.n_past

    def _check_closed(self) -> None:
        if self.ctx is None:
            raise LlamaSessionError("Inference session has been closed")

    def clear(self) -> None:
        """Clear the context memory so the next request starts fresh."""
        self._check_closed()
        self.backend.clear_memory(self.ctx)
        self.n_past = 0

    def decode(self, tokens: Sequence[int], *, stage: str = "decode") -> None:
        """Feed ``tokens`` as one batch and advance :attr:`n_past`.

        Raises:
            DecodeError: If the batch is empty, exceeds ``n_batch`` or the
                remaining context, or the engine reports a failure.
        """
        self._check_closed()
        n_tokens = len(tokens)
        if n_tokens == 0:
            raise DecodeError(stage, 0, "empty batch")
        if n_tokens > self.n_batch:
            raise DecodeError(stage, n_tokens, f"batch exceeds n_batch={self.n_batch}")
        if n_tokens > self.n_remaining:
            raise DecodeError(
                stage,
                n_tokens,
                f"context full ({self.n_past}/{self.n_ctx} positions used)",
            )
        status = self.backend.decode(self.ctx, tokens)
        if status != 0:
            raise DecodeError(stage, n_tokens, f"engine returned {status}")
        self.n_past += n_tokens

    def close(self) -> None:
        """Release the context. Idempotent."""
        if self.ctx is None:
            return
        ctx, self.ctx = self.ctx, None
        self.backend.free_context(ctx)
        logger.debug(f"Context released for {self.model.path}")


def create_session(
    backend: Backend,
    model: Model,
    n_ctx: int,
    n_batch: int,
    n_threads: int | None = None,
    *,
    lock: threading.Lock | None = None,
) -> InferenceSession:
    """Allocate the decode context for ``model``.

    ``lock`` lets the owner share its own guard with the session.

    Raises:
        ContextCreationError: If the engine cannot allocate the context.
            Distinct from :class:`ModelLoadError`, the model itself loaded.
    """
    threads = int(n_threads or os.cpu_count() or 1)
    try:
        ctx = backend.create_context(model.handle, n_ctx, n_batch, threads)
    except (RuntimeError, MemoryError) as e:
        logger.error(f"Failed to create context (n_ctx={n_ctx}, n_batch={n_batch}): {e}")
        raise ContextCreationError(model.path, n_ctx, n_batch, str(e)) from e
    if not ctx:
        logger.error(f"Failed to create context (n_ctx={n_ctx}, n_batch={n_batch})")
        raise ContextCreationError(model.path, n_ctx, n_batch)
    logger.info(f"Context created: n_ctx={n_ctx}, n_batch={n_batch}, threads={threads}")
    return InferenceSession(backend, model, ctx, n_ctx, n_batch, lock)
