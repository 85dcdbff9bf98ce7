"""Model loading."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any

from .backend import Backend
from .errors import ModelLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Model:
    """Loaded weights and vocabulary. Read-only once created.

    Attributes:
        path: File the weights were loaded from.
        handle: Engine model handle.
        vocab: Engine vocabulary handle.
    """

    path: str
    handle: Any = field(repr=False, compare=False)
    vocab: Any = field(repr=False, compare=False)


def load_model(backend: Backend, path: str, *, n_gpu_layers: int = 0) -> Model:
    """Load the model file at ``path``.

    Raises:
        ModelLoadError: If the file is missing or unreadable, or the engine
            rejects it (unsupported format, out of memory).
    """
    if not os.path.isfile(path):
        logger.error(f"Model file not found: {path}")
        raise ModelLoadError(path, "file not found")
    if not os.access(path, os.R_OK):
        logger.error(f"Model file not readable: {path}")
        raise ModelLoadError(path, "file not readable")

    logger.info(f"Loading model: {path}")
    start = time.perf_counter()
    try:
        handle = backend.load_model(path, n_gpu_layers)
    except (RuntimeError, OSError, MemoryError) as e:
        logger.error(f"Failed to load model {path}: {e}")
        raise ModelLoadError(path, str(e)) from e
    if not handle:
        logger.error(f"Failed to load model {path}")
        raise ModelLoadError(path, "unsupported format or insufficient memory")

    model = Model(path=path, handle=handle, vocab=backend.get_vocab(handle))
    logger.info(f"Model loaded in {time.perf_counter() - start:.2f}s: {path}")
    return model


def free_model(backend: Backend, model: Model) -> None:
    backend.free_model(model.handle)
    logger.debug(f"Model released: {model.path}")
