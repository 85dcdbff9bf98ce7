"""Process-wide backend initialization and cleanup at exit."""

from __future__ import annotations

import atexit
import contextlib
import gc
import logging
import threading
import weakref
from typing import Any

from .backend import Backend
from .errors import InitializationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Instance tracking for cleanup at exit
# ---------------------------------------------------------------------------
_instances: set[weakref.ref[Any]] = set()
_active_lifecycles: weakref.WeakSet[BackendLifecycle] = weakref.WeakSet()
_cleanup_registered = False
_cleanup_lock = threading.Lock()

_default_lifecycle: BackendLifecycle | None = None


def _register_cleanup(lifecycle: BackendLifecycle) -> None:
    """Register cleanup handlers only after a backend is successfully initialized."""
    global _cleanup_registered
    with _cleanup_lock:
        _active_lifecycles.add(lifecycle)
        if _cleanup_registered:
            return
        atexit.register(_cleanup_all)
        _cleanup_registered = True


def track_instance(instance: Any) -> weakref.ref[Any]:
    """Track ``instance`` so it is closed before the backend is freed at exit."""
    ref = weakref.ref(instance, lambda r: _instances.discard(r))
    _instances.add(ref)
    return ref


def untrack_instance(ref: weakref.ref[Any]) -> None:
    _instances.discard(ref)


def _cleanup_all() -> None:
    """Close all live sessions, then free every initialized backend."""
    for ref in list(_instances):
        instance = ref()
        if instance is not None:
            with contextlib.suppress(Exception):
                instance.close()
    _instances.clear()
    gc.collect()
    with _cleanup_lock:
        lifecycles = list(_active_lifecycles)
        _active_lifecycles.clear()
    for lifecycle in lifecycles:
        lifecycle.shutdown()


def shutdown() -> None:
    """Explicitly close all sessions and free backend resources.

    Safe to call more than once. Call it at the end of a program to release
    native memory before interpreter shutdown starts tearing modules down.

    Example:
        from llama_session import initialize_engine, shutdown

        def main():
            engine = initialize_engine("models", "Llama-3.2-1B-Instruct-Q4_K_M.gguf")
            print(engine.generate_text("Good morning"))
            shutdown()
    """
    _cleanup_all()


class BackendLifecycle:
    """One-time initialization guard around a :class:`Backend`.

    ``initialize()`` runs the backend's init at most once; concurrent first
    calls are serialized and later calls return immediately.
    """

    def __init__(self, backend: Backend) -> None:
        self.backend = backend
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            logger.info("Initializing inference backend...")
            try:
                self.backend.init()
            except Exception as e:
                logger.error(f"Backend initialization failed: {e}")
                raise InitializationError(
                    f"Failed to initialize inference backend: {e}"
                ) from e
            self._initialized = True
        _register_cleanup(self)

    def shutdown(self) -> None:
        """Free the backend if it was initialized. Idempotent."""
        with self._lock:
            if not self._initialized:
                return
            self._initialized = False
        with _cleanup_lock:
            _active_lifecycles.discard(self)
        try:
            self.backend.free()
        except Exception as e:
            logger.warning(f"Backend shutdown raised: {e}")


def default_lifecycle() -> BackendLifecycle:
    """Return the process-wide lifecycle for the llama.cpp backend.

    llama.cpp keeps its runtime in process globals, so every session that uses
    it shares one guard.
    """
    global _default_lifecycle
    with _cleanup_lock:
        if _default_lifecycle is None:
            from .llama_backend import default_backend

            _default_lifecycle = BackendLifecycle(default_backend())
        return _default_lifecycle
