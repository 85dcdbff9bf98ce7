"""Engine session: the public entry points for initialization and generation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import queue
import sys
import threading
import warnings
from collections.abc import AsyncGenerator, Generator, Sequence
from enum import Enum
from typing import Any

from .backend import Backend
from .config import EngineConfig
from .context import InferenceSession, create_session
from .errors import (
    ContextCreationError,
    LlamaSessionError,
    NotReadyError,
    TokenizationError,
    ValidationError,
)
from .generation import GenerationLoop, GenerationResult, StopReason
from .lifecycle import (
    BackendLifecycle,
    default_lifecycle,
    track_instance,
    untrack_instance,
)
from .log import disable_logging
from .model import Model, free_model, load_model
from .prompt import PromptTemplate
from .sink import CallbackTarget, QueueSink
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)

NOT_READY_FRAGMENT = "[model not loaded]"

_MAX_INPUT_LENGTH = 100_000  # characters of user text per request


def _validate_text(text: Any) -> None:
    if not isinstance(text, str):
        raise ValidationError("text must be a string")
    if not text.strip():
        raise ValidationError("text cannot be empty")
    if len(text) > _MAX_INPUT_LENGTH:
        raise ValidationError(f"text exceeds maximum length ({_MAX_INPUT_LENGTH} chars)")


def _collect_exception(task: asyncio.Future[Any]) -> None:
    """Mark a finished task's exception as retrieved."""
    if not task.cancelled():
        task.exception()


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class EngineSession:
    """One model, one reusable context, one request at a time.

    Lifetime: construct once per process (or per model), call
    :meth:`initialize`, serve any number of :meth:`generate` calls, then
    :meth:`close`. States move ``UNINITIALIZED -> READY | FAILED``;
    ``initialize`` may be retried from either and ``close`` ends in ``CLOSED``.

    Supports context manager protocol for automatic resource cleanup:
        with initialize_engine("models", "Llama-3.2-1B-Instruct-Q4_K_M.gguf") as engine:
            engine.generate("Good morning", print)

    Thread Safety:
        - Every request holds a single lock from tokenization through the last
          fragment, so concurrent calls serialize (they never interleave).
        - Fragments are delivered while the lock is held: a slow sink stalls
          every request queued behind it. This is the scalability limit of the
          single-context design.
        - There is no cancellation; a request runs until a stop condition.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        backend: Backend | None = None,
        lifecycle: BackendLifecycle | None = None,
        template: PromptTemplate | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        if lifecycle is None:
            lifecycle = default_lifecycle() if backend is None else BackendLifecycle(backend)
        self.lifecycle = lifecycle
        self.backend = lifecycle.backend
        self.template = template or PromptTemplate()
        self.model: Model | None = None
        self.session: InferenceSession | None = None
        self.tokenizer: Tokenizer | None = None
        self._state = EngineState.UNINITIALIZED
        self._lock = threading.Lock()
        self._callback_target: CallbackTarget | None = None

        # WARNING: This affects llama.cpp logging globally, not per-session.
        if not self.config.verbose:
            warnings.warn(
                "verbose=False silences llama.cpp logging for the whole process.",
                RuntimeWarning,
                stacklevel=2,
            )
            disable_logging()

        # Register for cleanup at exit
        self._ref = track_instance(self)

    def __enter__(self) -> EngineSession:
        return self

    def __exit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        self.close()

    def __del__(self) -> None:
        # Avoid freeing native memory during interpreter shutdown
        if not sys.is_finalizing() and getattr(self, "_state", None) not in (
            None,
            EngineState.CLOSED,
        ):
            self.close()

    def __repr__(self) -> str:
        path = self.model.path if self.model else None
        return f"EngineSession(state={self._state.value}, model={path!r})"

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is EngineState.READY

    # Setup -----------------------------------------------------------------
    def initialize(self, models_directory: str, model_filename: str) -> None:
        """Initialize the backend, load ``models_directory/model_filename``
        and create the context.

        Raises:
            InitializationError: The backend runtime could not start.
            ModelLoadError: The model file is missing, unreadable or rejected.
            ContextCreationError: The model loaded but the context could not
                be allocated.
        """
        self.load(os.path.join(models_directory, model_filename))

    def load(self, model_path: str) -> None:
        """Same as :meth:`initialize` with a full model path."""
        with self._lock:
            if self._state is EngineState.CLOSED:
                raise LlamaSessionError("Engine session has been closed")
            if self._state is EngineState.READY:
                logger.info(f"Reinitializing engine, releasing {self.model.path}")
            self._release()
            logger.info(f"Initializing engine with model: {model_path}")
            try:
                self.lifecycle.initialize()
                model = load_model(
                    self.backend, model_path, n_gpu_layers=self.config.n_gpu_layers
                )
                try:
                    session = create_session(
                        self.backend,
                        model,
                        self.config.n_ctx,
                        self.config.n_batch,
                        self.config.n_threads,
                        lock=self._lock,
                    )
                except ContextCreationError:
                    # Ensure model is released if context creation fails
                    with contextlib.suppress(Exception):
                        free_model(self.backend, model)
                    raise
            except LlamaSessionError:
                self._state = EngineState.FAILED
                raise

            self.model = model
            self.session = session
            self.tokenizer = Tokenizer(
                self.backend,
                model,
                slack=self.config.tokenize_slack,
                add_special=self.config.add_special,
                parse_special=self.config.parse_special,
            )
            self._state = EngineState.READY
            logger.info("Engine ready")

    def _release(self) -> None:
        """Free context before model (engine dependency). Caller holds the lock."""
        if self.session is not None:
            self.session.close()
            self.session = None
        if self.model is not None:
            free_model(self.backend, self.model)
            self.model = None
        self.tokenizer = None

    def close(self) -> None:
        """Release model and context resources. Idempotent."""
        if getattr(self, "_state", EngineState.CLOSED) is EngineState.CLOSED:
            return
        with self._lock:
            self._release()
            self._state = EngineState.CLOSED
        untrack_instance(self._ref)

    # Tokens ----------------------------------------------------------------
    def _require_tokenizer(self) -> Tokenizer:
        if self._state is not EngineState.READY or self.tokenizer is None:
            raise NotReadyError(f"Engine is {self._state.value}")
        return self.tokenizer

    def tokenize(self, text: str) -> list[int]:
        with self._lock:
            return self._require_tokenizer().tokenize(text)

    def detokenize(self, tokens: Sequence[int]) -> str:
        with self._lock:
            return self._require_tokenizer().detokenize(tokens)

    # Generation ------------------------------------------------------------
    def _resolve_target(self, sink: Any) -> CallbackTarget:
        """Reuse the cached target while the caller keeps passing the same sink."""
        if isinstance(sink, CallbackTarget):
            self._callback_target = sink
        elif self._callback_target is None or not self._callback_target.wraps(sink):
            self._callback_target = CallbackTarget(sink)
        self._callback_target.resolve()
        return self._callback_target

    def generate(self, text: str, sink: Any) -> GenerationResult:
        """Translate ``text`` and stream the output fragments to ``sink``.

        ``sink`` is a callable taking one string, an object with a
        ``receive_token(fragment)`` method, or a :class:`CallbackTarget`.
        Completion is signalled only by this call returning.

        If the engine is not ready, ``sink`` receives exactly one
        :data:`NOT_READY_FRAGMENT` and nothing is decoded. Decode and
        tokenization failures end the request early and are reported in the
        returned :class:`GenerationResult`, never raised.

        Raises:
            ValidationError: If the engine is ready and ``text`` is not a
                non-empty string.
        """
        with self._lock:
            target = self._resolve_target(sink)
            if self._state is not EngineState.READY:
                logger.warning(f"Generation requested while engine is {self._state.value}")
                target.emit(NOT_READY_FRAGMENT)
                return GenerationResult(
                    stop_reason=StopReason.NOT_READY,
                    n_fragments=1,
                    error=NotReadyError(f"Engine is {self._state.value}"),
                )

            _validate_text(text)
            prompt = self.template.format(text)
            try:
                prompt_tokens = self.tokenizer.tokenize(prompt)
            except TokenizationError as e:
                logger.error(f"Prompt tokenization failed ({len(prompt)} chars): {e}")
                return GenerationResult(stop_reason=StopReason.TOKENIZATION_ERROR, error=e)
            logger.info(f"Generating from {len(prompt_tokens)} prompt tokens...")

            loop = GenerationLoop(self.backend, self.session, self.tokenizer, self.config)
            return loop.run(prompt_tokens, target.emit)

    def generate_text(self, text: str) -> str:
        """Run :meth:`generate` and return the concatenated output.

        Raises:
            NotReadyError: If the engine is not initialized.
        """
        fragments: list[str] = []
        result = self.generate(text, fragments.append)
        if result.stop_reason is StopReason.NOT_READY:
            raise result.error
        return "".join(fragments)

    def generate_stream(self, text: str) -> Generator[str, None, None]:
        """Yield fragments as they are produced.

        The request runs on a background thread; fragments arrive through a
        queue. Breaking out of the loop early does not stop the request, it
        still runs to a stop condition while holding the lock.
        """
        fragments: queue.Queue[str | None | Exception] = queue.Queue()
        sink = QueueSink(fragments)

        def worker() -> None:
            """Background thread that runs the request and feeds the queue."""
            try:
                self.generate(text, sink)
                fragments.put(None)  # Sentinel: generation complete
            except Exception as e:
                fragments.put(e)  # Propagate exception to consumer thread

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()

        try:
            while True:
                item = fragments.get()
                if item is None:
                    break
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            thread.join(timeout=1.0)

    # Async API (thread-safe wrappers) --------------------------------------
    # Concurrent async calls serialize on the session lock, they do not run in
    # parallel.

    async def generate_async(
        self, text: str, *, stream: bool = False
    ) -> str | AsyncGenerator[str, None]:
        """Async version of :meth:`generate_text` / :meth:`generate_stream`.

        Runs in a worker thread via :func:`asyncio.to_thread`.
        """
        if stream:

            async def async_stream() -> AsyncGenerator[str, None]:
                loop = asyncio.get_running_loop()
                fragments: asyncio.Queue[str | None] = asyncio.Queue()

                def on_fragment(fragment: str) -> None:
                    loop.call_soon_threadsafe(fragments.put_nowait, fragment)

                task = asyncio.ensure_future(asyncio.to_thread(self.generate, text, on_fragment))
                task.add_done_callback(lambda _: fragments.put_nowait(None))
                try:
                    while True:
                        item = await fragments.get()
                        if item is None:
                            break
                        yield item
                    await task  # re-raise worker errors
                finally:
                    # The consumer may stop early; the request still runs
                    task.add_done_callback(_collect_exception)

            return async_stream()

        return await asyncio.to_thread(self.generate_text, text)


def initialize_engine(
    models_directory: str,
    model_filename: str,
    *,
    config: EngineConfig | None = None,
    backend: Backend | None = None,
    template: PromptTemplate | None = None,
) -> EngineSession:
    """Create an :class:`EngineSession` and initialize it.

    Raises:
        InitializationError, ModelLoadError, ContextCreationError: As for
            :meth:`EngineSession.initialize`.
    """
    engine = EngineSession(config, backend=backend, template=template)
    try:
        engine.initialize(models_directory, model_filename)
    except LlamaSessionError:
        engine.close()
        raise
    return engine
