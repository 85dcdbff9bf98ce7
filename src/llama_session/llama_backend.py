"""llama.cpp engine backed by llama-cpp-python's low-level C API bindings."""

from __future__ import annotations

import ctypes
import threading
from collections.abc import Sequence
from typing import Any

import llama_cpp

# llama.cpp's low-level API expects a non-negative layer count. Translate -1
# to a large sentinel so callers can keep using -1 to mean "full offload".
_ALL_GPU_LAYERS_SENTINEL = 1_000_000

_default_backend: LlamaCppBackend | None = None
_default_lock = threading.Lock()


class LlamaCppBackend:
    """Thin adapter from :class:`llama_session.backend.Backend` to ``llama_cpp``.

    Handles are raw ctypes pointers; a NULL pointer comes back as ``None``.
    """

    def init(self) -> None:
        llama_cpp.llama_backend_init()

    def free(self) -> None:
        llama_cpp.llama_backend_free()

    def load_model(self, path: str, n_gpu_layers: int) -> Any:
        params = llama_cpp.llama_model_default_params()
        params.n_gpu_layers = (
            n_gpu_layers if n_gpu_layers >= 0 else _ALL_GPU_LAYERS_SENTINEL
        )
        return llama_cpp.llama_model_load_from_file(path.encode("utf-8"), params)

    def free_model(self, model: Any) -> None:
        llama_cpp.llama_model_free(model)

    def get_vocab(self, model: Any) -> Any:
        return llama_cpp.llama_model_get_vocab(model)

    def create_context(
        self, model: Any, n_ctx: int, n_batch: int, n_threads: int
    ) -> Any:
        params = llama_cpp.llama_context_default_params()
        params.n_ctx = int(n_ctx)
        params.n_batch = int(n_batch)
        params.n_ubatch = min(int(params.n_ubatch), int(n_batch))
        params.n_threads = int(n_threads)
        params.n_threads_batch = int(n_threads)
        return llama_cpp.llama_init_from_model(model, params)

    def free_context(self, ctx: Any) -> None:
        llama_cpp.llama_free(ctx)

    def clear_memory(self, ctx: Any) -> None:
        # The memory API replaced the KV-cache calls in newer llama.cpp builds
        if hasattr(llama_cpp, "llama_get_memory"):
            llama_cpp.llama_memory_clear(llama_cpp.llama_get_memory(ctx), False)
        elif hasattr(llama_cpp, "llama_kv_self_clear"):
            llama_cpp.llama_kv_self_clear(ctx)
        else:
            llama_cpp.llama_kv_cache_clear(ctx)

    def tokenize(
        self,
        vocab: Any,
        data: bytes,
        n_tokens_max: int,
        add_special: bool,
        parse_special: bool,
    ) -> tuple[int, list[int]]:
        buffer = (llama_cpp.llama_token * n_tokens_max)()
        count = llama_cpp.llama_tokenize(
            vocab,
            data,
            len(data),
            buffer,
            n_tokens_max,
            add_special,
            parse_special,
        )
        return int(count), list(buffer[: max(count, 0)])

    def token_to_piece(self, vocab: Any, token: int, length: int) -> tuple[int, bytes]:
        buffer = ctypes.create_string_buffer(length)
        count = llama_cpp.llama_token_to_piece(vocab, token, buffer, length, 0, True)
        return int(count), buffer.raw[: max(count, 0)]

    def is_eog(self, vocab: Any, token: int) -> bool:
        return bool(llama_cpp.llama_vocab_is_eog(vocab, token))

    def decode(self, ctx: Any, tokens: Sequence[int]) -> int:
        # The batch only points into this array; it must outlive llama_decode
        array = (llama_cpp.llama_token * len(tokens))(*tokens)
        batch = llama_cpp.llama_batch_get_one(array, len(tokens))
        return int(llama_cpp.llama_decode(ctx, batch))

    def greedy_sampler(self) -> Any:
        chain = llama_cpp.llama_sampler_chain_init(
            llama_cpp.llama_sampler_chain_default_params()
        )
        llama_cpp.llama_sampler_chain_add(chain, llama_cpp.llama_sampler_init_temp(0.0))
        llama_cpp.llama_sampler_chain_add(chain, llama_cpp.llama_sampler_init_greedy())
        return chain

    def sample(self, sampler: Any, ctx: Any) -> int:
        return int(llama_cpp.llama_sampler_sample(sampler, ctx, -1))

    def free_sampler(self, sampler: Any) -> None:
        llama_cpp.llama_sampler_free(sampler)


def default_backend() -> LlamaCppBackend:
    """Return the process-wide llama.cpp backend."""
    global _default_backend
    if _default_backend is not None:
        return _default_backend
    with _default_lock:
        if _default_backend is None:
            _default_backend = LlamaCppBackend()
        return _default_backend
