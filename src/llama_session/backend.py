"""Protocol for the tensor engine that executes the model.

The engine is opaque to the rest of the package: given a model file and a
token sequence it decodes, samples and maps tokens back to bytes. Handles it
returns (model, vocab, context, sampler) are passed back to it unchanged.
The production implementation is :class:`llama_session.llama_backend.LlamaCppBackend`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol


class Backend(Protocol):
    def init(self) -> None:
        """Process-wide runtime initialization."""

    def free(self) -> None:
        """Release process-wide runtime state."""

    def load_model(self, path: str, n_gpu_layers: int) -> Any:
        """Load weights. Returns a falsy handle on failure."""

    def free_model(self, model: Any) -> None: ...

    def get_vocab(self, model: Any) -> Any: ...

    def create_context(
        self, model: Any, n_ctx: int, n_batch: int, n_threads: int
    ) -> Any:
        """Allocate a decode context. Returns a falsy handle on failure."""

    def free_context(self, ctx: Any) -> None: ...

    def clear_memory(self, ctx: Any) -> None: ...

    def tokenize(
        self,
        vocab: Any,
        data: bytes,
        n_tokens_max: int,
        add_special: bool,
        parse_special: bool,
    ) -> tuple[int, list[int]]:
        """Tokenize into a buffer of ``n_tokens_max`` slots.

        Returns ``(count, tokens)`` with the first ``count`` ids. A negative
        count ``-n`` means the buffer was too small and ``n`` slots are
        required; ``tokens`` is then empty.
        """

    def token_to_piece(self, vocab: Any, token: int, length: int) -> tuple[int, bytes]:
        """Render ``token`` into a buffer of ``length`` bytes.

        Same negative-count convention as :meth:`tokenize`.
        """

    def is_eog(self, vocab: Any, token: int) -> bool: ...

    def decode(self, ctx: Any, tokens: Sequence[int]) -> int:
        """Decode one batch. Returns 0 on success."""

    def greedy_sampler(self) -> Any:
        """Create a temperature-zero sampler that always picks the top token."""

    def sample(self, sampler: Any, ctx: Any) -> int: ...

    def free_sampler(self, sampler: Any) -> None: ...
