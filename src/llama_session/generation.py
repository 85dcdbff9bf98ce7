"""The decode -> sample -> detokenize -> emit loop."""

from __future__ import annotations

import codecs
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from .backend import Backend
from .config import EngineConfig
from .context import InferenceSession
from .errors import DecodeError, LlamaSessionError
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    EOS = "eos"
    MAX_TOKENS = "max_tokens"
    DECODE_ERROR = "decode_error"
    PROMPT_DECODE_ERROR = "prompt_decode_error"
    TOKENIZATION_ERROR = "tokenization_error"
    NOT_READY = "not_ready"


@dataclass
class GenerationResult:
    """Outcome of one request.

    Attributes:
        stop_reason: Why the loop ended.
        n_prompt_tokens: Tokens in the decoded prompt.
        n_generated: Sampled tokens that were not end-of-generation markers.
        n_fragments: Fragments delivered to the sink.
        n_truncated: Pieces cut or dropped by the overflow policy.
        error: The error that ended the request, if any.
        elapsed: Wall time in seconds.
    """

    stop_reason: StopReason
    n_prompt_tokens: int = 0
    n_generated: int = 0
    n_fragments: int = 0
    n_truncated: int = 0
    error: LlamaSessionError | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class GenerationLoop:
    """Greedy generation against one :class:`InferenceSession`.

    The prompt is decoded once as a single batch; afterwards only the newly
    sampled token is decoded per step. Stop conditions, checked in order each
    iteration: end-of-generation token, iteration bound, failed decode of the
    sampled token. The iteration bound is ``max_tokens`` clamped to the
    positions left in the context.

    The caller must hold ``session.lock``.
    """

    def __init__(
        self,
        backend: Backend,
        session: InferenceSession,
        tokenizer: Tokenizer,
        config: EngineConfig,
    ) -> None:
        self.backend = backend
        self.session = session
        self.tokenizer = tokenizer
        self.config = config

    def run(
        self, prompt_tokens: Sequence[int], emit: Callable[[str], None]
    ) -> GenerationResult:
        start = time.perf_counter()
        result = GenerationResult(
            stop_reason=StopReason.MAX_TOKENS, n_prompt_tokens=len(prompt_tokens)
        )

        if self.config.reset_memory:
            self.session.clear()

        try:
            self.session.decode(prompt_tokens, stage="prompt")
        except DecodeError as e:
            logger.error(f"Prompt decode failed: {e}")
            result.stop_reason = StopReason.PROMPT_DECODE_ERROR
            result.error = e
            result.elapsed = time.perf_counter() - start
            return result

        budget = min(self.config.max_tokens, self.session.n_remaining)
        if budget < self.config.max_tokens:
            logger.debug(
                f"Output limited to {budget} tokens by context "
                f"({self.session.n_past}/{self.session.n_ctx} used)"
            )

        # Multi-byte characters may be split across tokens; only complete
        # characters are emitted.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        def deliver(text: str) -> None:
            if text:
                emit(text)
                result.n_fragments += 1

        sampler = self.backend.greedy_sampler()
        try:
            for _ in range(budget):
                token = self.backend.sample(sampler, self.session.ctx)
                if self.tokenizer.is_eog(token):
                    result.stop_reason = StopReason.EOS
                    break

                piece = self.tokenizer.token_to_piece(
                    token, self.config.piece_capacity, self.config.overflow_policy
                )
                if piece.truncated:
                    result.n_truncated += 1
                result.n_generated += 1
                deliver(decoder.decode(piece.data))

                try:
                    self.session.decode([token], stage="generation")
                except DecodeError as e:
                    logger.error(
                        f"Decode failed after {result.n_generated} generated tokens: {e}"
                    )
                    result.stop_reason = StopReason.DECODE_ERROR
                    result.error = e
                    break
            deliver(decoder.decode(b"", final=True))
        finally:
            self.backend.free_sampler(sampler)

        result.elapsed = time.perf_counter() - start
        logger.info(
            f"Generation finished ({result.stop_reason.value}): "
            f"{result.n_prompt_tokens} prompt tokens, {result.n_generated} generated "
            f"in {result.elapsed:.2f}s"
        )
        return result
