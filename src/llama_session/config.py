"""Engine configuration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import ValidationError

# Small window suited to short single-turn requests such as translating a
# spoken sentence.
DEFAULT_N_CTX = 256
DEFAULT_N_BATCH = 256
DEFAULT_MAX_TOKENS = 128
DEFAULT_PIECE_CAPACITY = 128
DEFAULT_TOKENIZE_SLACK = 16


class PieceOverflowPolicy(str, Enum):
    """What to do with a token piece larger than the scratch buffer."""

    TRUNCATE = "truncate"
    REJECT = "reject"


@dataclass
class EngineConfig:
    n_ctx: int = DEFAULT_N_CTX
    n_batch: int = DEFAULT_N_BATCH
    n_threads: int | None = None
    n_gpu_layers: int = 0
    max_tokens: int = DEFAULT_MAX_TOKENS
    piece_capacity: int = DEFAULT_PIECE_CAPACITY  # bytes
    tokenize_slack: int = DEFAULT_TOKENIZE_SLACK
    add_special: bool = True
    parse_special: bool = True
    reset_memory: bool = True  # clear context memory before every request
    overflow_policy: PieceOverflowPolicy = PieceOverflowPolicy.TRUNCATE
    verbose: bool = True  # WARNING: affects llama.cpp logging GLOBALLY

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.n_ctx < 1:
            raise ValidationError("n_ctx must be at least 1")
        if self.n_batch < 1:
            raise ValidationError("n_batch must be at least 1")
        if self.n_threads is not None and self.n_threads < 1:
            raise ValidationError("n_threads must be at least 1")
        if self.n_gpu_layers < -1:
            raise ValidationError("n_gpu_layers must be >= -1 (-1 means all layers)")
        if self.max_tokens < 1:
            raise ValidationError("max_tokens must be at least 1")
        if self.max_tokens > self.n_ctx:
            raise ValidationError("max_tokens cannot exceed n_ctx")
        if self.piece_capacity < 8:
            raise ValidationError("piece_capacity must be at least 8 bytes")
        if self.tokenize_slack < 0:
            raise ValidationError("tokenize_slack must be non-negative")
        # Accept plain strings ("truncate"/"reject") as well as the enum
        try:
            self.overflow_policy = PieceOverflowPolicy(self.overflow_policy)
        except ValueError as e:
            raise ValidationError(
                f"unknown overflow_policy '{self.overflow_policy}'"
            ) from e
