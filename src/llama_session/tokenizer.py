"""Text <-> token id conversion against a model's vocabulary."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .backend import Backend
from .config import DEFAULT_TOKENIZE_SLACK, PieceOverflowPolicy
from .errors import TokenizationError, ValidationError
from .model import Model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Piece:
    """Bytes a token renders to. ``truncated`` is set when the piece did not fit."""

    data: bytes
    truncated: bool = False


class Tokenizer:
    """Tokenizer bound to one model.

    Tokenization never assumes one byte per token: the first pass sizes the
    buffer at ``len(bytes) + slack`` and, when the engine reports a larger
    requirement, retries once with exactly that size.
    """

    def __init__(
        self,
        backend: Backend,
        model: Model,
        *,
        slack: int = DEFAULT_TOKENIZE_SLACK,
        add_special: bool = True,
        parse_special: bool = True,
    ) -> None:
        self.backend = backend
        self.model = model
        self.slack = slack
        self.add_special = add_special
        self.parse_special = parse_special

    def tokenize(
        self,
        text: str,
        *,
        add_special: bool | None = None,
        parse_special: bool | None = None,
    ) -> list[int]:
        """Return the token ids for ``text``.

        Raises:
            TokenizationError: If the engine still reports an undersized
                buffer after the resize-and-retry pass.
        """
        if not isinstance(text, str):
            raise ValidationError("text must be a string")
        add = self.add_special if add_special is None else add_special
        parse = self.parse_special if parse_special is None else parse_special
        data = text.encode("utf-8")

        capacity = len(data) + self.slack
        count, tokens = self.backend.tokenize(
            self.model.vocab, data, capacity, add, parse
        )
        if count < 0:
            required = -count
            logger.debug(f"Token buffer too small ({capacity}), retrying with {required}")
            capacity = required
            count, tokens = self.backend.tokenize(
                self.model.vocab, data, capacity, add, parse
            )
            if count < 0:
                logger.error(
                    f"Tokenization failed: {len(data)} bytes needs {-count} slots "
                    f"after resize to {capacity}"
                )
                raise TokenizationError(
                    f"tokenizer reported {-count} tokens after resizing to {capacity}"
                )
        return list(tokens[:count])

    def token_to_piece(
        self,
        token: int,
        capacity: int,
        policy: PieceOverflowPolicy = PieceOverflowPolicy.TRUNCATE,
    ) -> Piece:
        """Render ``token`` into at most ``capacity`` bytes.

        A piece that does not fit is either cut to ``capacity`` bytes
        (``TRUNCATE``) or dropped (``REJECT``); both set ``truncated``.
        """
        count, data = self.backend.token_to_piece(self.model.vocab, token, capacity)
        if count >= 0:
            return Piece(data[:count])

        required = -count
        if policy is PieceOverflowPolicy.REJECT:
            logger.warning(
                f"Token {token} piece needs {required} bytes (capacity {capacity}), dropped"
            )
            return Piece(b"", truncated=True)

        logger.warning(
            f"Token {token} piece needs {required} bytes (capacity {capacity}), truncated"
        )
        count, data = self.backend.token_to_piece(self.model.vocab, token, required)
        if count < 0:
            return Piece(b"", truncated=True)
        return Piece(data[: min(count, capacity)], truncated=True)

    def is_eog(self, token: int) -> bool:
        return self.backend.is_eog(self.model.vocab, token)

    def detokenize(self, tokens: Sequence[int], *, capacity: int = 256) -> str:
        """Concatenate the pieces of ``tokens`` and decode them as UTF-8."""
        data = b"".join(
            self.token_to_piece(t, capacity, PieceOverflowPolicy.TRUNCATE).data
            for t in tokens
        )
        return data.decode("utf-8", errors="replace")
