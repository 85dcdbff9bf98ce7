"""Delivery of generated fragments to the caller."""

from __future__ import annotations

import queue
from collections.abc import Callable
from typing import Any

from .errors import ValidationError

DEFAULT_CALLBACK_METHOD = "receive_token"


class CallbackTarget:
    """Resolve-once handle to the consumer of token fragments.

    ``consumer`` is either an object exposing ``method_name`` (by default
    ``receive_token(fragment)``) or a plain callable taking the fragment. The
    bound callable is looked up on first use and reused afterwards.

    Fragments are delivered synchronously on the generating thread, in order.
    A slow consumer therefore stalls the generation loop (and every request
    queued behind it).
    """

    def __init__(self, consumer: Any, method_name: str = DEFAULT_CALLBACK_METHOD) -> None:
        self.consumer = consumer
        self.method_name = method_name
        self._resolved: Callable[[str], Any] | None = None

    def wraps(self, consumer: Any) -> bool:
        return self.consumer is consumer

    def resolve(self) -> Callable[[str], Any]:
        if self._resolved is None:
            method = getattr(self.consumer, self.method_name, None)
            if callable(method):
                self._resolved = method
            elif callable(self.consumer):
                self._resolved = self.consumer
            else:
                raise ValidationError(
                    f"sink must be callable or define {self.method_name}(fragment)"
                )
        return self._resolved

    def emit(self, fragment: str) -> None:
        self.resolve()(fragment)

    def __repr__(self) -> str:
        return f"CallbackTarget({self.consumer!r}, method_name={self.method_name!r})"


class QueueSink:
    """Callable sink that puts each fragment on a queue.

    Used to hand fragments from a worker thread to an iterating consumer.
    """

    def __init__(self, fragments: queue.Queue[Any] | None = None) -> None:
        self.queue: queue.Queue[Any] = fragments if fragments is not None else queue.Queue()

    def __call__(self, fragment: str) -> None:
        self.queue.put(fragment)
