#!/usr/bin/env python3
"""Minimal translation example with context manager."""
import time

from llama_session import ContextCreationError, ModelLoadError, initialize_engine

MODELS_DIR = "models"
MODEL_FILE = "Llama-3.2-1B-Instruct-Q4_K_M.gguf"


class Printer:
    """Consumer exposing the receive_token(fragment) callback."""

    def receive_token(self, fragment: str) -> None:
        print(fragment, end="", flush=True)


def main() -> None:
    start = time.perf_counter()

    try:
        # Use context manager for automatic resource cleanup
        with initialize_engine(MODELS_DIR, MODEL_FILE) as engine:
            print("=== Single-call translation ===")
            print(engine.generate_text("Good morning, how are you?"))

            print("\n=== Streaming to a callback object ===")
            result = engine.generate("Where is the train station?", Printer())
            print(f"\n[{result.stop_reason.value}, {result.n_generated} tokens]")

    except (ModelLoadError, ContextCreationError) as e:
        print(f"Failed to start engine: {e}")
        return

    elapsed = time.perf_counter() - start
    print(f"\nExecution time: {elapsed:.2f}s")


if __name__ == "__main__":
    main()
