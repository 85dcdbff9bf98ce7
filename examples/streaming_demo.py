#!/usr/bin/env python3
"""Demonstration of incremental streaming and the not-ready fallback."""

import sys
import time

from llama_session import EngineSession, ModelLoadError

MODELS_DIR = "models"
MODEL_FILE = "Llama-3.2-1B-Instruct-Q4_K_M.gguf"


def demo_not_ready(engine: EngineSession) -> None:
    """Requests sent before initialization get a single placeholder fragment."""
    print("=" * 70)
    print("BEFORE INITIALIZATION")
    print("=" * 70)
    fragments = list(engine.generate_stream("Hello"))
    print(f"Fragments: {fragments}")
    print()


def demo_stream(engine: EngineSession) -> None:
    """Fragments are yielded as tokens decode."""
    print("=" * 70)
    print("STREAMING: generate_stream()")
    print("=" * 70)

    text = "I would like a cup of coffee, please."
    print(f"Input:  {text}")
    print("Output: ", end="", flush=True)

    start_time = time.time()
    first_chunk_time = None
    chunks = 0
    for chunk in engine.generate_stream(text):
        if first_chunk_time is None:
            first_chunk_time = time.time()
        chunks += 1
        print(chunk, end="", flush=True)
    end_time = time.time()

    print("\n\nTiming:")
    if first_chunk_time is not None:
        print(f"  Time to first chunk: {first_chunk_time - start_time:.3f}s")
    print(f"  Total time: {end_time - start_time:.3f}s")
    print(f"  Chunks: {chunks}")
    print()


def main() -> None:
    engine = EngineSession()
    try:
        demo_not_ready(engine)
        engine.initialize(MODELS_DIR, MODEL_FILE)
        demo_stream(engine)
    except ModelLoadError as e:
        print(f"\nError: {e}")
        print("Download the model into ./models or update MODEL_FILE.\n")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(0)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
