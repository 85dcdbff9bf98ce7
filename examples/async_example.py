#!/usr/bin/env python3
"""Async API example with concurrent requests serialized on one session."""

import asyncio
import time

from llama_session import EngineConfig, initialize_engine, translation_template


async def main() -> None:
    config = EngineConfig(n_ctx=512, n_batch=512, max_tokens=96)

    # Use context manager for automatic cleanup
    with initialize_engine(
        "models",
        "Llama-3.2-1B-Instruct-Q4_K_M.gguf",
        config=config,
        template=translation_template("English", "German"),
    ) as engine:
        print("=== Async Translation ===")
        start = time.perf_counter()

        text = await engine.generate_async("The weather is lovely today.")
        print(f"Response: {text}\n")

        print("=== Async Streaming ===")
        async for chunk in await engine.generate_async("See you tomorrow!", stream=True):
            print(chunk, end="", flush=True)
        print("\n")

        # Requests queue on the session lock and complete one after another
        print("=== Concurrent Requests ===")
        tasks = [
            engine.generate_async("Thank you very much."),
            engine.generate_async("Where is the library?"),
        ]
        results = await asyncio.gather(*tasks)
        for i, result in enumerate(results, 1):
            print(f"Task {i}: {result.strip()}")

        elapsed = time.perf_counter() - start
        print(f"\nTotal time: {elapsed:.2f}s")


if __name__ == "__main__":
    asyncio.run(main())
