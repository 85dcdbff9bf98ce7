#!/usr/bin/env python3
"""Translate lines from the command line or stdin, streaming the output."""

import argparse
import sys
from pathlib import Path

from llama_session import (
    EngineConfig,
    LlamaSessionError,
    initialize_engine,
    set_log_level,
    translation_template,
)

parser = argparse.ArgumentParser(description="Streaming translation with a local model")
parser.add_argument(
    "-m",
    "--model",
    default="models/Llama-3.2-1B-Instruct-Q4_K_M.gguf",
    help="Path to GGUF model file",
)
parser.add_argument("--source", default="English", help="Source language")
parser.add_argument("--target", default="French", help="Target language")
parser.add_argument("--max-tokens", type=int, default=128, help="Max tokens to generate")
parser.add_argument("--n-ctx", type=int, default=256, help="Context window size")
parser.add_argument("--gpu-layers", type=int, default=0, help="Layers to offload (-1 = all)")
parser.add_argument("--log-level", default="warning", help="none, debug, info, warning, error")
parser.add_argument("text", nargs="*", help="Text to translate (reads stdin if omitted)")
args = parser.parse_args()

set_log_level(args.log_level)

model_path = Path(args.model)
if not model_path.exists():
    print(f"\nModel not found: {model_path}")
    print(f"Tip: use the full path, e.g. ./models/{model_path.name}\n")
    sys.exit(1)

config = EngineConfig(
    n_ctx=args.n_ctx,
    n_batch=args.n_ctx,
    max_tokens=args.max_tokens,
    n_gpu_layers=args.gpu_layers,
)

try:
    engine = initialize_engine(
        str(model_path.parent),
        model_path.name,
        config=config,
        template=translation_template(args.source, args.target),
    )
except LlamaSessionError as e:
    print(f"Failed to start engine [{e.kind.value}]: {e}")
    sys.exit(1)

lines = [" ".join(args.text)] if args.text else (line.strip() for line in sys.stdin)
with engine:
    for line in lines:
        if not line:
            continue
        result = engine.generate(line, lambda fragment: print(fragment, end="", flush=True))
        print()
        if not result.ok:
            print(f"[stopped: {result.stop_reason.value}] {result.error}", file=sys.stderr)
