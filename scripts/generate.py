#!/usr/bin/env python3
"""Interactive text generation.

Usage:
    python scripts/generate.py --model-dir path/to/model --prompt "Who are you?"
    python scripts/generate.py --interactive

Without ``--model-dir`` a tiny untrained demo model is used. Press Ctrl-C
during a generation to stop it; the text produced so far is kept.
"""

import argparse
import logging
import sys

from cadence.config import GenerateParameters
from cadence.inference.evaluator import Evaluator
from cadence.inference.loader import (
    ModelHandle,
    create_demo_container,
    device_memory_stats,
    format_bytes,
)
from cadence.inference.streaming import Chunk, GenerationInfo


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Generate text with a Cadence model")

    parser.add_argument(
        "--model-dir",
        type=str,
        default=None,
        help="Model directory with config.json (default: tiny demo model)",
    )
    parser.add_argument(
        "--prompt",
        type=str,
        default="Who are you?",
        help="Text prompt to start generation",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=240,
        help="Maximum tokens to generate",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=0.6,
        help="Sampling temperature (0 for greedy decoding)",
    )
    parser.add_argument(
        "--top-k",
        type=int,
        default=0,
        help="Top-k sampling (0 to disable)",
    )
    parser.add_argument(
        "--top-p",
        type=float,
        default=1.0,
        help="Nucleus sampling threshold (1.0 to disable)",
    )
    parser.add_argument(
        "--update-interval",
        type=float,
        default=0.25,
        help="Minimum seconds between streamed text updates",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed (default: new seed for every generation)",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Interactive mode (loop for multiple prompts)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    return parser.parse_args()


def memory_usage() -> str:
    stats = device_memory_stats()
    if not stats or "bytes_in_use" not in stats:
        return "n/a"
    usage = format_bytes(stats["bytes_in_use"])
    if "peak_bytes_in_use" in stats:
        usage += f" (peak {format_bytes(stats['peak_bytes_in_use'])})"
    return usage


def run(evaluator: Evaluator, prompt: str) -> None:
    """Stream one generation to stdout."""
    info = None
    try:
        for fragment in evaluator.stream(prompt):
            if isinstance(fragment, Chunk):
                sys.stdout.write(fragment.text)
                sys.stdout.flush()
            elif isinstance(fragment, GenerationInfo):
                info = fragment
    except KeyboardInterrupt:
        evaluator.cancel()
        evaluator.wait()
        print("\n[stopped]")
    except Exception as err:
        print(f"\nFailed: {err}")
        return

    print()
    print("-" * 40)
    if info is not None:
        print(info.summary())
    print(f"Memory usage: {memory_usage()}")


def main() -> None:
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    parameters = GenerateParameters(
        temperature=args.temperature,
        top_k=args.top_k if args.top_k > 0 else None,
        top_p=args.top_p if args.top_p < 1.0 else None,
        max_tokens=args.max_tokens,
        update_interval=args.update_interval,
        seed=args.seed,
    )
    if args.model_dir is not None:
        handle = ModelHandle.from_directory(args.model_dir)
    else:
        handle = ModelHandle(create_demo_container)
    evaluator = Evaluator(handle, parameters)

    print("=" * 60)
    print("Cadence Text Generator")
    print("=" * 60)

    # Load up front so the first generation does not pay for it
    try:
        evaluator.load()
    except Exception as err:
        print(f"Failed to load model: {err}")
        sys.exit(1)
    print(evaluator.model_info)
    print()

    if args.interactive:
        print("Interactive mode. Type 'quit' to exit.")
        print("-" * 40)

        while True:
            try:
                prompt = input("\nPrompt: ").strip()
            except EOFError:
                break
            if prompt.lower() == "quit":
                break
            if prompt:
                run(evaluator, prompt)
    else:
        print(f"Prompt: {args.prompt}")
        print(f"Temperature: {args.temperature}")
        print("-" * 40)
        run(evaluator, args.prompt)

    if args.model_dir is None:
        print("Note: the demo model is untrained - output is random.")


if __name__ == "__main__":
    main()
