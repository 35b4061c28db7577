#!/usr/bin/env python3
"""Decode throughput benchmark.

Runs several generation sessions back to back (a fresh cache for each) and
reports prefill and decode throughput.

Usage:
    python scripts/benchmark.py --model-dir path/to/model --runs 10 --max-tokens 128
"""

import argparse
import logging
import statistics

from tqdm import tqdm

from cadence.config import GenerateParameters
from cadence.inference.generate import start_session
from cadence.inference.loader import create_demo_container, load_model_container
from cadence.inference.streaming import GenerationInfo


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Benchmark Cadence generation throughput")

    parser.add_argument("--model-dir", type=str, default=None, help="Model directory (default: demo model)")
    parser.add_argument("--prompt", type=str, default="Hello", help="Prompt for every run")
    parser.add_argument("--runs", type=positive_int, default=5, help="Number of sessions to run")
    parser.add_argument("--max-tokens", type=int, default=64, help="Token budget per session")
    parser.add_argument("--temperature", type=float, default=0.0, help="Sampling temperature")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")

    return parser.parse_args(argv)


def main() -> None:
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(level=logging.WARNING)

    if args.model_dir is not None:
        container = load_model_container(args.model_dir)
    else:
        container = create_demo_container()
    parameters = GenerateParameters(
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        seed=args.seed,
        update_interval=0.0,
    )
    prompt_tokens = container.tokenizer.encode(args.prompt)
    forward = container.forward

    print(container.describe())

    results: list[GenerationInfo] = []
    for _ in tqdm(range(args.runs), desc="sessions"):
        session = start_session(forward, container.new_cache(), prompt_tokens, parameters, container.tokenizer)
        final = None
        for fragment in session:
            if isinstance(fragment, GenerationInfo):
                final = fragment
        results.append(final)

    # The first run pays for one-time backend initialization and allocation
    measured = results[1:] or results
    decode = [info.tokens_per_second for info in measured]
    prefill = [info.prompt_tokens_per_second for info in measured]
    print(f"Runs: {len(results)} (first excluded as warm-up)" if len(results) > 1 else "Runs: 1")
    print(f"Prefill: {statistics.mean(prefill):.2f} tokens/s")
    print(f"Decode:  {statistics.mean(decode):.2f} tokens/s (stdev {statistics.pstdev(decode):.2f})")
    print(f"Tokens per run: {statistics.mean(info.generated_tokens for info in measured):.1f}")


if __name__ == "__main__":
    main()
