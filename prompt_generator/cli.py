"""Command-line entry point for generating prompts from image URLs."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .config import DEFAULT_MODELS, load_api_key, policy_for
from .models import Job, JobState, ProgressSnapshot, ProviderName, RateLimitPolicy
from .orchestrator import PromptJobOrchestrator
from .validation import extract_urls_from_text, is_valid_image_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def collect_urls(urls: list[str], url_file: Optional[str] = None) -> list[str]:
    """Gather valid, de-duplicated image URLs from arguments and a text file.

    Args:
        urls: URLs passed on the command line
        url_file: Optional file whose text is scanned for image URLs

    Returns:
        Valid URLs in first-seen order
    """
    candidates = [url.strip() for url in urls if url.strip()]
    if url_file:
        text = Path(url_file).read_text(encoding="utf-8")
        candidates.extend(extract_urls_from_text(text))

    collected = []
    for url in candidates:
        if not is_valid_image_url(url):
            logger.warning(f"Skipping invalid image URL: {url}")
            continue
        if url in collected:
            continue
        collected.append(url)
    return collected


def build_policy(args: argparse.Namespace) -> RateLimitPolicy:
    """Start from the default or free-tier profile and apply overrides."""
    base = policy_for(args.free_tier)
    overrides = {
        "min_spacing_ms": args.min_spacing_ms,
        "max_retries": args.max_retries,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if not overrides:
        return base
    return RateLimitPolicy(**{**base.model_dump(), **overrides})


def print_results(results: dict[str, Job]):
    """Print a summary table of the batch."""
    print("\n" + "=" * 80)
    print(f"{'State':<12} {'URL':<66}")
    print("=" * 80)

    for job in results.values():
        display_url = job.reference[:63] + "..." if len(job.reference) > 66 else job.reference
        print(f"{job.state.value:<12} {display_url:<66}")
        if job.state == JobState.COMPLETED:
            print(f"    {job.result}")
        elif job.failure_reason:
            print(f"    ERROR: {job.failure_reason}")

    completed = sum(1 for j in results.values() if j.state == JobState.COMPLETED)
    print("=" * 80)
    print(f"\nSummary:")
    print(f"  Total images: {len(results)}")
    print(f"  Completed:    {completed}")
    print(f"  Failed:       {len(results) - completed}")
    print()


def save_results(results: dict[str, Job], output: str) -> str:
    """Write the batch results to a JSON file."""
    filepath = Path(output)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(
            [job.model_dump(mode="json") for job in results.values()],
            f,
            indent=2,
            ensure_ascii=False,
        )

    logger.info(f"Saved results to {filepath}")
    return str(filepath)


def _log_progress(snapshot: ProgressSnapshot):
    logger.info(
        f"Progress: {snapshot.completed}/{snapshot.total} ({snapshot.percentage}%)"
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Generate image-generation prompts for image URLs"
    )
    parser.add_argument(
        "urls",
        nargs="*",
        help="Image URLs to describe"
    )
    parser.add_argument(
        "--file",
        help="Text file to scan for image URLs"
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in ProviderName],
        default=os.getenv("PROMPT_PROVIDER", ProviderName.GEMINI.value),
        help="Remote provider (default: %(default)s)"
    )
    parser.add_argument(
        "--model",
        help="Model identifier (default depends on provider)"
    )
    parser.add_argument(
        "--api-key",
        help="Provider API key (default: read from environment)"
    )
    parser.add_argument(
        "--free-tier",
        action="store_true",
        help="Use the conservative free-tier request spacing"
    )
    parser.add_argument(
        "--min-spacing-ms",
        type=int,
        help="Minimum milliseconds between requests"
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        help="Retries after a rate-limit response"
    )
    parser.add_argument(
        "--output",
        help="Write results as JSON to this file"
    )

    args = parser.parse_args(argv)

    # choices are not checked against a default taken from PROMPT_PROVIDER
    try:
        provider = ProviderName(args.provider)
    except ValueError:
        parser.error(f"Unknown provider: {args.provider}")

    urls = collect_urls(args.urls, args.file)
    if not urls:
        parser.error("Please add at least one image URL")

    api_key = args.api_key or load_api_key(provider)
    if not api_key:
        parser.error(f"Please set your {provider.value} API key first")

    model = args.model or DEFAULT_MODELS[provider]
    policy = build_policy(args)

    orchestrator = PromptJobOrchestrator(policy=policy, on_progress=_log_progress)
    results = asyncio.run(
        orchestrator.run_batch(urls, api_key, model, provider, policy)
    )

    print_results(results)
    if args.output:
        save_results(results, args.output)

    if any(job.state == JobState.FAILED for job in results.values()):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
