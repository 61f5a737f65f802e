"""Run prompt batches from the command line, without Celery.

Usage:
    python -m app.cli                       # every domain with active prompts
    python -m app.cli --domain <id>         # one domain
    python -m app.cli --workspace <id>      # every domain of one workspace
    python -m app.cli --provider chatgpt
"""

import argparse
import asyncio
import logging
import sys
import time

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.sentry import init_sentry
from app.providers.base import ProviderName

logger = logging.getLogger("app.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m app.cli", description="Run tracked prompts against a provider.")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--domain", help="Run only this domain id")
    target.add_argument("--workspace", help="Run every domain of this workspace id")
    parser.add_argument(
        "--provider",
        default=settings.default_provider,
        choices=[p.value for p in ProviderName],
        help="Provider to query (default: %(default)s)",
    )
    return parser


async def _main(args: argparse.Namespace) -> int:
    from app.core.exceptions import BatchInProgressError, DomainNotFoundError
    from app.db.postgres import async_session_factory, engine
    from app.services.prompt_runner import DomainRunResult, PromptRunner, summarize_results

    runner = PromptRunner.from_settings(settings, session_factory=async_session_factory)
    start = time.perf_counter()
    try:
        if args.domain:
            try:
                results = await runner.run_for_domain(args.domain, args.provider)
            except (DomainNotFoundError, BatchInProgressError) as e:
                print(f"Error: {e}", file=sys.stderr)
                return 2
            domain_results = [DomainRunResult(domain_id=args.domain, domain=args.domain, results=results)]
        elif args.workspace:
            domain_results = await runner.run_for_workspace(args.workspace, args.provider)
        else:
            domain_results = await runner.run_for_all_domains(args.provider)
    finally:
        await engine.dispose()

    summary = summarize_results(domain_results, time.perf_counter() - start)

    print()
    print("=" * 60)
    print(f"  Domains:    {summary.domains} ({summary.failed_domains} failed)")
    print(f"  Prompts:    {summary.total_prompts}")
    print(f"  Successful: {summary.successful}")
    print(f"  Failed:     {summary.failed}")
    print(f"  Mentions:   {summary.mentions}")
    print(f"  Duration:   {summary.duration_seconds:.1f}s")
    print("=" * 60)

    for d in domain_results:
        if d.error:
            print(f"  ! {d.domain}: {d.error}")

    return 1 if summary.failed_domains else 0


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    init_sentry()
    args = build_parser().parse_args(argv)
    logger.info("Prompt run: domain=%s workspace=%s provider=%s", args.domain, args.workspace, args.provider)
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
