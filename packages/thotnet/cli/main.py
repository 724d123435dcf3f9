"""Command-line interface for thotnet.

Generates (or reuses) one canonical artifact per invocation and prints the
attempt trail.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from thotnet.core.config.loader import configure_logging, load_app_config
from thotnet.core.config.models import AppConfig
from thotnet.core.generation.errors import PersistenceFailure, RequestValidationError
from thotnet.core.generation.idempotency import compute_idempotency_key
from thotnet.core.generation.models import (
    AttemptOutcome,
    ContentKind,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    TargetIdentity,
)
from thotnet.core.session import ThotnetSession

console = Console()
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PERSISTENCE_FAILED = 1
EXIT_INVALID_REQUEST = 2

_OUTCOME_STYLES = {
    AttemptOutcome.SUCCESS: "green",
    AttemptOutcome.REJECTED_BY_GATE: "yellow",
    AttemptOutcome.PROVIDER_ERROR: "red",
}


def _read_payload(args: argparse.Namespace) -> str:
    if args.payload_file:
        return Path(args.payload_file).read_text(encoding="utf-8")
    return args.payload or ""


def _target(args: argparse.Namespace) -> TargetIdentity:
    return TargetIdentity(
        subject_id=args.subject, locale=args.locale, variant=args.variant, slot_id=args.slot
    )


def _options(args: argparse.Namespace) -> GenerationOptions:
    return GenerationOptions(
        model=args.model,
        title=args.title,
        category=args.category,
        width=args.width,
        height=args.height,
    )


def _load_config(path: str | None) -> AppConfig:
    return load_app_config(Path(path) if path else None)


def print_result(result: GenerationResult) -> None:
    """Print a result summary and its attempt trail."""
    artifact = result.artifact
    if result.cache_hit:
        console.print("[bold cyan]♻️  Cache hit[/bold cyan] (no providers called)")
    elif result.used_fallback:
        console.print("[bold yellow]⚠️  All providers failed; stored fallback artifact[/bold yellow]")
    else:
        console.print(f"[bold green]✅ Accepted output from {result.provider}[/bold green]")

    console.print(f"   Checksum: {result.checksum}")
    if artifact is not None:
        console.print(f"   Source:   {artifact.source_tag} ({artifact.model or 'default model'})")
        console.print(f"   Location: {artifact.storage_location}")

    if not result.attempts:
        return

    table = Table(title="Attempts")
    table.add_column("#", justify="right")
    table.add_column("Provider")
    table.add_column("Try", justify="right")
    table.add_column("Outcome")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")
    for index, attempt in enumerate(result.attempts, start=1):
        style = _OUTCOME_STYLES[attempt.outcome]
        table.add_row(
            str(index),
            attempt.provider_id,
            str(attempt.attempt_number),
            f"[{style}]{attempt.outcome.value}[/{style}]",
            f"{attempt.duration_ms:.0f}ms",
            attempt.error_detail or "",
        )
    console.print(table)


async def generate_async(args: argparse.Namespace, app_config: AppConfig) -> int:
    """Run one generation request.

    Returns:
        Exit code (0 success, 1 persistence failure, 2 invalid request)
    """
    session = ThotnetSession(app_config=app_config)
    try:
        result = await session.generate(
            _target(args),
            _read_payload(args),
            args.provider or None,
            _options(args),
            kind=ContentKind(args.kind),
            force=args.force,
        )
    except RequestValidationError as e:
        console.print(f"[red]ERROR: Invalid request: {e}[/red]")
        return EXIT_INVALID_REQUEST
    except PersistenceFailure as e:
        print_result(e.result)
        console.print(f"[red]ERROR: {e}[/red]")
        if e.retryable:
            console.print("   The failure looks transient; retry later.")
        return EXIT_PERSISTENCE_FAILED

    print_result(result)
    return EXIT_OK


def run_generate(args: argparse.Namespace) -> None:
    """Generate the canonical artifact for a target."""
    try:
        app_config = _load_config(args.config)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        console.print(f"[red]ERROR: Could not load config: {e}[/red]")
        sys.exit(EXIT_PERSISTENCE_FAILED)

    configure_logging(app_config)
    if args.payload_file and not Path(args.payload_file).exists():
        console.print(f"[red]ERROR: Payload file not found: {args.payload_file}[/red]")
        sys.exit(EXIT_INVALID_REQUEST)

    sys.exit(asyncio.run(generate_async(args, app_config)))


def run_key(args: argparse.Namespace) -> None:
    """Print the idempotency key a request would use."""
    try:
        request = GenerationRequest(
            kind=ContentKind(args.kind),
            target=_target(args),
            provider_order=list(args.provider or []),
            payload=_read_payload(args),
            options=_options(args),
        )
    except (OSError, ValidationError) as e:
        console.print(f"[red]ERROR: Invalid request: {e}[/red]")
        sys.exit(EXIT_INVALID_REQUEST)

    console.print(compute_idempotency_key(request), highlight=False)
    sys.exit(EXIT_OK)


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--kind", choices=[k.value for k in ContentKind], default="text", help="Content kind"
    )
    parser.add_argument("--subject", required=True, help="Subject id (module, article, course)")
    parser.add_argument("--locale", required=True, help="Content locale (e.g. en, es)")
    parser.add_argument("--variant", required=True, help="Content variant or visual style")
    parser.add_argument("--slot", default=None, help="Optional slot within the subject")
    payload = parser.add_mutually_exclusive_group(required=True)
    payload.add_argument("--payload", help="Prompt or source content")
    payload.add_argument("--payload-file", help="File holding the prompt or source content")
    parser.add_argument(
        "--provider",
        action="append",
        help="Provider id, repeatable, in priority order (default: configured order)",
    )
    parser.add_argument("--model", default=None, help="Model override")
    parser.add_argument("--title", default=None, help="Title used by images and fallbacks")
    parser.add_argument("--category", default=None, help="Category used by image fallbacks")
    parser.add_argument("--width", type=int, default=None, help="Image width in pixels")
    parser.add_argument("--height", type=int, default=None, help="Image height in pixels")


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for CLI."""
    p = argparse.ArgumentParser(
        prog="thotnet",
        description="thotnet - idempotent multi-provider content generation",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    generate = sub.add_parser("generate", help="Generate or reuse the artifact for a target")
    _add_request_arguments(generate)
    generate.add_argument(
        "--config", default=None, help="Path to app config YAML/JSON (default: thotnet.yaml)"
    )
    generate.add_argument("--force", action="store_true", help="Regenerate even on a cache hit")

    key = sub.add_parser("key", help="Print the idempotency key for a request")
    _add_request_arguments(key)

    return p


def main(argv: list[str] | None = None) -> None:
    """Main entry point for CLI."""
    p = build_arg_parser()
    args = p.parse_args(argv)

    if args.cmd == "generate":
        run_generate(args)
    elif args.cmd == "key":
        run_key(args)


if __name__ == "__main__":
    main()
