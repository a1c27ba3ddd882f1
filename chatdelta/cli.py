"""Command line interface: query multiple AIs and connect their responses."""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional, Sequence

from .config import KNOWN_MODELS, DeltaConfig, load_credentials, load_delta_config
from .dispatcher import dispatch
from .errors import ConfigurationError
from .logger import setup_logging
from .providers import ProviderClient
from .registry import PROVIDER_KINDS, build_clients, require_clients, resolve_provider_name, select_summarizer
from .report import FORMATS, append_log, render
from .session import Session
from .types import (
    AggregateReport,
    DigestStarted,
    DispatchRequest,
    ReportReady,
    ResultArrived,
    RunStatus,
)

TEST_PROMPT = "Hello, please respond with just 'OK' to confirm you're working."


def _csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatdelta",
        description="Query multiple AIs and connect their responses",
    )
    parser.add_argument("prompt", nargs="?", help="Prompt to send to the AIs")
    parser.add_argument("--log", "-l", help="Append the full interaction to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show every response and progress details")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress progress indicators")
    parser.add_argument("--format", "-f", default="text", help="Output format: text, json, markdown")
    parser.add_argument("--no-summary", action="store_true", help="Skip summary generation")
    parser.add_argument("--only", type=_csv, default=[], help="Only query these AIs (comma-separated: gpt,gemini,claude)")
    parser.add_argument("--exclude", type=_csv, default=[], help="Exclude these AIs (comma-separated: gpt,gemini,claude)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    parser.add_argument("--retries", type=int, default=None, help="Retry attempts for transient failures")
    parser.add_argument("--backoff", type=float, default=None, help="Base backoff in seconds (doubles per retry)")
    parser.add_argument("--deadline", type=float, default=None, help="Overall deadline for all providers in seconds")
    parser.add_argument("--gpt-model", default=None, help="OpenAI model to use")
    parser.add_argument("--gemini-model", default=None, help="Gemini model to use")
    parser.add_argument("--claude-model", default=None, help="Claude model to use")
    parser.add_argument("--max-tokens", type=int, default=None, help="Max tokens per response")
    parser.add_argument("--temperature", type=float, default=None, help="Sampling temperature (0.0-2.0)")
    parser.add_argument("--summarizer", default=None, help="Which AI writes the summary (default: gemini)")
    parser.add_argument("--list-models", action="store_true", help="List known models and exit")
    parser.add_argument("--test", action="store_true", help="Test API connections and exit")
    return parser


def validate_args(args: argparse.Namespace) -> Optional[str]:
    """Return an error message for an invalid combination of arguments, else None."""
    if args.prompt is None and not args.list_models and not args.test:
        return "Prompt is required unless using --list-models or --test"
    if args.prompt is not None and not args.prompt.strip():
        return "Prompt cannot be empty"
    if args.verbose and args.quiet:
        return "Cannot use both --verbose and --quiet flags"
    if args.format not in FORMATS:
        return f"Output format must be one of: {', '.join(FORMATS)}"
    if args.only and args.exclude:
        return "Cannot use both --only and --exclude flags"
    for name in list(args.only) + list(args.exclude) + ([args.summarizer] if args.summarizer else []):
        try:
            resolve_provider_name(name)
        except ConfigurationError as e:
            return str(e)
    if args.temperature is not None and not 0.0 <= args.temperature <= 2.0:
        return "Temperature must be between 0.0 and 2.0"
    if args.timeout is not None and args.timeout <= 0:
        return "Timeout must be greater than 0"
    if args.retries is not None and args.retries < 0:
        return "Retries must be >= 0"
    if args.deadline is not None and args.deadline <= 0:
        return "Deadline must be greater than 0"
    return None


def config_from_args(args: argparse.Namespace, base: DeltaConfig) -> DeltaConfig:
    """Overlay command line flags on the file configuration."""
    client_overrides = {
        "timeout": args.timeout,
        "max_retries": args.retries,
        "backoff_base": args.backoff,
        "max_tokens": args.max_tokens,
        "temperature": args.temperature,
    }
    client = replace(base.client, **{k: v for k, v in client_overrides.items() if v is not None})

    models = dict(base.models)
    for provider, value in (("openai", args.gpt_model), ("gemini", args.gemini_model), ("claude", args.claude_model)):
        if value:
            models[provider] = value

    return replace(
        base,
        models=models,
        client=client,
        summarizer=args.summarizer or base.summarizer,
        summarize=base.summarize and not args.no_summary,
        unit_timeout=client.retry_budget(),
        dispatch_deadline=args.deadline,
    )


def _status(message: str, args: argparse.Namespace):
    if not args.quiet:
        print(message, file=sys.stderr)


def _warn_missing_keys(credentials, args: argparse.Namespace):
    only = {resolve_provider_name(name) for name in args.only}
    exclude = {resolve_provider_name(name) for name in args.exclude}
    for kind in PROVIDER_KINDS:
        if (only and kind.name not in only) or kind.name in exclude:
            continue
        if kind.name not in credentials:
            _status(f"Warning: {kind.env_var} not set, skipping {kind.label}", args)


def list_models() -> str:
    lines = ["Available models:"]
    for kind in PROVIDER_KINDS:
        lines.append(f"  {kind.label}: {', '.join(KNOWN_MODELS[kind.name])}")
    return "\n".join(lines)


async def _print_progress(events: asyncio.Queue, args: argparse.Namespace):
    while True:
        event = await events.get()
        if isinstance(event, ResultArrived):
            result = event.result
            if result.ok:
                if args.verbose:
                    _status(f"✓ Received response from {result.provider.display_name}", args)
            else:
                _status(f"✗ {result.provider.display_name} error: {getattr(result.outcome, 'message', '')}", args)
        elif isinstance(event, DigestStarted):
            _status("Generating summary...", args)
        elif isinstance(event, ReportReady):
            return


async def run_prompt(session: Session, prompt: str, args: argparse.Namespace) -> AggregateReport:
    """Ask every provider, printing progress from the event channel as results arrive."""
    events: asyncio.Queue = asyncio.Queue()
    progress = asyncio.create_task(_print_progress(events, args))
    try:
        report = await session.ask(prompt, events=events)
    except BaseException:
        progress.cancel()
        raise
    await progress
    return report


async def check_connections(clients: Sequence[ProviderClient]) -> bool:
    """Ping every provider at once. Returns True when all of them answer."""
    request = DispatchRequest(TEST_PROMPT, tuple(client.identity for client in clients))
    results = await dispatch(request, clients, unit_timeout=clients[0].config.timeout)
    all_passed = True
    for result in results:
        if result.ok:
            print(f"✓ {result.provider.display_name} connection successful")
        else:
            print(f"✗ {result.provider.display_name} connection failed: {result.outcome.message}")
            all_passed = False
    return all_passed


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    error = validate_args(args)
    if error:
        print(f"Error: {error}", file=sys.stderr)
        return 2

    level = logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.WARNING
    setup_logging(level)

    if args.list_models:
        print(list_models())
        return 0

    config = config_from_args(args, load_delta_config())
    if args.test:
        config = replace(config, client=replace(config.client, max_retries=0))
    credentials = load_credentials()
    _warn_missing_keys(credentials, args)

    try:
        clients = require_clients(build_clients(credentials, config, only=args.only, exclude=args.exclude))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.test:
        _status("Testing API connections...", args)
        if asyncio.run(check_connections(clients)):
            print("\n✓ All API connections working properly")
            return 0
        return 1

    try:
        summarizer = select_summarizer(clients, config.summarizer, enabled=config.summarize)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    session = Session(clients, summarizer, config=config, keep_history=False)
    _status(f"Querying {len(clients)} AI model{'' if len(clients) == 1 else 's'}...", args)

    report = asyncio.run(run_prompt(session, args.prompt, args))

    sys.stdout.write(render(report, args.format, verbose=args.verbose))

    if args.log:
        try:
            append_log(args.log, report)
            _status(f"✓ Conversation logged to {args.log}", args)
        except OSError as e:
            _status(f"Warning: Failed to write log file {args.log}: {e}", args)

    if report.status == RunStatus.ALL_FAILED:
        _status("Error: No successful responses from any AI models", args)
        return 1
    return 0
