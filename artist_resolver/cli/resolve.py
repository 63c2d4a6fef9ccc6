"""Command-line access to the resolver.

Usage::

    python -m artist_resolver.cli resolve "The Beatles"
    python -m artist_resolver.cli resolve --external-id 4Z8W4fKeB5YxbusRsdQVPb --authority spotify
    python -m artist_resolver.cli resolve "Aphex Twin" --json
    python -m artist_resolver.cli merge <source-id> <into-id>
    python -m artist_resolver.cli export --since 2026-01-01T00:00:00Z

Builds the same component graph as the API server through
:func:`artist_resolver.main.build_resolver`.  Results go to stdout,
progress and logs to stderr.  Exit code 0 on a match, 1 on a miss or
error, 2 on bad arguments.
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import json
import sys
from typing import Any

from pydantic import ValidationError

from artist_resolver.models.resolution import (
    ResolutionOutcome,
    ResolutionQuery,
    ResolutionResult,
)
from artist_resolver.utils.errors import ResolverError
from artist_resolver.utils.logging import configure_logging


def _configure_logs(args: argparse.Namespace) -> None:
    """Log to stderr; only warnings and up when stdout carries machine output."""
    quiet = args.quiet or getattr(args, "json_output", False) or args.command == "export"
    configure_logging(log_level="WARNING" if quiet else "INFO", stream=sys.stderr)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_outcome(outcome: ResolutionOutcome) -> str:
    """Human-readable summary of one resolution."""
    if isinstance(outcome, ResolutionResult):
        artist = outcome.artist
        lines = [
            f"{artist.canonical_name}  [{artist.id}]",
            f"  confidence: {outcome.confidence:.3f} via {outcome.matched_via.authority} "
            f"({outcome.matched_via.rule.value}){'  (cached)' if outcome.from_cache else ''}",
        ]
        for authority, external_id in sorted(artist.external_ids.items()):
            lines.append(f"  {authority}: {external_id}")
        names = sorted({a.name for a in artist.aliases if a.name != artist.canonical_name})
        if names:
            lines.append(f"  also known as: {', '.join(names)}")
        return "\n".join(lines)

    lines = [f"Unresolved ({outcome.reason.value}): {outcome.message}"]
    for suggestion in outcome.suggestions:
        lines.append(
            f"  did you mean {suggestion.name} "
            f"({suggestion.authority}:{suggestion.external_id}, {suggestion.confidence:.2f})?"
        )
    return "\n".join(lines)


def _outcome_json(outcome: ResolutionOutcome) -> dict[str, Any]:
    data = outcome.model_dump(mode="json")
    data["resolved"] = outcome.resolved
    if not outcome.resolved:
        data["message"] = outcome.message
    return data


def _parse_since(value: str) -> datetime.datetime:
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)  # noqa: UP017
    return parsed


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _resolve(args: argparse.Namespace, components: dict[str, Any]) -> int:
    try:
        query = ResolutionQuery(
            raw_text=args.name,
            external_id=args.external_id,
            authority_hint=args.authority,
        )
    except ValidationError as exc:
        print(f"Error: {exc.errors()[0]['msg']}", file=sys.stderr)
        return 2

    outcome = await components["orchestrator"].resolve(query)
    if args.json_output:
        print(json.dumps(_outcome_json(outcome), indent=2, ensure_ascii=False))
    else:
        print(format_outcome(outcome))
    return 0 if outcome.resolved else 1


async def _merge(args: argparse.Namespace, components: dict[str, Any]) -> int:
    survivor = await components["store"].merge(args.source_id, args.into_id)
    if args.json_output:
        print(survivor.model_dump_json(indent=2))
    else:
        print(f"Merged {args.source_id} into {survivor.canonical_name} [{survivor.id}]")
    return 0


async def _export(args: argparse.Namespace, components: dict[str, Any]) -> int:
    batch = await components["export_service"].export(args.since)
    print(batch.model_dump_json(indent=2))
    print(f"{len(batch.entries)} record(s) exported", file=sys.stderr)
    return 0


_COMMANDS = {"resolve": _resolve, "merge": _merge, "export": _export}


async def run(args: argparse.Namespace, components: dict[str, Any] | None = None) -> int:
    """Run the parsed command; builds the resolver from config when needed."""
    owned = components is None
    if components is None:
        from artist_resolver.config.loader import load_settings
        from artist_resolver.main import build_resolver

        components = build_resolver(load_settings(args.config))

    store = components["store"]
    await store.initialize()
    try:
        return await _COMMANDS[args.command](args, components)
    except ResolverError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if owned:
            await store.close()
            await components["http_client"].aclose()


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m artist_resolver.cli",
        description="Resolve artist names and platform ids to canonical artist records.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to the YAML configuration file.",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors (to stderr).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    resolve = commands.add_parser("resolve", help="Resolve one artist reference.")
    resolve.add_argument("name", nargs="?", default=None, help="Free-text artist name.")
    resolve.add_argument("--external-id", default=None, help="Platform artist id.")
    resolve.add_argument(
        "--authority",
        default=None,
        help="Authority the external id belongs to (musicbrainz, discogs, spotify, isni).",
    )
    resolve.add_argument("--json", action="store_true", dest="json_output", help="Print JSON.")

    merge = commands.add_parser("merge", help="Merge one canonical artist into another.")
    merge.add_argument("source_id")
    merge.add_argument("into_id")
    merge.add_argument("--json", action="store_true", dest="json_output", help="Print JSON.")

    export = commands.add_parser("export", help="Print records changed since a cursor as JSON.")
    export.add_argument("--since", type=_parse_since, default=None, help="ISO-8601 cursor.")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    _configure_logs(args)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
