"""Command-line entrypoints for exercising the location engine against a backend."""
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

import orjson
from dotenv import load_dotenv

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop unavailable on some platforms
    uvloop = None

from location_engine.errors import LocationError, user_hint
from location_engine.fetch.resolver import LocationResolver
from location_engine.fetch.session import create_location_session
from location_engine.fetch.suggestions import SuggestionFetcher
from location_engine.forms.sync import FormFieldSynchronizer, FormState
from location_engine.observability.log import configure_logging
from location_engine.orchestrator.engine import LocationEngine
from location_engine.orchestrator.tokens import SlotTokens
from location_engine.settings import EngineSettings, load_settings


def _emit(payload: Any) -> None:
    sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())
    sys.stdout.write("\n")


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="location-engine", description="City autocomplete and location resolution")
    parser.add_argument("--settings", default="config/settings.toml", help="Path to settings TOML")
    parser.add_argument("--logging", default="config/logging.yaml", help="Path to logging YAML")
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="List city suggestions for a query")
    search.add_argument("query")
    search.add_argument("--country", help="Optional country filter")
    search.add_argument("--limit", type=int, help="Maximum number of suggestions")

    resolve = sub.add_parser("resolve", help="Resolve a city to state, country and pincode")
    resolve.add_argument("city")
    resolve.add_argument("--state", help="Disambiguating state name")
    resolve.add_argument("--country", help="Country scope (defaults to settings)")

    listing = sub.add_parser("list", help="Page through the administrative location listing")
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--limit", type=int, default=50)
    listing.add_argument("--search", help="Free-text filter")

    simulate = sub.add_parser("simulate", help="Replay typing into an address block and print the form")
    simulate.add_argument("--type", dest="typed", required=True, help="Text typed into the city field")
    choice = simulate.add_mutually_exclusive_group()
    choice.add_argument("--select", type=int, help="Index of the suggestion to select")
    choice.add_argument("--blur", action="store_true", help="Leave the field without selecting")
    simulate.add_argument("--prefix", default="address", help="Dotted path of the field group")

    return parser


async def run_search(args: argparse.Namespace, settings: EngineSettings) -> int:
    async with create_location_session(settings.backend) as session:
        engine = LocationEngine(session, settings=settings)
        fetcher = SuggestionFetcher(
            session,
            SlotTokens(group="cli"),
            metrics=engine.metrics,
            country=args.country or settings.engine.search_country,
            limit=args.limit or settings.engine.suggestion_limit,
        )
        try:
            result = await fetcher.search(args.query)
        except LocationError as exc:
            _emit({"query": args.query, "error": type(exc).__name__, "message": user_hint(exc)})
            return 1
        _emit({
            "query": args.query,
            "no_matches": result.no_matches,
            "suggestions": [item.model_dump() for item in result.suggestions],
        })
    return 0


async def run_resolve(args: argparse.Namespace, settings: EngineSettings) -> int:
    async with create_location_session(settings.backend) as session:
        engine = LocationEngine(session, settings=settings)
        resolver = LocationResolver(
            session,
            engine.cache,
            SlotTokens(group="cli"),
            metrics=engine.metrics,
            default_country=settings.engine.default_country,
        )
        try:
            record = await resolver.resolve(args.city, state=args.state, country=args.country)
        except LocationError as exc:
            _emit({"city": args.city, "error": type(exc).__name__, "message": user_hint(exc)})
            return 1
        _emit({**record.model_dump(), "candidates": record.candidates, "ambiguous": record.is_ambiguous})
    return 0


async def run_list(args: argparse.Namespace, settings: EngineSettings) -> int:
    async with create_location_session(settings.backend) as session:
        try:
            payload = await session.list_locations(page=args.page, limit=args.limit, search=args.search)
        except LocationError as exc:
            _emit({"error": type(exc).__name__, "message": user_hint(exc)})
            return 1
        _emit(payload)
    return 0


async def run_simulate(args: argparse.Namespace, settings: EngineSettings) -> int:
    form = FormState()
    async with create_location_session(settings.backend) as session:
        engine = LocationEngine(session, settings=settings)
        arbiter = engine.arbiter_for(args.prefix, FormFieldSynchronizer(form, prefix=args.prefix))
        form.set(f"{args.prefix}.city", args.typed)
        for end in range(1, len(args.typed) + 1):
            arbiter.on_city_text_changed(args.typed[:end])
        await arbiter.wait_idle()
        view = arbiter.view()
        if args.select is not None and 0 <= args.select < len(view.suggestions):
            arbiter.on_suggestion_selected(view.suggestions[args.select])
        elif args.blur or args.select is not None:
            arbiter.on_city_blurred()
        await arbiter.wait_idle()
        view = arbiter.view()
        _emit({
            "state": view.state.value,
            "message": view.message,
            "pincode_candidates": list(view.pincode_candidates),
            "form": form.values(),
            "metrics": engine.metrics.snapshot(),
        })
        engine.metrics.export(
            path=settings.metrics.export_dir / f"simulate_{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S')}.json",
            session_id=args.prefix,
        )
        return 0 if view.state.value == "resolved" else 1


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(Path(args.settings))
    except ValueError as exc:
        raise SystemExit(f"Failed to load settings: {exc}")
    configure_logging(Path(args.logging))

    if uvloop is not None:
        uvloop.install()

    commands = {
        "search": run_search,
        "resolve": run_resolve,
        "list": run_list,
        "simulate": run_simulate,
    }
    exit_code = asyncio.run(commands[args.command](args, settings))
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
