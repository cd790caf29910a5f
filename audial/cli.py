from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape

from .errors import AudialError
from .events import ClearEvent, DeltaEvent, StatusEvent
from .extract import extract_artifact
from .logging_utils import DEBUG_ENV, configure_logging, log_exception
from .orchestrator import GenerationOrchestrator
from .references import load_reference_library
from .schemas import GenerateRequest
from .settings import GenerationSettings
from .songs import list_songs, parse_song_content, save_song
from .validator import validate_pattern_code

_LOGGER = logging.getLogger("audial.cli")
_CONSOLE = Console()
_POLICY_FLAGS = (
    ("--max-voices", "maxVoices", int),
    ("--max-lines", "maxLines", int),
    ("--max-random-usage", "maxRandomUsage", int),
    ("--max-effects-per-voice", "maxEffectsPerVoice", int),
    ("--max-delay-feedback", "maxDelayFeedback", float),
    ("--max-room-size", "maxRoomSize", float),
)


def _read_source(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _code_from_source(text: str) -> str:
    if "```" not in text:
        return text
    if text.lstrip().startswith("# "):
        return parse_song_content(text).code
    extracted = extract_artifact(text)
    if not extracted.success or extracted.code is None:
        raise AudialError(extracted.error or "no code found")
    return extracted.code


def _policy_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for flag, key, _ in _POLICY_FLAGS:
        value = getattr(args, flag.lstrip("-").replace("-", "_"))
        if value is not None:
            overrides[key] = value
    if args.no_setcpm:
        overrides["requireSetcpm"] = False
    if args.allow_remote_samples:
        overrides["rejectLocalhost"] = False
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="audial")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Validate a pattern file against the policy.")
    validate.add_argument("path", help="Pattern file, song file or '-' for stdin.")
    for flag, _, kind in _POLICY_FLAGS:
        validate.add_argument(flag, type=kind, default=None)
    validate.add_argument("--no-setcpm", action="store_true", help="Do not require setcpm().")
    validate.add_argument("--allow-remote-samples", action="store_true")

    generate = sub.add_parser("generate", help="Generate a composition from a prompt.")
    generate.add_argument("prompt")
    generate.add_argument("--model", type=str, default=None)
    generate.add_argument("--api-key", type=str, default=None)
    generate.add_argument("--edit", type=str, default=None, help="Pattern file to edit.")
    generate.add_argument("--save-dir", type=str, default=None)
    generate.add_argument("--name", type=str, default=None)

    songs = sub.add_parser("songs", help="List saved songs, newest first.")
    songs.add_argument("directory")

    serve = sub.add_parser("serve", help="Run the streaming generation server.")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def _run_validate(args: argparse.Namespace) -> int:
    code = _code_from_source(_read_source(args.path))
    result = validate_pattern_code(code, _policy_overrides(args))
    if result.valid:
        _CONSOLE.print("[green]valid[/green]")
        return 0
    _CONSOLE.print(f"[red]{len(result.issues)} issue(s):[/red]")
    for issue in result.issues:
        _CONSOLE.print(f"- {issue}", markup=False)
    return 1


def _run_songs(args: argparse.Namespace) -> int:
    records = list_songs(Path(args.directory))
    if not records:
        _CONSOLE.print("No saved songs.")
        return 0
    for record in records:
        _CONSOLE.print(f"{record.created_at}  {record.name}  ({record.filename})", markup=False)
    return 0


async def _run_generate(args: argparse.Namespace, settings: GenerationSettings) -> int:
    current_code = _code_from_source(_read_source(args.edit)) if args.edit else None
    request = GenerateRequest(
        prompt=args.prompt,
        mode="edit" if current_code else "new",
        current_code=current_code,
        model=args.model,
        api_key=args.api_key,
    )
    orchestrator = GenerationOrchestrator(settings, references=load_reference_library())
    task = orchestrator.start(request)
    async for event in task.events():
        if isinstance(event, DeltaEvent):
            _CONSOLE.print(event.delta.text, end="", markup=False, highlight=False)
        elif isinstance(event, StatusEvent):
            _CONSOLE.print(f"\n[yellow]{escape(event.status)}[/yellow]")
        elif isinstance(event, ClearEvent):
            _CONSOLE.rule("retry")
    _CONSOLE.print()

    if task.error is not None:
        raise task.error
    assert task.outcome is not None and task.outcome.code is not None
    if args.save_dir:
        path = save_song(Path(args.save_dir), task.outcome.code, name=args.name, prompt=args.prompt)
        _CONSOLE.print(f"Saved to {path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        settings = GenerationSettings.from_env()

        if args.command == "validate":
            return _run_validate(args)

        if args.command == "songs":
            return _run_songs(args)

        if args.command == "generate":
            return asyncio.run(_run_generate(args, settings))

        if args.command == "serve":
            import uvicorn

            from .server import create_app

            uvicorn.run(
                create_app(settings),
                host=args.host or settings.host,
                port=args.port or settings.port,
            )
            return 0

        parser.print_help()
        return 1
    except Exception as exc:
        debug = bool(os.environ.get(DEBUG_ENV))
        _LOGGER.warning("audial CLI failed: %s", exc, exc_info=debug)
        log_exception("audial CLI", exc)
        _CONSOLE.print(f"[red]error:[/red] {escape(str(exc))}", highlight=False)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
