from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .app import AskImageApp
from .config import (
    CONFIG_PATH,
    CURRENT_SETTINGS_VERSION,
    SETTINGS_VERSION,
    ConfigStore,
    get_default_model,
    is_first_time_setup,
    reset_settings,
    set_default_model,
)
from .credentials import CredentialResolver, mask_api_key
from .errors import InvalidFormatError
from .gemini import check_connection
from .lifecycle import RequestLifecycle
from .state import Cancelled, Failure, Outcome, Success
from .transport import HttpxTransport

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# The TUI owns the terminal, so it logs to a file instead.
TUI_LOG_PATH = Path.home() / ".local" / "share" / "askimage" / "askimage.log"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="askimage",
        description="Ask Gemini questions about images from the terminal.",
    )
    parser.add_argument("--config", type=Path, default=CONFIG_PATH, help=f"Settings file (default: {CONFIG_PATH})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    ui_parser = subparsers.add_parser("ui", help="Open the image gallery; hold the mouse on an image to ask")
    ui_parser.add_argument("images", nargs="*", help="Image URLs, data URIs or file paths")
    ui_parser.set_defaults(func=ui_command)

    ask_parser = subparsers.add_parser("ask", help="Ask one question about an image")
    ask_parser.add_argument("image", help="Image URL, data URI or file path")
    ask_parser.add_argument("question", help="Question about the image")
    ask_parser.add_argument("--model", help="Model name (default: configured default model)")
    ask_parser.add_argument("--timeout", type=float, default=60.0, help="API timeout in seconds (default: 60)")
    ask_parser.set_defaults(func=ask_command)

    config_parser = subparsers.add_parser("config", help="Show or change settings")
    config_sub = config_parser.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show", help="Print the effective settings").set_defaults(func=config_show_command)
    set_key = config_sub.add_parser("set-key", help="Store the API key")
    set_key.add_argument("value")
    set_key.set_defaults(func=config_set_key_command)
    set_url = config_sub.add_parser("set-url", help="Store the API base URL")
    set_url.add_argument("value")
    set_url.set_defaults(func=config_set_url_command)
    set_model = config_sub.add_parser("set-model", help="Store the default model")
    set_model.add_argument("value")
    set_model.set_defaults(func=config_set_model_command)
    config_sub.add_parser("reset", help="Clear all stored settings").set_defaults(func=config_reset_command)
    config_sub.add_parser("test", help="Test the API connection").set_defaults(func=config_test_command)

    return parser


def configure_logging(verbose: bool, filename: Path | None = None) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    if filename is not None:
        filename.parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=str(filename))
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT)


def _resolver(args: argparse.Namespace) -> CredentialResolver:
    return CredentialResolver(ConfigStore(args.config))


def report_outcome(outcome: Outcome) -> int:
    if isinstance(outcome, Success):
        print(outcome.text)
        return EXIT_OK
    if isinstance(outcome, Failure):
        print(f"Error ({outcome.kind.value}): {outcome.message}", file=sys.stderr)
        return EXIT_FAILURE
    print("Request cancelled.", file=sys.stderr)
    return EXIT_CANCELLED


def ui_command(args: argparse.Namespace) -> int:
    AskImageApp(getattr(args, "images", []), store=ConfigStore(args.config)).run()
    return EXIT_OK


def ask_command(args: argparse.Namespace) -> int:
    lifecycle = RequestLifecycle(_resolver(args), HttpxTransport(timeout=args.timeout), timeout=args.timeout)
    try:
        outcome = asyncio.run(lifecycle.ask(args.image, args.question, args.model))
    except KeyboardInterrupt:
        outcome = Cancelled("interrupted")
    return report_outcome(outcome)


def config_show_command(args: argparse.Namespace) -> int:
    resolver = _resolver(args)
    credential = resolver.credential
    print(f"config file:      {args.config}")
    print(f"api base url:     {resolver.base_url}")
    print(f"api key:          {mask_api_key(credential.api_key)} ({credential.source.value})")
    print(f"default model:    {get_default_model(resolver.store)}")
    print(f"setup completed:  {not is_first_time_setup(resolver.store)}")
    print(f"settings version: {resolver.store.get(SETTINGS_VERSION, CURRENT_SETTINGS_VERSION)}")
    return EXIT_OK


def config_set_key_command(args: argparse.Namespace) -> int:
    try:
        credential = _resolver(args).set_api_key(args.value)
    except InvalidFormatError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    print(f"API key saved: {mask_api_key(credential.api_key)}")
    return EXIT_OK


def config_set_url_command(args: argparse.Namespace) -> int:
    try:
        url = _resolver(args).set_base_url(args.value)
    except InvalidFormatError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    print(f"API base URL saved: {url}")
    return EXIT_OK


def config_set_model_command(args: argparse.Namespace) -> int:
    if not set_default_model(ConfigStore(args.config), args.value):
        print("Error: model name must not be empty", file=sys.stderr)
        return EXIT_FAILURE
    print(f"Default model saved: {args.value.strip()}")
    return EXIT_OK


def config_reset_command(args: argparse.Namespace) -> int:
    reset_settings(ConfigStore(args.config))
    print("Settings reset.")
    return EXIT_OK


def config_test_command(args: argparse.Namespace) -> int:
    resolver = _resolver(args)
    check = asyncio.run(check_connection(HttpxTransport(), resolver.base_url, resolver.credential.api_key))
    print(check.detail, file=sys.stdout if check.ok else sys.stderr)
    return EXIT_OK if check.ok else EXIT_FAILURE


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    if not args.command:
        configure_logging(args.verbose, TUI_LOG_PATH)
        sys.exit(ui_command(args))
    configure_logging(args.verbose, TUI_LOG_PATH if args.command == "ui" else None)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
