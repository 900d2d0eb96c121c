"""
Command line entry point: ``python -m ai_completer``.

Subcommands:
- rewrite: rewrite a file (or a character range of it), streaming progress
  to stderr
- test: send a minimal prompt to check the active provider and model
- models: list the provider's models, optionally saving them to settings
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import aiofiles

from .config import Configuration
from .editor.context import StringBuffer, apply_rewrite, collect_context
from .editor.view_model import FALLBACK_INSTRUCTIONS, STATUS_EMPTY
from .llm.client import CompletionClient
from .llm.exceptions import ConfigurationError, RewriteError
from .llm.models import RewriteRequest
from .logging_utils import RewriteErrorHandler, configure_logging, operation_context
from .providers.models import Provider, RewriteSettings
from .providers.registry import resolve_active
from .providers.settings_store import SettingsStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_EMPTY = 2
EXIT_INTERRUPTED = 130


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ai_completer",
        description="Rewrite Markdown with OpenAI-compatible chat-completion providers.",
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        help="Path to a YAML config file (default: the bundled config.yaml).",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        help="Path to the settings JSON file (default: settings.path from the config).",
    )
    parser.add_argument("--provider", help="Provider id to use instead of the active one.")
    parser.add_argument("--model", help="Model to use instead of the active one.")
    parser.add_argument("--log-level", help="Logging level (default: logging.level from the config).")

    subparsers = parser.add_subparsers(dest="command", required=True)

    rewrite = subparsers.add_parser("rewrite", help="Rewrite a file or a range of it.")
    rewrite.add_argument("file", type=Path, help="Markdown file to rewrite.")
    rewrite.add_argument(
        "-i",
        "--instructions",
        default="",
        help="How to change the text (default: a general clarity rewrite).",
    )
    rewrite.add_argument("--start", type=int, default=0, help="Start character offset.")
    rewrite.add_argument("--end", type=int, help="End character offset (default: end of file).")
    rewrite.add_argument(
        "--in-place",
        action="store_true",
        help="Write the result back into the file instead of printing it.",
    )

    subparsers.add_parser("test", help="Check the provider connection.")

    models = subparsers.add_parser("models", help="List the provider's models.")
    models.add_argument(
        "--save",
        action="store_true",
        help="Store the fetched list on the provider in the settings file.",
    )

    return parser.parse_args(argv)


def select_target(settings: RewriteSettings, args: argparse.Namespace) -> tuple[Provider, str]:
    """Active provider and model after command line overrides."""
    if args.provider and settings.get_provider(args.provider) is None:
        raise ConfigurationError(f"Unknown provider '{args.provider}'.")

    provider, model = resolve_active(
        settings.providers,
        args.provider or settings.active_provider_id,
        settings.active_model,
    )
    if args.model and args.model.strip():
        model = args.model.strip()
    return provider, model


class ProgressPrinter:
    """Writes newly streamed text to stderr as partial updates arrive."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr
        self._printed = 0

    def __call__(self, partial: str, done: bool) -> None:
        if done:
            if self._printed:
                self.stream.write("\n")
                self.stream.flush()
            return
        self.stream.write(partial[self._printed:])
        self.stream.flush()
        self._printed = len(partial)


async def run_rewrite(
    args: argparse.Namespace,
    client: CompletionClient,
    settings: RewriteSettings,
    provider: Provider,
    model: str,
) -> int:
    async with aiofiles.open(args.file, encoding="utf-8") as f:
        document = await f.read()

    end = len(document) if args.end is None else args.end
    buffer = StringBuffer(document)
    selected_text = buffer.get_range(args.start, end)
    if not selected_text.strip():
        print("The selected text is empty and cannot be sent to the AI.", file=sys.stderr)
        return EXIT_FAILED

    context = collect_context(document, args.start, end, settings.max_context_characters)
    request = RewriteRequest(
        instructions=args.instructions.strip() or FALLBACK_INSTRUCTIONS,
        selected_text=selected_text,
        before_text=context.before,
        after_text=context.after,
        note_title=args.file.stem,
    )

    rewritten = await client.rewrite_streaming(request, provider, model, ProgressPrinter())

    if args.in_place:
        apply_rewrite(buffer, args.start, end, rewritten)
        async with aiofiles.open(args.file, "w", encoding="utf-8") as f:
            await f.write(buffer.get_value())
        print(f"Rewrote {args.file}", file=sys.stderr)
    else:
        print(rewritten)
    return EXIT_OK


async def run_models(
    args: argparse.Namespace,
    client: CompletionClient,
    store: SettingsStore,
    provider: Provider,
) -> int:
    models = await client.list_models(provider)
    for model in models:
        print(model)
    if args.save:
        await store.record_model_sync(provider.id, models)
        print(f"Saved {len(models)} models for {provider.name}", file=sys.stderr)
    return EXIT_OK


async def run(args: argparse.Namespace, config: Configuration) -> int:
    settings_config = config.get_settings_config()
    store = SettingsStore(
        str(args.settings or settings_config["path"]),
        lock_timeout=settings_config["lock_timeout"],
    )

    try:
        settings = await store.load()
        provider, model = select_target(settings, args)

        async with operation_context(
            f"cli_{args.command}",
            context={"provider": provider.name, "model": model},
        ):
            async with CompletionClient(lambda: store.snapshot, config=config) as client:
                if args.command == "rewrite":
                    return await run_rewrite(args, client, settings, provider, model)
                if args.command == "test":
                    await client.test_connection(provider, model)
                    print(f"Connection to {provider.name} ({model}) succeeded.")
                    return EXIT_OK
                return await run_models(args, client, store, provider)

    except RewriteError as e:
        if RewriteErrorHandler.is_informational(e):
            print(e.message if args.command == "models" else STATUS_EMPTY, file=sys.stderr)
            return EXIT_EMPTY
        print(f"Request failed: {e.message}", file=sys.stderr)
        return EXIT_FAILED
    except (OSError, ValueError) as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    config = Configuration(str(args.config_file) if args.config_file else None)
    configure_logging(args.log_level or config.get_logging_config().get("level", "INFO"))

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
