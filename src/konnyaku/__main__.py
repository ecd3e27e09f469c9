"""Main entry point for Konnyaku.

This module is executed when running:
- python -m konnyaku
- konnyaku (via pyproject.toml entry point)
"""

import argparse
import asyncio
import sys

from tqdm import tqdm

from . import log
from .commands import Commands, TranslateRequest
from .config import Config
from .directions import TranslationDirection
from .errors import CommandError, KonnyakuError
from .service import TranslationService


def _parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Offline English <-> Japanese translator"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config file (default: config.yml)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    translate = subparsers.add_parser("translate", help="Translate text")
    translate.add_argument("text", nargs="?", help="Text to translate (default: read stdin)")
    translate.add_argument(
        "--direction", "-d",
        choices=TranslationDirection.supported_tokens(),
        default=TranslationDirection.ENGLISH_TO_JAPANESE.value,
        help="Translation direction (default: en-ja)"
    )

    subparsers.add_parser("status", help="Show model status")
    subparsers.add_parser("download", help="Download the model if needed")
    subparsers.add_parser("init", help="Download and load the model")
    subparsers.add_parser("languages", help="List supported translation directions")

    return parser.parse_args(argv)


class _DownloadProgress:
    """Renders direct download progress as a tqdm bar."""

    def __init__(self):
        self._bar: tqdm | None = None

    def __call__(self, current: int, total: int, filename: str) -> None:
        if self._bar is None:
            self._bar = tqdm(total=total or None, unit="B", unit_scale=True, desc=filename)
        self._bar.update(current - self._bar.n)

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()


async def _run(args: argparse.Namespace, commands: Commands) -> int:
    if args.command == "translate":
        text = args.text if args.text is not None else sys.stdin.read()
        response = await commands.translate(TranslateRequest(text=text, direction=args.direction))
        if not response.success:
            print(response.error, file=sys.stderr)
            return 1
        print(response.translation)
        return 0

    if args.command == "status":
        status = await commands.get_model_status()
        print(f"status: {status.status}")
        print(f"downloaded: {status.downloaded}")
        print(f"loaded: {status.loaded}")
        if status.last_error:
            print(f"last error: {status.last_error}")
        return 0

    if args.command == "download":
        progress = _DownloadProgress()
        try:
            await commands.ensure_model_downloaded(progress)
        finally:
            progress.close()
        return 0

    await commands.initialize_model()
    print("Model ready.")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the command-line interface."""
    args = _parse_arguments(argv)

    config = Config.load(args.config)
    log.configure(level=config.log_level, debug=args.debug)

    if args.command == "languages":
        for token in Commands.get_supported_languages():
            print(token)
        return 0

    try:
        service = TranslationService.create(config)
    except (KonnyakuError, OSError) as e:
        # The service is required for every remaining command
        print(f"Failed to initialize translation service: {e}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run(args, Commands(service)))
    except CommandError as e:
        print(e, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
