"""
MiD diary terminal: command line entry point and read-eval loop.
"""

import argparse
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from rich.logging import RichHandler

from dispatcher import Dispatcher
from store import API_BASE, API_TOKEN, OUTBOX_PATH, StoreError, build_stores
from ui import (
    ask_image_path,
    console,
    display_error,
    display_messages,
    display_success,
    display_welcome,
    get_user_input,
)

load_dotenv()

USERNAME = os.getenv("MID_USERNAME", "User")
LOG_LEVEL = os.getenv("MID_LOG_LEVEL", "WARNING")

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="MiD diary terminal")
    parser.add_argument(
        "--api-base",
        default=API_BASE,
        help="Base URL of the diary backend (default: $MID_API_BASE)",
    )
    parser.add_argument(
        "--token",
        default=API_TOKEN,
        help="Bearer token for the backend (default: $MID_API_TOKEN)",
    )
    parser.add_argument(
        "--user",
        default=USERNAME,
        help="Name shown for your own lines (default: $MID_USERNAME)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log requests and parsed commands",
    )
    parser.add_argument(
        "--flush-outbox",
        action="store_true",
        help="Send creates saved locally while the backend was unavailable, then exit",
    )
    return parser.parse_args(argv)


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else getattr(logging, LOG_LEVEL.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def flush_outbox(stores) -> int:
    if stores.outbox is None:
        display_error("No outbox configured.")
        return 1
    result = stores.outbox.flush(stores.memories, stores.media)
    logger.info("Outbox flush: %s", result)
    if result["remaining"]:
        display_error(f"Sent {result['sent']} queued entries; {result['remaining']} still waiting.")
        return 1
    display_success(f"Sent {result['sent']} queued entries.")
    return 0


def pick_image(dispatcher: Dispatcher):
    """Ask for the file the image builder is waiting on and hand it over."""
    path_text = ask_image_path()
    if not path_text:
        display_messages(dispatcher.handle("cancel"), skip_echo=dispatcher.username)
        return
    path = Path(path_text).expanduser()
    try:
        content = path.read_bytes()
    except OSError as e:
        display_error(f"Cannot read {path}: {e}")
        return
    display_messages(dispatcher.select_file(path.name, content, str(path.resolve())))


def run(dispatcher: Dispatcher):
    display_welcome(dispatcher.username)
    display_messages(dispatcher.greeting())

    while True:
        if dispatcher.awaiting_file():
            pick_image(dispatcher)
            continue

        user_input = get_user_input(dispatcher.username)
        lowered = user_input.lower()
        if lowered == "quit" or (lowered == "exit" and not dispatcher.active):
            console.print("Goodbye!", style="bold #FF10F0")
            break

        display_messages(dispatcher.handle(user_input), skip_echo=dispatcher.username)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)

    stores = build_stores(args.api_base, args.token, OUTBOX_PATH)

    if args.flush_outbox:
        try:
            return flush_outbox(stores)
        except StoreError as e:
            display_error(f"Error: {e}")
            return 1

    run(Dispatcher(stores, username=args.user))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
