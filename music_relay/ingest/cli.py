"""CLI entry point for Telegram ingestion.

Usage:
    uv run python -m music_relay.ingest listen        # index new posts as they arrive
    uv run python -m music_relay.ingest scan          # one-shot scan of the chat history
    uv run python -m music_relay.ingest detect-chat   # find the chat id and save it to .env
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from music_relay.catalog.store import CatalogStore, StoreUnavailableError
from music_relay.db.engine import async_session_factory, engine, init_models
from music_relay.ingest.chat import resolve_chat_id, update_env_file, wait_for_chat
from music_relay.ingest.poller import UpdatePoller
from music_relay.ingest.prober import probe_max_message_id
from music_relay.ingest.scanner import HistoricalScanner
from music_relay.settings import settings
from music_relay.telegram.client import BotApiClient, TelegramError
from music_relay.telegram.existence import ForwardDeleteChecker, RetryingChecker

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m music_relay.ingest")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("listen", help="Long-poll for new audio posts")

    scan = sub.add_parser("scan", help="Scan the chat history once")
    scan.add_argument(
        "--max-id",
        type=int,
        default=None,
        help="Exclusive upper bound for message ids (skips probing)",
    )
    scan.add_argument(
        "--refine",
        action="store_true",
        help="Binary-search the probed range for a tighter upper bound",
    )

    detect = sub.add_parser("detect-chat", help="Wait for a chat and record its id")
    detect.add_argument("--env-file", type=Path, default=Path(".env"))
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the ingestion CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = _build_parser().parse_args(argv)

    if not settings.telegram_bot_token:
        print("Error: TELEGRAM_BOT_TOKEN is not set", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    try:
        asyncio.run(_dispatch(args))
    except StoreUnavailableError as exc:
        print(f"Error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(2)
    except KeyboardInterrupt:
        log.info("Interrupted")


async def _dispatch(args: argparse.Namespace) -> None:
    async with BotApiClient(
        settings.telegram_bot_token,
        api_base=settings.telegram_api_base,
        timeout=settings.check_timeout_seconds,
    ) as client:
        try:
            me = await client.get_me()
        except TelegramError as exc:
            print(f"Error: failed to connect to Telegram: {exc}", file=sys.stderr)  # noqa: T201
            sys.exit(1)
        log.info("Bot: @%s", me.get("username"))

        if args.command == "detect-chat":
            chat = await wait_for_chat(client)
            update_env_file(args.env_file, "TELEGRAM_CHANNEL_ID", chat["id"])
            return

        await init_models()
        store = CatalogStore(async_session_factory)
        try:
            if args.command == "listen":
                await _listen(client, store)
            elif args.command == "scan":
                await _scan(client, store, args.max_id, args.refine)
        finally:
            await engine.dispose()


async def _listen(client: BotApiClient, store: CatalogStore) -> None:
    log.info("Tracks: %d indexed", await store.count_tracks())
    log.info("Topics: %d", len(await store.get_topic_ids()))

    poller = UpdatePoller(
        client,
        store,
        poll_timeout=settings.poll_timeout_seconds,
        retry_delay=settings.poll_retry_delay_seconds,
        chat_id=settings.telegram_channel_id,
    )
    await poller.run()


async def _scan(
    client: BotApiClient, store: CatalogStore, max_id: int | None, refine: bool
) -> None:
    chat_id, detected = await resolve_chat_id(client, settings.telegram_channel_id)
    if detected:
        update_env_file(Path(".env"), "TELEGRAM_CHANNEL_ID", chat_id)

    checker = RetryingChecker(
        ForwardDeleteChecker(client, chat_id, timeout=settings.check_timeout_seconds),
        attempts=settings.scan_retry_attempts,
        delay=settings.scan_retry_delay_seconds,
    )

    if max_id is None:
        max_id = await probe_max_message_id(checker, settings.probe_start, refine=refine)

    scanner = HistoricalScanner(
        checker,
        store,
        chat_id,
        batch_size=settings.scan_batch_size,
        flush_threshold=settings.scan_flush_threshold,
    )
    report = await scanner.scan(max_id)

    # Print summary
    print(f"\n{'=' * 60}")  # noqa: T201
    print("Scan Report")  # noqa: T201
    print(f"{'=' * 60}")  # noqa: T201
    print(f"Message range: 1-{report.max_id}")  # noqa: T201
    print(f"Scanned:       {report.scanned}")  # noqa: T201
    print(f"Found:         {report.found}")  # noqa: T201
    print(f"Indexed:       {report.created}")  # noqa: T201
    print(f"Duplicates:    {report.duplicates}")  # noqa: T201
    print(f"Errors:        {report.errors}")  # noqa: T201
    print(f"Total tracks:  {await store.count_tracks()}")  # noqa: T201
    print(f"{'=' * 60}")  # noqa: T201


if __name__ == "__main__":
    main()
