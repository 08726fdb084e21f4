"""Command-line interface for the content archiver."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid

import httpx

from .config import get_settings
from .jobs import create_archive, perform_archive
from .state_machine import ArchiveStateMachine
from .store import JsonArchiveStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    p = argparse.ArgumentParser(
        prog="content-archiver",
        description="Archive web pages: fetch safely, extract, sanitize, and track state.",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    # --- archive ---
    archive = sub.add_parser("archive", help="Create an archive for a URL and run it")
    archive.add_argument("url", help="URL to archive")
    archive.add_argument(
        "--link-id", default=None, help="Saved-link ID (default: random)"
    )

    # --- show ---
    show = sub.add_parser("show", help="Print a stored archive")
    show.add_argument("archive_id")

    # --- history ---
    history = sub.add_parser("history", help="Print an archive's state transitions")
    history.add_argument("archive_id")

    return p


def _configure_logging(verbose: bool) -> None:
    """Set up root logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    settings = get_settings()
    store = JsonArchiveStore(settings.store_dir)

    if args.cmd == "archive":
        link_id = args.link_id or uuid.uuid4().hex
        created = create_archive(store, link_id=link_id, url=args.url)
        if created.is_failure:
            logger.error("%s", created.error)
            return 1

        archive_id = created.data.id
        try:
            result = perform_archive(archive_id, store=store, settings=settings)
        except httpx.TimeoutException:
            logger.error("Archive %s timed out; it remains in processing", archive_id)
            return 1

        record = store.get(archive_id)
        _print_json(
            {
                "archive_id": record.id,
                "state": record.current_state.value,
                "title": record.title,
                "error_message": record.error_message,
            }
        )
        return 0 if result is not None and result.is_success else 1

    try:
        record = store.get(args.archive_id)
    except KeyError as exc:
        logger.error("%s", exc.args[0])
        return 1

    if args.cmd == "show":
        _print_json(record.model_dump(mode="json", exclude={"transitions"}))
        return 0

    if args.cmd == "history":
        machine = ArchiveStateMachine(record)
        _print_json([t.model_dump(mode="json") for t in machine.history()])
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
