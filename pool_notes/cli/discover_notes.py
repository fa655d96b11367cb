#!/usr/bin/env python3
# pool_notes/cli/discover_notes.py
# Scan a pool's activity feed for the notes owned by an account key.
#
#   python -m pool_notes.cli.discover_notes discover --pool 0x... --public-key alice
#   python -m pool_notes.cli.discover_notes notes --pool 0x... --public-key alice
#
# The account key is read from --account-key or $POOL_NOTES_ACCOUNT_KEY.

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from typing import Optional

from pool_notes import config
from pool_notes.api.logging_config import setup_logging
from pool_notes.crypto_core.commitments import deposit_commitment
from pool_notes.crypto_core.derivation import parse_account_key
from pool_notes.database import config as db_config
from pool_notes.database.note_cache import MemoryNoteCache, SqlNoteCache
from pool_notes.discovery.errors import DiscoveryError
from pool_notes.discovery.models import DiscoveryProgress, RunState
from pool_notes.discovery.orchestrator import DiscoveryIdentity, NoteDiscovery
from pool_notes.discovery.progress import ProgressStream
from pool_notes.indexer.client import IndexerClient


# ======== Color accents (no deps) ========
class C:
    OK   = "\033[92m"
    WARN = "\033[93m"
    ERR  = "\033[91m"
    DIM  = "\033[2m"
    BOLD = "\033[1m"
    RST  = "\033[0m"


def _short(value: Optional[str]) -> str:
    return f"{value[:6]}…{value[-4:]}" if value and len(value) > 12 else (value or "-")


def _account_key(args: argparse.Namespace) -> int:
    raw = args.account_key or os.getenv("POOL_NOTES_ACCOUNT_KEY", "")
    try:
        return parse_account_key(raw)
    except ValueError as e:
        raise SystemExit(f"{C.ERR}Invalid account key: {e}{C.RST}")


async def _open_cache(args: argparse.Namespace):
    """Returns (cache, engine); engine is None for the in-memory cache."""
    if args.memory:
        return MemoryNoteCache(), None
    engine = db_config.create_engine(args.database_url)
    cache = SqlNoteCache(engine, db_config.get_encryptor())
    await cache.init()
    return cache, engine


# ======== Rendering ========
def _print_progress(p: DiscoveryProgress) -> None:
    line = (
        f"{C.DIM}page {p.pages_processed:>4}  records {p.records_seen:>7}  "
        f"checked {p.deposits_checked:>5}  matched {p.deposits_matched:>3}  "
        f"notes +{p.notes_appended:<3}{C.RST}"
    )
    print("\r" + line, end="\n" if p.complete else "", file=sys.stderr, flush=True)


def _print_chains(chains) -> None:
    if not chains:
        print(f"{C.WARN}No notes found.{C.RST}")
        return
    print(f"{C.BOLD}{'deposit':>7} {'change':>6} {'amount':>24}  {'status':<8} {'tx':<14} spent_by{C.RST}")
    total = 0
    for chain in chains:
        for note in chain.notes:
            colour = C.OK if note.status == "unspent" else C.DIM
            print(
                f"{colour}{note.deposit_index:>7} {note.change_index:>6} {note.amount:>24}  "
                f"{note.status:<8} {_short(note.transaction_hash):<14} {_short(note.spent_by)}{C.RST}"
            )
        total += chain.remaining
    live = sum(1 for c in chains if c.is_live)
    print(f"\n{C.BOLD}{len(chains)} chain(s), {live} live, balance {total}{C.RST}")


# ======== Commands ========
async def cmd_discover(args: argparse.Namespace) -> int:
    identity = DiscoveryIdentity(public_key=args.public_key, account_key=_account_key(args))
    cache, engine = await _open_cache(args)
    cancellation = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancellation.set)
    except (NotImplementedError, RuntimeError):
        pass  # Windows: Ctrl+C raises KeyboardInterrupt instead

    progress = ProgressStream()
    if not args.quiet:
        progress.add_listener(_print_progress)

    try:
        async with IndexerClient(args.indexer_url, page_size=args.page_size) as indexer:
            discovery = NoteDiscovery(indexer, cache, gap_lookahead=args.gap_lookahead)
            result = await discovery.discover(identity, args.pool, cancellation, progress)
    except DiscoveryError as e:
        hint = "re-run to resume from the last saved page" if e.retryable else "cached data needs attention"
        print(f"{C.ERR}Discovery failed: {e}{C.RST}  {C.DIM}({hint}){C.RST}", file=sys.stderr)
        return 1
    finally:
        if engine is not None:
            await engine.dispose()

    if result.state == RunState.CANCELLED:
        print(f"{C.WARN}Cancelled; progress saved up to cursor {_short(result.cursor)}.{C.RST}")
    else:
        print(f"{C.OK}Done: {result.new_notes_found} new deposit(s), next deposit index {result.last_used_index + 1}{C.RST}")
    _print_chains(result.chains)
    return 0 if result.state == RunState.COMPLETED else 130


async def cmd_notes(args: argparse.Namespace) -> int:
    cache, engine = await _open_cache(args)
    try:
        cached = await cache.get(args.public_key, args.pool)
    finally:
        if engine is not None:
            await engine.dispose()
    if cached is None:
        print(f"{C.WARN}Nothing cached for this identity and pool; run 'discover' first.{C.RST}")
        return 0
    print(f"{C.DIM}synced {cached.sync_time}, cursor {_short(cached.cursor)}{C.RST}")
    _print_chains(cached.chains)
    return 0


async def cmd_next_deposit(args: argparse.Namespace) -> int:
    account_key = _account_key(args)
    cache, engine = await _open_cache(args)
    try:
        index = await cache.next_deposit_index(args.public_key, args.pool)
    finally:
        if engine is not None:
            await engine.dispose()
    dc = deposit_commitment(account_key, args.pool, index)
    print(f"deposit_index  {dc.deposit_index}")
    print(f"precommitment  {hex(dc.precommitment)}")
    return 0


async def cmd_clear(args: argparse.Namespace) -> int:
    cache, engine = await _open_cache(args)
    try:
        removed = await cache.clear(args.public_key, args.pool)
    finally:
        if engine is not None:
            await engine.dispose()
    print(f"{C.OK}Cache cleared.{C.RST}" if removed else f"{C.DIM}Nothing to clear.{C.RST}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="discover_notes", description="Private note discovery for shielded pools")
    parser.add_argument("--database-url", default=None, help="Note cache URL (default: $NOTE_CACHE_DATABASE_URL)")
    parser.add_argument("--memory", action="store_true", help="Use a throwaway in-memory cache")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING... (default: $LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    def scoped(name: str, help_: str, with_key: bool) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_)
        p.add_argument("--pool", required=True, help="Pool identifier (contract address)")
        p.add_argument("--public-key", required=True, help="Public identity that scopes the cache")
        if with_key:
            p.add_argument("--account-key", default=None, help="Account key (prefer $POOL_NOTES_ACCOUNT_KEY)")
        return p

    p = scoped("discover", "Scan the activity feed and update the cache", True)
    p.add_argument("--indexer-url", default=config.INDEXER_URL)
    p.add_argument("--page-size", type=int, default=config.INDEXER_PAGE_SIZE)
    p.add_argument("--gap-lookahead", type=int, default=config.DISCOVERY_GAP_LOOKAHEAD,
                   help="Extra deposit indices to probe past a missing one (0 = never skip)")
    p.add_argument("--quiet", action="store_true", help="No progress line")
    p.set_defaults(func=cmd_discover)

    scoped("notes", "Show cached chains without querying the indexer", False).set_defaults(func=cmd_notes)
    scoped("next-deposit", "Next deposit index and its precommitment", True).set_defaults(func=cmd_next_deposit)
    scoped("clear", "Delete the cached notes for this identity and pool", False).set_defaults(func=cmd_clear)
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        return 130
    except RuntimeError as e:
        print(f"{C.ERR}{e}{C.RST}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
