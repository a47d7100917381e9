"""repoindex command line: register, index, search and inspect GitHub repositories."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .config import AppConfig
from .errors import RepoIndexError
from .models import Repository
from .services.indexing import IndexingService, build_service
from .store import SQLiteRepositoryStore

log = logging.getLogger("repoindex.main")

POLL_INTERVAL_S = 1.0


def _print_progress(p) -> None:
    current = f" {p.current_file}" if p.current_file else ""
    print(
        f"[{p.stage.value:>12}] files {p.processed_files}/{p.total_files}  "
        f"blocks {p.indexed_blocks}/{p.total_blocks}{current}",
        flush=True,
    )


async def _index(service: IndexingService, args) -> int:
    result = await service.start_indexing(args.repository_id, token=args.token, reindex=args.reindex)
    if not result.accepted:
        log.error("Indexing not started: %s", result.message)
        return 1

    job_id = result.job_id
    waiter = asyncio.ensure_future(service.wait(job_id))
    try:
        while not waiter.done():
            _print_progress(service.get_progress(job_id))
            await asyncio.wait({waiter}, timeout=POLL_INTERVAL_S)
    except (KeyboardInterrupt, asyncio.CancelledError):
        service.cancel(job_id)
        await waiter
        raise

    progress = await waiter
    print(json.dumps(progress.to_dict(), indent=2))
    return 0 if progress.status.value == "completed" else 1


async def _search(service: IndexingService, args) -> int:
    resp = await service.search(args.repository_id, args.query, min_score=args.min_score, max_results=args.limit)
    if resp.error:
        log.error("Search failed: %s", resp.error)
        return 1
    if not resp.results:
        print("No results found.")
        return 0
    for i, hit in enumerate(resp.results, 1):
        name = f" {hit.identifier}" if hit.identifier else ""
        print(f"\n--- Result {i} (score: {hit.score:.4f}) ---")
        print(f"File: {hit.file_path}:{hit.start_line}-{hit.end_line}  [{hit.block_type}{name}]")
        print(hit.content)
    return 0


async def _stats(service: IndexingService, args) -> int:
    resp = await service.repository_stats(args.repository_id, token=args.token)
    if resp.error:
        log.error("Stats failed: %s", resp.error)
        return 1
    print(json.dumps(resp.model_dump(exclude={"error"}), indent=2))
    print(f"Indexed points: {await service.index.count(args.repository_id)}")
    return 0


async def _delete(service: IndexingService, args) -> int:
    resp = await service.delete_index(args.repository_id)
    if resp.error:
        log.error("Delete failed: %s", resp.error)
        return 1
    print("Index deleted." if resp.deleted else "No index to delete.")
    return 0


async def _run(config: AppConfig, args) -> int:
    service = build_service(config)
    try:
        handler = {"index": _index, "search": _search, "stats": _stats, "delete": _delete}[args.command]
        return await handler(service, args)
    finally:
        await service.close()


def _add_repo(config: AppConfig, args) -> int:
    owner, _, name = args.full_name.partition("/")
    if not owner or not name:
        log.error("Repository must be given as owner/name, got %r", args.full_name)
        return 2
    store = SQLiteRepositoryStore(config.store.db_path)
    try:
        store.upsert(Repository(id=args.repository_id, full_name=args.full_name, owner_login=owner, name=name))
    finally:
        store.close()
    print(f"Registered {args.full_name} as repository {args.repository_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repoindex",
        description="Index GitHub repositories into Qdrant for semantic code search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s add-repo 1 octocat/hello-world
  %(prog)s index 1
  %(prog)s index 1 --reindex
  %(prog)s search 1 "where are retries configured" --limit 5
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--db", default=None, help="SQLite repository database (default: $REPOINDEX_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add-repo", help="Register a repository")
    p.add_argument("repository_id", type=int)
    p.add_argument("full_name", help="owner/name")

    p = sub.add_parser("index", help="Index (or incrementally update) a repository")
    p.add_argument("repository_id", type=int)
    p.add_argument("--reindex", action="store_true", help="Clear the index and rebuild it from scratch")
    p.add_argument("--token", default=None, help="GitHub token (default: $GITHUB_TOKEN)")

    p = sub.add_parser("search", help="Semantic search over an indexed repository")
    p.add_argument("repository_id", type=int)
    p.add_argument("query")
    p.add_argument("--min-score", type=float, default=None, help="Minimum similarity score (0-1)")
    p.add_argument("--limit", "-k", type=int, default=None, help="Maximum number of results")

    p = sub.add_parser("stats", help="File and language totals for a repository")
    p.add_argument("repository_id", type=int)
    p.add_argument("--token", default=None)

    p = sub.add_parser("delete", help="Delete a repository's index")
    p.add_argument("repository_id", type=int)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s [%(levelname)s] %(message)s",
    )

    config = AppConfig()
    if args.db:
        config.store.db_path = args.db

    try:
        if args.command == "add-repo":
            return _add_repo(config, args)
        return asyncio.run(_run(config, args))
    except RepoIndexError as e:
        log.error("%s", e)
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
