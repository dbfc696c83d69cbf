#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from sparsetree.adapters.familysearch import FamilySearchFetcher
from sparsetree.adapters.sqlalchemy.unit_of_work import startup
from sparsetree.app import GraphEngine
from sparsetree.common.logging import configure_logging
from sparsetree.config.errors import ConfigurationError
from sparsetree.config.familysearch import get_familysearch_config
from sparsetree.domain.graph import PathMethod
from sparsetree.domain.indexer import IndexRequest
from sparsetree.domain.model import CacheMode, CrawlDirection, JobStatus, Source

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import FrameType

    from sparsetree.app import OperationResult
    from sparsetree.domain.discovery import DiscoveryEvent
    from sparsetree.domain.graph import PathResult, TreeNode
    from sparsetree.domain.model import DatabaseInfo, Person
    from sparsetree.domain.ports.audit import PayloadAgeRow
    from sparsetree.domain.ports.progress import ProgressEvent


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl and audit a genealogy graph")
    parser.add_argument("--database-uri", help="SQLAlchemy URI of the graph store")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Crawl a family tree from a root person")
    index.add_argument("root", help="Provider id of the root person")
    index.add_argument("--generations", type=int, help="Maximum generations to crawl")
    index.add_argument(
        "--cache-mode",
        choices=[mode.value for mode in CacheMode],
        default=CacheMode.PREFER_CACHE.value,
        help="How stored payloads are reused (default: %(default)s)",
    )
    index.add_argument(
        "--direction",
        choices=[direction.value for direction in CrawlDirection],
        default=CrawlDirection.ANCESTORS.value,
        help="Which relatives to follow (default: %(default)s)",
    )
    index.add_argument(
        "--ignore", action="append", default=[], metavar="ID", help="Provider id to skip"
    )
    index.add_argument("--oldest-year", type=int, help="Do not expand people born earlier")

    path = commands.add_parser("path", help="Find a descent path between two people")
    path.add_argument("db_id", help="Graph id (the root's canonical id)")
    path.add_argument("source", help="Ancestor (canonical or provider id)")
    path.add_argument("target", help="Descendant (canonical or provider id)")
    path.add_argument(
        "--method",
        choices=[method.value for method in PathMethod],
        default=PathMethod.SHORTEST.value,
        help="Path selection (default: %(default)s)",
    )

    tree = commands.add_parser("tree", help="Print the ancestors or descendants of a person")
    tree.add_argument("db_id")
    tree.add_argument("person")
    tree.add_argument("--depth", type=int, default=4, help="Levels to show (default: %(default)s)")
    tree.add_argument(
        "--direction",
        choices=[CrawlDirection.ANCESTORS.value, CrawlDirection.DESCENDANTS.value],
        default=CrawlDirection.ANCESTORS.value,
    )

    integrity = commands.add_parser("integrity", help="Report integrity of a graph")
    integrity.add_argument("db_id")
    integrity.add_argument("--provider", help="Only report gaps for this provider")
    integrity.add_argument(
        "--discover",
        action="store_true",
        help="Try to close parent-link gaps using the provider",
    )

    search = commands.add_parser("search", help="Full-text search over people")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=20)

    commands.add_parser("databases", help="List indexed graphs")

    stale = commands.add_parser("stale", help="List records due for a refresh")
    stale.add_argument("--source")
    stale.add_argument("--days", type=int, help="Age threshold in days")

    return parser.parse_args(list(argv))


def _print_progress(event: ProgressEvent) -> None:
    if event.current is None:
        print(f"[{event.phase}] {event.message or ''}".rstrip())
        return
    print(f"[{event.phase}] {event.fetched}/{event.total_estimate} {event.current}")


def _print_discovery(event: DiscoveryEvent) -> None:
    print(
        f"[{event.type}] {event.current}/{event.total} discovered={event.discovered} "
        f"skipped={event.skipped} errors={event.errors} {event.message}".rstrip()
    )


def _print_path(result: PathResult) -> None:
    if not result.found:
        print(f"No {result.method} path from {result.source} to {result.target}")
        return
    print(" -> ".join(result.path))
    for violation in result.cycles:
        print(f"  {violation.kind}: {violation.message}")


def _print_people(people: list[Person]) -> None:
    for person in people:
        print(f"{person.person_id}  {person.display_name or '?'}")


def _print_databases(infos: list[DatabaseInfo]) -> None:
    for info in infos:
        print(f"{info.db_id}  {info.root_name or '?'}  {info.person_count} people")


def _print_stale(rows: list[PayloadAgeRow]) -> None:
    for row in rows:
        name = row.display_name or "?"
        print(f"{row.source}:{row.external_id}  {name}  {row.fetched_at:%Y-%m-%d}")


def _print_tree(node: TreeNode, indent: int = 0) -> None:
    print(f"{'  ' * indent}{node.person_id}")
    for branch in node.branches:
        _print_tree(branch, indent + 1)


def _report[T](result: OperationResult[T], render: Callable[[T], None] | None = None) -> int:
    if not result.ok:
        print(f"Error ({result.status}): {result.message}", file=sys.stderr)
        return 1
    if render is not None and result.value is not None:
        render(result.value)
    elif result.message:
        print(result.message)
    return 0


def _run_index(args: argparse.Namespace) -> int:
    fetcher = FamilySearchFetcher(config=get_familysearch_config())
    engine = GraphEngine(fetchers={Source.FAMILYSEARCH: fetcher}, progress=_print_progress)
    request = IndexRequest(
        root_external_id=args.root,
        max_generations=args.generations,
        cache_mode=CacheMode(args.cache_mode),
        direction=CrawlDirection(args.direction),
        ignore_ids=frozenset(args.ignore),
        oldest_year=args.oldest_year,
    )
    result = engine.index(request)
    if result.value is not None:
        print(f"Graph {result.value.db_id}: {result.value.message}")
        return 0 if result.value.status is JobStatus.COMPLETED else 1
    return _report(result)


def _run_integrity(engine: GraphEngine, args: argparse.Namespace) -> int:
    if args.discover:
        if args.provider is None:
            print("Error: --discover needs --provider", file=sys.stderr)
            return 2
        return _report(
            engine.discover_missing_links(args.db_id, args.provider, on_event=_print_discovery)
        )

    summary = engine.integrity_summary(args.db_id)
    if not summary.ok or summary.value is None:
        return _report(summary)
    value = summary.value
    print(
        f"{value.persons} people, {value.persons_with_parents} with parents, "
        f"{value.frontier} not yet expanded ({value.linked_parent_ratio:.0%} linked)"
    )
    for provider, linked in sorted(value.coverage.items()):
        print(f"  {provider}: {linked} linked")
    gaps = engine.parent_linkage_gaps(args.db_id, args.provider)
    for gap in gaps.value or []:
        print(f"  {gap.kind}: {gap.child_name or gap.child_id} ({gap.provider or 'any'})")
    orphans = engine.orphaned_edges(args.db_id)
    for violation in orphans.value or []:
        print(f"  {violation.kind}: {violation.message}")
    return 0 if gaps.ok and orphans.ok else 1


def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "index":
        return _run_index(args)

    engine = GraphEngine()
    match args.command:
        case "path":
            return _report(
                engine.find_path(args.db_id, args.source, args.target, args.method),
                _print_path,
            )
        case "tree":
            return _report(
                engine.tree(
                    args.db_id,
                    args.person,
                    direction=CrawlDirection(args.direction),
                    max_depth=args.depth,
                ),
                _print_tree,
            )
        case "integrity":
            return _run_integrity(engine, args)
        case "search":
            return _report(
                engine.search(args.query, limit=args.limit),
                _print_people,
            )
        case "databases":
            return _report(
                engine.list_databases(),
                _print_databases,
            )
        case "stale":
            return _report(
                engine.stale_payloads(source=args.source, older_than_days=args.days),
                _print_stale,
            )
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    """Main application entry point."""
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        if args.database_uri:
            startup(database_uri=args.database_uri, force=True)
        return _dispatch(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\nClosed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    sys.exit(main())


if __name__ == "__main__":
    run()
