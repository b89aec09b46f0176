"""Command-line interface for FaceMerge."""

import argparse
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Optional, List

from .. import __version__
from ..engine import FaceMergeEngine
from ..merge.conflict_resolver import parse_field_choices
from ..store.database import PeopleDatabase
from ..store.images import LocalImageStorage
from ..utils.config import EngineConfig
from ..utils.errors import FaceMergeError, NotFoundError, ValidationError


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def open_engine(args: argparse.Namespace) -> FaceMergeEngine:
    """Open the database named on the command line and build an engine.

    Raises:
        FileNotFoundError: If the database file does not exist
    """
    db_path = Path(args.database)
    if not db_path.exists():
        raise FileNotFoundError(f"Database not found: {db_path}")

    config = EngineConfig.from_json(args.config) if args.config else EngineConfig()

    storage = None
    if getattr(args, 'images', None):
        storage = LocalImageStorage(args.images, url_ttl_seconds=config.image_url_ttl_seconds)

    return FaceMergeEngine(PeopleDatabase(db_path), storage=storage, config=config)


def parse_choices(values: Optional[List[str]]) -> dict:
    """Parse repeated ``field=target|source`` options."""
    raw = {}
    for value in values or []:
        field_name, sep, choice = value.partition('=')
        if not sep or not field_name:
            raise ValidationError(f"Expected field=target|source, got {value!r}")
        raw[field_name.strip()] = choice
    return parse_field_choices(raw)


def stats_command(engine: FaceMergeEngine, args: argparse.Namespace) -> int:
    """Print record counts, per owner when no owner is given."""
    owners = [args.owner] if args.owner else engine.db.get_owner_ids()

    print("\n" + "=" * 60)
    print("DATABASE STATISTICS")
    print("=" * 60)

    totals = engine.db.get_stats()
    print(f"Total People:           {totals['persons']:,}")
    print(f"Total Connections:      {totals['connections']:,}")

    for owner_id in owners:
        stats = engine.db.get_stats(owner_id)
        print(f"\nOwner {owner_id}:")
        print(f"  People:               {stats['persons']:,}")
        print(f"  Connections:          {stats['connections']:,}")

    print("=" * 60 + "\n")
    return 0


def suggest_command(engine: FaceMergeEngine, args: argparse.Namespace) -> int:
    """Print ranked duplicate suggestions for an owner."""
    suggestions = engine.suggest_duplicates(args.owner, blocked=args.blocked)

    if not suggestions:
        print("No potential duplicates found.")
        return 0

    print(f"\nPOTENTIAL DUPLICATES ({len(suggestions)}):")
    print("-" * 60)

    for i, suggestion in enumerate(suggestions[:args.limit]):
        p1, p2 = suggestion.person1, suggestion.person2
        print(f"{i + 1}. [{suggestion.confidence.upper()}] score {suggestion.score}")
        print(f"   {p1.id}: {p1}")
        print(f"   {p2.id}: {p2}")
        for reason in suggestion.reasons:
            print(f"     - {reason}")

    if len(suggestions) > args.limit:
        print(f"\n... and {len(suggestions) - args.limit} more")

    print("-" * 60 + "\n")
    return 0


def preview_command(engine: FaceMergeEngine, args: argparse.Namespace) -> int:
    """Print the conflicts and impact of a merge without applying it."""
    preview = engine.preview_merge(args.target, args.source)

    print(f"\nMERGE PREVIEW: {args.source} -> {args.target}")
    print("-" * 60)
    for conflict in preview.conflicts:
        print(conflict)
    print(preview)

    if preview.fields_requiring_choice:
        fields = ' '.join(f"--choose {f}=target|source" for f in preview.fields_requiring_choice)
        print(f"\nTo merge, pass: {fields}")

    print("-" * 60 + "\n")
    return 0


def merge_command(engine: FaceMergeEngine, args: argparse.Namespace) -> int:
    """Apply a merge."""
    choices = parse_choices(args.choose)
    result = engine.merge(args.target, args.source, field_choices=choices, primary_photo=args.primary)

    print(result)
    if result.failed_image_cleanups:
        print(
            f"Warning: {len(result.failed_image_cleanups)} image(s) could not be deleted",
            file=sys.stderr
        )
    return 0


def network_command(engine: FaceMergeEngine, args: argparse.Namespace) -> int:
    """Print network statistics for an owner."""
    persons, connections = engine.snapshot(args.owner)
    stats = engine.analyze_network(persons, connections)
    names = {p.id: str(p) for p in persons}

    print("\nNETWORK STATISTICS")
    print("-" * 60)
    print(stats)

    if stats.most_connected:
        print("\nMost connected:")
        for person_id in stats.most_connected:
            print(f"  {names.get(person_id, person_id)}: {stats.degrees[person_id]}")

    if args.person:
        print(f"\n{names.get(args.person, args.person)}:")
        print(engine.analyze_person(args.person, connections))

    print("-" * 60 + "\n")
    return 0


def path_command(engine: FaceMergeEngine, args: argparse.Namespace) -> int:
    """Print the shortest path between two persons."""
    start = engine.db.get_person(args.from_id)
    if start is None:
        raise NotFoundError('Person', args.from_id)

    persons, connections = engine.snapshot(start.owner_id)
    path = engine.find_path(args.from_id, args.to_id, connections, args.max_degrees)

    if path is None:
        print("No path found.")
        return 1

    names = {p.id: str(p) for p in persons}
    print(" -> ".join(names.get(pid, pid) for pid in path))
    print(f"Degrees of separation: {len(path) - 1}")
    return 0


def history_command(engine: FaceMergeEngine, args: argparse.Namespace) -> int:
    """Print recent merge audit entries."""
    entries = engine.audit.get_recent_changes(owner_id=args.owner, limit=args.limit)

    if not entries:
        print("No merge history.")
        return 0

    for entry in entries:
        line = f"{entry.timestamp} {entry.merge_id[:8]} {entry.operation_type} {entry.table_name}/{entry.record_id}"
        if entry.field_name:
            line += f" {entry.field_name}: {entry.old_value!r} -> {entry.new_value!r}"
        if entry.reason:
            line += f" ({entry.reason})"
        print(line)
    return 0


COMMANDS = {
    'stats': stats_command,
    'suggest': suggest_command,
    'preview': preview_command,
    'merge': merge_command,
    'network': network_command,
    'path': path_command,
    'history': history_command,
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog='facemerge',
        description='Find and merge duplicate people and analyze their relationships.',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    parser.add_argument(
        '-c', '--config',
        help='JSON file with engine setting overrides'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        help='Available commands'
    )

    stats_parser = subparsers.add_parser('stats', help='Show record counts')
    stats_parser.add_argument('database', help='Path to the SQLite database')
    stats_parser.add_argument('--owner', help='Only count records of this owner')

    suggest_parser = subparsers.add_parser('suggest', help='List likely duplicate people')
    suggest_parser.add_argument('database', help='Path to the SQLite database')
    suggest_parser.add_argument('--owner', required=True, help='Owner whose people to scan')
    suggest_parser.add_argument(
        '-n', '--limit',
        type=int,
        default=20,
        help='Number of suggestions to display (default: 20)'
    )
    suggest_parser.add_argument(
        '--blocked',
        action='store_true',
        help='Only score pairs sharing a name key, roster, company or birthday'
    )

    preview_parser = subparsers.add_parser('preview', help='Preview a merge')
    preview_parser.add_argument('database', help='Path to the SQLite database')
    preview_parser.add_argument('target', help='Id of the person to keep')
    preview_parser.add_argument('source', help='Id of the person to merge away')

    merge_parser = subparsers.add_parser('merge', help='Merge one person into another')
    merge_parser.add_argument('database', help='Path to the SQLite database')
    merge_parser.add_argument('target', help='Id of the person to keep')
    merge_parser.add_argument('source', help='Id of the person to merge away')
    merge_parser.add_argument(
        '--choose',
        action='append',
        metavar='FIELD=target|source',
        help='Resolve a field conflict (repeatable)'
    )
    merge_parser.add_argument('--primary', help='Appearance id or image path to make primary')
    merge_parser.add_argument('--images', help='Image storage directory for cleanup')

    network_parser = subparsers.add_parser('network', help='Show relationship network statistics')
    network_parser.add_argument('database', help='Path to the SQLite database')
    network_parser.add_argument('--owner', required=True, help='Owner whose network to analyze')
    network_parser.add_argument('--person', help='Also summarize this person\'s connections')

    path_parser = subparsers.add_parser('path', help='Find how two people are connected')
    path_parser.add_argument('database', help='Path to the SQLite database')
    path_parser.add_argument('from_id', help='Start person id')
    path_parser.add_argument('to_id', help='End person id')
    path_parser.add_argument(
        '--max-degrees',
        type=int,
        default=None,
        help='Maximum hops to search (default: 3)'
    )

    history_parser = subparsers.add_parser('history', help='Show recent merge changes')
    history_parser.add_argument('database', help='Path to the SQLite database')
    history_parser.add_argument('--owner', help='Only show changes of this owner')
    history_parser.add_argument(
        '-n', '--limit',
        type=int,
        default=50,
        help='Number of entries to display (default: 50)'
    )

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    try:
        engine = open_engine(args)
    except (OSError, ValueError, sqlite3.DatabaseError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        return COMMANDS[args.command](engine, args)
    except FaceMergeError as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        engine.db.close()


if __name__ == '__main__':
    sys.exit(main())
