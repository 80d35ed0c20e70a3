"""Tripline CLI: record, verify and sign file baselines."""

import argparse
import getpass
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import Callable

from tripline.config import Settings
from tripline.errors import TriplineError

COMMANDS = "add, delete, verify, list, deleteset, copyset, listsets, sign or verifysig"


def read_password() -> str:
    """Prompt for the signing password without echo."""
    return getpass.getpass("Enter Password: ").strip()


def _check_fileset_name(fileset: str) -> None:
    # Reject bad names before prompting for a password.
    from tripline.kernel.store import check_user_fileset
    try:
        check_user_fileset(fileset)
    except TriplineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _configure_logging(quiet: bool, verbose: bool) -> None:
    level = logging.INFO
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)


def main():
    """Main CLI entry point for tripline commands."""
    try:
        tripline_version = get_version("tripline")
    except PackageNotFoundError:
        tripline_version = "dev"

    settings = Settings.from_env()

    parser = argparse.ArgumentParser(
        prog="tripline",
        description="Tripline: record file baselines and detect drift and tampering"
    )
    parser.add_argument("--version", action="version", version=f"tripline {tripline_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--db",
        type=Path,
        default=settings.db_path,
        help=f"Path to the tripline database (default: {settings.db_path})"
    )
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )
    parent_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show debug output."
    )
    fileset_parser = argparse.ArgumentParser(add_help=False)
    fileset_parser.add_argument(
        "--fileset",
        default=settings.default_fileset,
        help=f"Fileset to operate on (default: {settings.default_fileset})"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add command
    add_parser = subparsers.add_parser(
        "add",
        help="Record the baseline of files and directories. The fileset is created if not present.",
        parents=[parent_parser, fileset_parser]
    )
    add_parser.add_argument("paths", nargs="+", help="Files or directories to add")
    add_parser.add_argument(
        "--no-recursive",
        dest="recursive",
        action="store_false",
        help="Do not descend into directories"
    )
    existing = add_parser.add_mutually_exclusive_group()
    existing.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite paths already in the fileset"
    )
    existing.add_argument(
        "--skip",
        action="store_true",
        help="Leave paths already in the fileset untouched"
    )
    add_parser.add_argument(
        "--filechecks",
        default=settings.file_checks,
        help=f"File checks (default: {settings.file_checks})"
    )
    add_parser.add_argument(
        "--dirchecks",
        default=settings.dir_checks,
        help=f"Directory checks (default: {settings.dir_checks})"
    )

    # delete command
    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete paths, and everything recorded below them, from a fileset",
        parents=[parent_parser, fileset_parser]
    )
    delete_parser.add_argument("paths", nargs="+", help="Files or directories to delete")

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify paths against their baseline (all entries when no path is given)",
        parents=[parent_parser, fileset_parser]
    )
    verify_parser.add_argument("paths", nargs="*", help="Files or directories to verify")

    # list command
    subparsers.add_parser(
        "list",
        help="List the records of a fileset",
        parents=[parent_parser, fileset_parser]
    )

    # deleteset command
    subparsers.add_parser(
        "deleteset",
        help="Delete a fileset and all of its records",
        parents=[parent_parser, fileset_parser]
    )

    # copyset command
    copyset_parser = subparsers.add_parser(
        "copyset",
        help="Copy a fileset to a new fileset",
        parents=[parent_parser, fileset_parser]
    )
    copyset_parser.add_argument("target", help="Name of the new fileset")

    # listsets command
    subparsers.add_parser(
        "listsets",
        help="List the filesets",
        parents=[parent_parser]
    )

    # sign command
    sign_parser = subparsers.add_parser(
        "sign",
        help="Sign the contents of a fileset with a password",
        parents=[parent_parser, fileset_parser]
    )
    sign_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite an existing signature"
    )

    # verifysig command
    subparsers.add_parser(
        "verifysig",
        help="Verify the signature of a fileset",
        parents=[parent_parser, fileset_parser]
    )

    args = parser.parse_args()

    if not args.command:
        print(f"Error: expected command: {COMMANDS}", file=sys.stderr)
        parser.print_help()
        sys.exit(1)

    _configure_logging(args.quiet, args.verbose)

    # Lazy import: only load the store and kernel when a command runs
    from tripline import api
    from tripline.kernel.record import display_path

    def _run(write: bool, operation: Callable):
        """Open the store and run `operation` in one transaction.

        Errors roll the transaction back and exit with status 1.
        """
        try:
            store = api.open_store(args.db)
        except Exception as e:
            print(f"Error: open database {args.db}: {e}", file=sys.stderr)
            sys.exit(1)
        try:
            with store.transaction(write=write):
                return operation(store)
        except TriplineError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            store.close()

    if args.command == "add":
        result = _run(True, lambda store: api.add_files(
            store, args.paths, args.fileset,
            recursive=args.recursive, overwrite=args.overwrite, skip=args.skip,
            file_checks=args.filechecks, dir_checks=args.dirchecks,
        ))
        if not args.quiet:
            print(f"[OK] Added {len(result.added)} entries to fileset {args.fileset!r}")
            if result.skipped:
                print(f"  Skipped: {len(result.skipped)}")

    elif args.command == "delete":
        deleted = _run(True, lambda store: api.delete_files(store, args.paths, args.fileset))
        if not args.quiet:
            print(f"[OK] Deleted {deleted} entries from fileset {args.fileset!r}")

    elif args.command == "verify":
        report = _run(False, lambda store: api.verify_files(store, args.paths, args.fileset))
        print(f"{report.failure_count} failed checks")
        if not report.ok:
            sys.exit(1)

    elif args.command == "list":
        entries = _run(False, lambda store: api.list_records(store, args.fileset))
        for entry in entries:
            print(f"{display_path(entry.path)}:{entry.record.to_json_bytes().decode('ascii')}")

    elif args.command == "deleteset":
        _run(True, lambda store: api.delete_fileset(store, args.fileset))
        if not args.quiet:
            print(f"[OK] Deleted fileset {args.fileset!r}")

    elif args.command == "copyset":
        _run(True, lambda store: api.copy_fileset(store, args.fileset, args.target))
        if not args.quiet:
            print(f"[OK] Copied fileset {args.fileset!r} to {args.target!r}")

    elif args.command == "listsets":
        for name in _run(False, api.list_filesets):
            print(name)

    elif args.command == "sign":
        _check_fileset_name(args.fileset)
        password = read_password()
        _run(True, lambda store: api.sign_fileset(
            store, args.fileset, password,
            overwrite=args.overwrite, kdf_iterations=settings.kdf_iterations,
        ))
        if not args.quiet:
            print(f"[OK] Signed fileset {args.fileset!r}")

    elif args.command == "verifysig":
        _check_fileset_name(args.fileset)
        password = read_password()
        _run(False, lambda store: api.verify_fileset_signature(store, args.fileset, password))
        if not args.quiet:
            print(f"[OK] Integrity fileset {args.fileset!r} is ok")


if __name__ == "__main__":
    main()
