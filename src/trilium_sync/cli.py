"""Command line entry point: ``trilium-sync import|export|sync|init-config``.

Startup follows a fixed order so every source can see the ones below it:

1. ``.env`` is loaded, so YAML ``${VAR}`` interpolation and env lookups
   see its values.
2. Discovered YAML files are merged into a ``UnifiedConfig``; its
   ``etapi`` section becomes the fallback layer for ``load_config()``.
3. CLI flags win over env vars, which win over YAML, which wins over
   built-in defaults.
4. Logging is configured from the ``logging`` section (``--debug`` and
   ``LOG_LEVEL`` override it).

Reports go to stdout, logs and user-facing errors to stderr. The exit code
is 0 when the operation completed without failed files, 1 when files
failed or the operation was aborted, and 2 on configuration or connection
errors.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv

from . import __version__
from .config import load_config
from .config_loader import discover_config_files, ensure_config, load_hierarchical_config
from .config_schema import (
    ConflictResolution,
    DuplicateHandling,
    SyncDirection,
    UnifiedConfig,
    build_config,
)
from .core.client import EtapiClient
from .core.errors import EtapiError
from .logger import setup_logging
from .transfer.formats import EXPORTERS, IMPORTERS
from .transfer.manager import TransferManager
from .transfer.models import OperationSummary
from .transfer.reporter import format_dry_run_preview, format_summary, summary_to_json

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trilium-sync",
        description="Import, export and git synchronization for a Trilium note store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview a directory import
  trilium-sync import directory ./notes --dry-run

  # Import an Obsidian vault under an existing note
  trilium-sync import obsidian ~/vault --parent abc123

  # Export a subtree as markdown with an index file
  trilium-sync export obsidian ./out abc123 --index

  # Push notes back to a repository
  trilium-sync sync ./repo --direction export --push

Connection settings come from --url/--token, TRILIUM_URL/TRILIUM_TOKEN
(.env is read) or the etapi section of .trilium_sync/config.yml.
        """,
    )
    parser.add_argument(
        "--url",
        help="Override Trilium URL (takes precedence over TRILIUM_URL and config files)",
    )
    parser.add_argument(
        "--token",
        help="Override ETAPI token (visible in process list -- prefer TRILIUM_TOKEN)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also append logs to this file")
    parser.add_argument(
        "--json", action="store_true", help="Print the summary as JSON"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"trilium-sync version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    imp = commands.add_parser("import", help="Import a file tree into Trilium")
    imp.add_argument("format", choices=sorted(IMPORTERS))
    imp.add_argument("source", help="Directory, vault or repository to import")
    imp.add_argument("--parent", default="root", help="Parent note id (default: root)")
    imp.add_argument("--dry-run", action="store_true")
    imp.add_argument(
        "--overwrite",
        action="store_true",
        help="Update notes imported earlier instead of skipping them",
    )
    imp.add_argument("--index", action="store_true", help="Create an Import Index note")
    imp.add_argument("--flat", action="store_true", help="Do not create folder notes")
    imp.add_argument("--include", action="append", metavar="GLOB")
    imp.add_argument("--exclude", action="append", metavar="GLOB")
    imp.add_argument("--max-depth", type=int)
    imp.add_argument("--include-hidden", action="store_true")
    imp.add_argument("--render-markdown", action="store_true")

    exp = commands.add_parser("export", help="Export notes to a directory")
    exp.add_argument("format", choices=sorted(EXPORTERS))
    exp.add_argument("output", help="Output directory")
    exp.add_argument("note_ids", nargs="+", metavar="NOTE_ID")
    exp.add_argument("--dry-run", action="store_true")
    exp.add_argument(
        "--plan", action="store_true", help="Only list the files that would be written"
    )
    exp.add_argument("--index", action="store_true", help="Write an index file")
    exp.add_argument("--flat", action="store_true", help="Do not mirror the note tree")
    exp.add_argument("--no-attachments", action="store_true")
    exp.add_argument(
        "--no-overwrite", action="store_true", help="Keep files that already exist"
    )
    exp.add_argument("--max-depth", type=int)

    syn = commands.add_parser("sync", help="Synchronize with a git working tree")
    syn.add_argument("repository", help="Root of the git working tree")
    syn.add_argument(
        "--direction",
        choices=[d.value for d in SyncDirection],
        default=SyncDirection.BIDIRECTIONAL.value,
    )
    syn.add_argument(
        "--conflicts",
        choices=[c.value for c in ConflictResolution],
        default=ConflictResolution.MANUAL.value,
    )
    syn.add_argument("--branch")
    syn.add_argument("--remote", default="origin")
    syn.add_argument("--pull", action="store_true", help="Pull before importing")
    syn.add_argument("--push", action="store_true", help="Push after committing")
    syn.add_argument("--message", help="Commit message; {timestamp} and {count} expand")
    syn.add_argument("--author-name")
    syn.add_argument("--author-email")
    syn.add_argument("--note", action="append", dest="notes", metavar="NOTE_ID")
    syn.add_argument("--parent", default="root")
    syn.add_argument("--dry-run", action="store_true")

    commands.add_parser("init-config", help="Write a starter config file")

    return parser


def _drop_none(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def import_options(args: argparse.Namespace) -> dict[str, Any]:
    """Translate ``import`` arguments into an options dict."""
    return _drop_none(
        source_path=args.source,
        parent_note_id=args.parent,
        dry_run=args.dry_run,
        duplicate_handling=(
            DuplicateHandling.OVERWRITE if args.overwrite else DuplicateHandling.SKIP
        ),
        create_index=args.index,
        preserve_structure=not args.flat,
        include=args.include,
        exclude=args.exclude,
        max_depth=args.max_depth,
        include_hidden=args.include_hidden or None,
        render_markdown=args.render_markdown or None,
    )


def export_options(args: argparse.Namespace) -> dict[str, Any]:
    return _drop_none(
        output_path=args.output,
        dry_run=args.dry_run,
        create_index=args.index,
        preserve_structure=not args.flat,
        include_attachments=not args.no_attachments,
        overwrite=not args.no_overwrite,
        max_depth=args.max_depth,
    )


def sync_options(args: argparse.Namespace) -> dict[str, Any]:
    return _drop_none(
        repository_path=args.repository,
        sync_direction=args.direction,
        conflict_resolution=args.conflicts,
        branch=args.branch,
        remote=args.remote,
        pull_before_import=args.pull,
        push_after_export=args.push,
        commit_message=args.message,
        author_name=args.author_name,
        author_email=args.author_email,
        note_ids=args.notes,
        parent_note_id=args.parent,
        dry_run=args.dry_run,
    )


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


def load_settings(args: argparse.Namespace) -> tuple[UnifiedConfig, Any]:
    """Resolve the unified config and the ETAPI connection config.

    Raises:
        ValueError: If the URL or token cannot be found or is invalid.
    """
    load_dotenv()

    unified = UnifiedConfig()
    yaml_fallbacks: dict[str, Any] | None = None
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        yaml_fallbacks = {
            k: v for k, v in unified.etapi.model_dump().items() if v is not None
        }
        logger.debug("Using config files: %s", ", ".join(map(str, config_files)))

    config = load_config(
        url=args.url,
        token=args.token,
        insecure=args.insecure,
        debug=args.debug,
        yaml_fallbacks=yaml_fallbacks,
    )
    return unified, config


async def execute(
    args: argparse.Namespace, manager: TransferManager
) -> OperationSummary | list:
    """Run the selected operation."""
    if args.command == "import":
        return await manager.import_(args.format, import_options(args))
    if args.command == "export":
        if args.plan:
            return await manager.plan_export(
                args.format, args.note_ids, export_options(args)
            )
        return await manager.export(args.format, args.note_ids, export_options(args))
    return await manager.sync(sync_options(args))


def render(result: OperationSummary | list, as_json: bool) -> str:
    if isinstance(result, list):
        if as_json:
            return json.dumps([entry.model_dump() for entry in result], indent=2)
        return "\n".join(entry.relative_path for entry in result)
    if as_json:
        return json.dumps(summary_to_json(result), indent=2)
    if result.dry_run:
        return format_dry_run_preview(result) + "\n\n" + format_summary(result)
    return format_summary(result)


def exit_code(result: OperationSummary | list) -> int:
    if isinstance(result, list):
        return EXIT_OK
    if result.aborted or result.failed_files:
        return EXIT_FAILED
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Parse ``argv``, run one operation and return the exit code."""
    args = build_parser().parse_args(argv)

    if args.command == "init-config":
        path = ensure_config()
        print(path)
        return EXIT_OK

    try:
        unified, config = load_settings(args)
    except ValueError as e:
        _stderr_print(f"ERROR: Configuration error: {e}")
        return EXIT_CONFIG

    setup_logging(
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
        level=unified.logging.level,
    )
    logger.info("Trilium URL: %s", config.etapi_url)

    client = EtapiClient(config)
    try:
        info = client.get_app_info()
    except EtapiError as e:
        _stderr_print(f"ERROR: Cannot reach Trilium at {config.etapi_url}: {e}")
        return EXIT_CONFIG
    logger.info("Connected to Trilium %s", info.get("appVersion", "unknown"))

    manager = TransferManager(client, unified.transfer)
    result = asyncio.run(execute(args, manager))

    print(render(result, args.json))
    return exit_code(result)


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
