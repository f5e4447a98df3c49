"""combine-archive CLI.

Commands:
    list: List artifacts and their content types.
    add: Add a host file as a new artifact.
    extract: Copy an artifact's bytes to a host file or stdout.
    remove: Remove an artifact.
    info: Show archive timestamps and annotations.
    annotate: Set an archive annotation.
    check: Report (and optionally repair) manifest/filesystem divergence.
"""

from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import shutil
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from . import __version__
from .config import ArchiveConfig, load_archive_config_from_file
from .errors import CombineArchiveError
from .factory import open_archive
from .metadata import format_timestamp

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def canonical_json_dumps(data: Any) -> str:
    """Serialize JSON with sorted keys and compact separators."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the combine-archive CLI."""
    parser = argparse.ArgumentParser(
        prog="combine-archive",
        description="Inspect and edit COMBINE archives",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Archive config file (.yaml, .yml or .json)",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log errors")

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List artifacts")
    list_parser.add_argument("archive", type=Path, help="Archive container")
    list_parser.add_argument("--json", dest="output_json", action="store_true", help="Output JSON")

    add_parser = subparsers.add_parser("add", help="Add a host file as an artifact")
    add_parser.add_argument("archive", type=Path, help="Archive container (created if missing)")
    add_parser.add_argument("source", type=Path, help="Host file to add")
    add_parser.add_argument("--path", dest="artifact_path", default=None, help="Artifact path (defaults to /<source name>)")
    add_parser.add_argument("--type", dest="content_type", default=None, help="Content type (guessed if omitted)")

    extract_parser = subparsers.add_parser("extract", help="Extract an artifact")
    extract_parser.add_argument("archive", type=Path, help="Archive container")
    extract_parser.add_argument("artifact_path", help="Artifact path")
    extract_parser.add_argument("-o", "--output", type=Path, default=None, help="Output file (defaults to stdout)")

    remove_parser = subparsers.add_parser("remove", help="Remove an artifact")
    remove_parser.add_argument("archive", type=Path, help="Archive container")
    remove_parser.add_argument("artifact_path", help="Artifact path")

    info_parser = subparsers.add_parser("info", help="Show archive metadata")
    info_parser.add_argument("archive", type=Path, help="Archive container")
    info_parser.add_argument("--json", dest="output_json", action="store_true", help="Output JSON")

    annotate_parser = subparsers.add_parser("annotate", help="Set an archive annotation")
    annotate_parser.add_argument("archive", type=Path, help="Archive container")
    annotate_parser.add_argument("key", help="Annotation key")
    annotate_parser.add_argument("value", help="Annotation value")

    check_parser = subparsers.add_parser("check", help="Check manifest/filesystem consistency")
    check_parser.add_argument("archive", type=Path, help="Archive container")
    check_parser.add_argument("--repair", action="store_true", help="Rebuild the manifest from the filesystem")
    check_parser.add_argument("--json", dest="output_json", action="store_true", help="Output JSON")

    return parser


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def cmd_list(archive_path: Path, config: ArchiveConfig, output_json: bool = False) -> int:
    """Execute the list command."""
    with open_archive(archive_path, create=False, config=config) as archive:
        artifacts = [info.to_dict() for info in archive.artifact_iterator()]

    if output_json:
        sys.stdout.write(canonical_json_dumps({"artifacts": artifacts}) + "\n")
        return 0
    for item in artifacts:
        sys.stdout.write(f"{item['path']}\t{item['content_type']}\n")
    return 0


def cmd_add(
    archive_path: Path,
    source: Path,
    config: ArchiveConfig,
    artifact_path: str | None = None,
    content_type: str | None = None,
) -> int:
    """Execute the add command."""
    if not source.is_file():
        sys.stderr.write(f"Source file not found: {source}\n")
        return 1
    target = artifact_path or f"/{source.name}"
    declared = content_type or mimetypes.guess_type(source.name)[0] or config.default_content_type

    with open_archive(archive_path, create=True, config=config) as archive:
        info = archive.create_artifact(target, declared, source)
    sys.stdout.write(f"Added {info.path} ({info.content_type})\n")
    return 0


def cmd_extract(archive_path: Path, artifact_path: str, config: ArchiveConfig, output: Path | None = None) -> int:
    """Execute the extract command."""
    with open_archive(archive_path, create=False, config=config) as archive:
        info = archive.get_artifact(artifact_path)
        if info is None:
            sys.stderr.write(f"Artifact not found: {artifact_path}\n")
            return 1
        with archive.read_artifact(info) as stream:
            if output is None:
                shutil.copyfileobj(stream, sys.stdout.buffer)
                sys.stdout.buffer.flush()
            else:
                output.parent.mkdir(parents=True, exist_ok=True)
                with output.open("wb") as fh:
                    shutil.copyfileobj(stream, fh)
    return 0


def cmd_remove(archive_path: Path, artifact_path: str, config: ArchiveConfig) -> int:
    """Execute the remove command."""
    with open_archive(archive_path, create=False, config=config) as archive:
        info = archive.get_artifact(artifact_path)
        if info is None:
            sys.stderr.write(f"Artifact not found: {artifact_path}\n")
            return 1
        archive.remove_artifact(info)
    sys.stdout.write(f"Removed {info.path}\n")
    return 0


def cmd_info(archive_path: Path, config: ArchiveConfig, output_json: bool = False) -> int:
    """Execute the info command."""
    with open_archive(archive_path, create=False, config=config) as archive:
        metadata = archive.get_metadata()
        metadata.load()
        payload = {
            "created": format_timestamp(metadata.created),
            "modified": format_timestamp(metadata.modified),
            "annotations": metadata.annotations,
            "artifact_count": sum(1 for _ in archive.artifact_iterator()),
        }

    if output_json:
        sys.stdout.write(canonical_json_dumps(payload) + "\n")
        return 0
    lines = [
        f"Archive: {archive_path}",
        f"Created: {payload['created']}",
        f"Modified: {payload['modified']}",
        f"Artifacts: {payload['artifact_count']}",
    ]
    for key in sorted(payload["annotations"]):
        lines.append(f"  {key}: {payload['annotations'][key]}")
    sys.stdout.write("\n".join(lines) + "\n")
    return 0


def cmd_annotate(archive_path: Path, key: str, value: str, config: ArchiveConfig) -> int:
    """Execute the annotate command."""
    with open_archive(archive_path, create=False, config=config) as archive:
        archive.get_metadata().set_annotation(key, value)
    return 0


def cmd_check(archive_path: Path, config: ArchiveConfig, repair: bool = False, output_json: bool = False) -> int:
    """Execute the check command.

    Returns 0 when consistent (or repaired), 1 when divergence remains.
    """
    with open_archive(archive_path, create=False, config=config) as archive:
        if repair:
            report = archive.rebuild_manifest(config.default_content_type)
        else:
            report = archive.check_consistency()

    exit_code = 0 if (report.consistent or repair) else 1
    if output_json:
        payload = report.to_dict()
        payload["repaired"] = repair and not report.consistent
        sys.stdout.write(canonical_json_dumps(payload) + "\n")
        return exit_code

    if report.consistent:
        sys.stdout.write("Archive is consistent\n")
        return exit_code
    lines = []
    for path in report.missing_files:
        lines.append(f"missing file: {path}")
    for path in report.unindexed_files:
        lines.append(f"unindexed file: {path}")
    if repair:
        lines.append("Manifest rebuilt")
    sys.stdout.write("\n".join(lines) + "\n")
    return exit_code


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the combine-archive CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    try:
        config = load_archive_config_from_file(args.config) if args.config else ArchiveConfig()

        if args.command == "list":
            return cmd_list(args.archive, config, output_json=args.output_json)
        if args.command == "add":
            return cmd_add(
                args.archive,
                args.source,
                config,
                artifact_path=args.artifact_path,
                content_type=args.content_type,
            )
        if args.command == "extract":
            return cmd_extract(args.archive, args.artifact_path, config, output=args.output)
        if args.command == "remove":
            return cmd_remove(args.archive, args.artifact_path, config)
        if args.command == "info":
            return cmd_info(args.archive, config, output_json=args.output_json)
        if args.command == "annotate":
            return cmd_annotate(args.archive, args.key, args.value, config)
        if args.command == "check":
            return cmd_check(args.archive, config, repair=args.repair, output_json=args.output_json)
    except CombineArchiveError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        sys.stderr.write(f"{exc}\n")
        return 1

    # Should not reach here due to required=True on subparsers
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
