#!/usr/bin/env python3
"""
shardstore CLI — Command Line Interface for a storage root.

Usage:
    shardstore [--config FILE] [--path ROOT] [-v] save <file> [--name NAME]
    shardstore path <id> [--variant NAME] [--fallback NAME|original ...]
    shardstore metadata <id>
    shardstore delete <id>
    shardstore generate [<id>] --generator module:function [--clean]
    shardstore stats

Examples:
    # Store a file under the root from $SHARDSTORE_PATH
    shardstore save photo.jpg

    # Path of the "preview" variant, or the original if there is none
    shardstore path 0f8c...-4e1a.jpg --variant preview --fallback original

    # Regenerate every variant of every file
    shardstore --config storage.yaml generate --generator thumbs:make --clean
"""

import argparse
import asyncio
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

from .config import StorageConfig
from .errors import ShardStoreError
from .file_storage import USE_ORIGINAL, FileStorage
from .models import StorageEvent

ORIGINAL_KEYWORD = "original"


def setup_logging(verbose: bool = False, level: str = "INFO"):
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s' if verbose else '%(message)s'
    )
    # Quiet down noisy loggers
    if not verbose:
        logging.getLogger("fsspec").setLevel(logging.WARNING)


def load_generator(spec: str) -> Callable:
    """Import a generator given as 'package.module:function'."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Generator must look like module:function, got {spec!r}")
    module = importlib.import_module(module_name)
    generator = getattr(module, attr)
    if not callable(generator):
        raise ValueError(f"{spec} is not callable")
    return generator


def parse_fallback(values: Optional[List[str]]) -> list:
    """Map 'original' to USE_ORIGINAL, keep variant names as they are."""
    return [USE_ORIGINAL if v == ORIGINAL_KEYWORD else v for v in values or []]


def load_config(args) -> StorageConfig:
    """YAML config if given, environment otherwise; --path wins."""
    if args.config:
        config = StorageConfig.from_yaml(args.config)
    else:
        config = StorageConfig.from_env()
    return config.with_path(args.path)


# =============================================================================
# Commands
# =============================================================================


async def cmd_save(storage: FileStorage, args) -> int:
    payload = Path(args.file).read_bytes()
    file_id, metadata = await storage.save_file(payload, name=args.name)
    print(file_id)
    if args.verbose:
        print(json.dumps(metadata.model_dump(by_alias=True), indent=2))
    return 0


async def cmd_path(storage: FileStorage, args) -> int:
    path = await storage.get_file_path(args.id, args.variant, fallback=parse_fallback(args.fallback))
    if path is None:
        print(f"Not found: {args.id}", file=sys.stderr)
        return 1
    print(path)
    return 0


async def cmd_metadata(storage: FileStorage, args) -> int:
    metadata = await storage.get_file_metadata(args.id)
    if metadata is None:
        print(f"Not found: {args.id}", file=sys.stderr)
        return 1
    print(json.dumps(metadata.model_dump(by_alias=True), indent=2))
    return 0


async def cmd_delete(storage: FileStorage, args) -> int:
    await storage.delete_file(args.id)
    print(f"Deleted: {args.id}")
    return 0


async def cmd_generate(storage: FileStorage, args) -> int:
    generator = load_generator(args.generator)

    def on_file_progress(event):
        print(f"  {event.id}: {len(event.ready)}/{event.total}")

    def on_all_progress(event):
        if event.id is not None:
            print(f"[{event.ready}/{event.total}] {event.id}")
        else:
            print(f"Files to process: {event.total}")

    storage.on(StorageEvent.GENERATE_PROGRESS, on_file_progress)
    storage.on(StorageEvent.GENERATE_ALL_PROGRESS, on_all_progress)

    if args.id:
        await storage.generate_file_variants(args.id, generator, clean=args.clean)
    else:
        await storage.generate_all_files_variants(generator, clean=args.clean)
    return 0


async def cmd_stats(storage: FileStorage, args) -> int:
    stats = await storage.get_stats()

    print("\n📊 Storage Status:")
    print("=" * 50)
    print(f"  Root: {stats['base_path']}")
    print(f"  Type: {stats['storage_type']}")
    print(f"    - Files: {stats['files_count']}")
    print(f"    - Artifacts on disk: {stats['artifacts_count']}")
    print(f"    - Size: {stats['size_bytes']} bytes")
    return 0


COMMANDS = {
    "save": cmd_save,
    "path": cmd_path,
    "metadata": cmd_metadata,
    "delete": cmd_delete,
    "generate": cmd_generate,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shardstore",
        description="Sharded local file storage with named variants",
    )
    parser.add_argument("--config", help="YAML config file (default: environment)")
    parser.add_argument("--path", help="Storage root, overrides the config")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    save = subparsers.add_parser("save", help="Store a file")
    save.add_argument("file", help="File to store")
    save.add_argument("--name", help="File name without extension (default: uuid4)")

    path = subparsers.add_parser("path", help="Resolve the path of a file or variant")
    path.add_argument("id", help="File id")
    path.add_argument("--variant", help="Variant name")
    path.add_argument(
        "--fallback", nargs="+",
        help=f"Alternatives in order; '{ORIGINAL_KEYWORD}' for the original file",
    )

    metadata = subparsers.add_parser("metadata", help="Show file metadata")
    metadata.add_argument("id", help="File id")

    delete = subparsers.add_parser("delete", help="Delete a file and its variants")
    delete.add_argument("id", help="File id")

    generate = subparsers.add_parser("generate", help="(Re)generate variants")
    generate.add_argument("id", nargs="?", help="File id (default: all files)")
    generate.add_argument("--generator", required=True, help="Generator as module:function")
    generate.add_argument("--clean", action="store_true", help="Remove existing variants first")

    subparsers.add_parser("stats", help="Show storage statistics")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
        setup_logging(args.verbose, config.log_level)
        storage = FileStorage.from_config(config)
        return asyncio.run(COMMANDS[args.command](storage, args))
    except (ShardStoreError, OSError, ValueError, ImportError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
