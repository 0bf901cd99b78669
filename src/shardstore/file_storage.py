"""
FileStorage — sharded local file storage with named variants.

Ready-Made Solutions:
- fsspec: File system abstraction (local filesystem)
- asyncio.to_thread: non-blocking use of fsspec from coroutines

Layout (see paths.py):
    <root>/<c1>/<c2>/<name>.<ext>              original
    <root>/<c1>/<c2>/<name>.<ext>.json         metadata
    <root>/<c1>/<c2>/<name>.<variant>.<ext>    variant

Invariants:
- The shard path is a pure function of the id, never stored.
- Original and metadata are written once by save_file and never rewritten;
  only variants change afterwards.
- Readers check the filesystem on every call, nothing is cached.
"""

import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import fsspec

from .config import StorageConfig
from .errors import StorageConfigError
from .identify import MediaTypes, identify
from .models import (
    FileMetadata,
    GenerateAllProgressEvent,
    GenerateProgressEvent,
    StorageEvent,
    VariantDescription,
    as_variants_spec,
    generate_file_name,
)
from .paths import (
    get_file_metadata_path,
    get_file_path,
    get_shard_dir,
    is_file_id,
    is_valid_extension,
    is_valid_variant_name,
    select_artifacts,
    select_variants,
    try_parse_id,
    validate_name,
)

logger = logging.getLogger(__name__)

# Extension used when the format of a payload could not be detected
UNKNOWN_FORMAT = "undefined"

# Fallback entry resolving to the original file
USE_ORIGINAL = True

# (file id, source path, destination path, variant) -> None or awaitable
Generator = Callable[[str, str, str, VariantDescription], Optional[Awaitable[None]]]

BeforeSave = Callable[[FileMetadata], Optional[Awaitable[None]]]

Listener = Callable[[Any], Optional[Awaitable[None]]]

Fallback = Union[bool, str, Sequence[Union[bool, str]], None]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class FileStorage:
    """
    File storage over a sharded directory tree.

    Each stored file is an original payload plus a JSON metadata document;
    variants are derived files produced by a caller-supplied generator.

    Progress of variant generation is published to listeners registered
    with ``on()``:
        StorageEvent.GENERATE_PROGRESS      GenerateProgressEvent
        StorageEvent.GENERATE_ALL_PROGRESS  GenerateAllProgressEvent
    """

    def __init__(
        self,
        path: Union[str, "os.PathLike[str]", None],
        variants: Any = (),
        media_types: Optional[MediaTypes] = None,
    ):
        """
        Initialize FileStorage.

        Args:
            path: Storage root (required)
            variants: List of variant descriptions, or a function from
                file metadata to such a list
            media_types: Media type -> extensions overrides for detection

        Raises:
            StorageConfigError: If path is missing or an extension in
                media_types contains a dot or a path separator
        """
        if not path:
            raise StorageConfigError("Path is required")

        self._path = str(Path(path).resolve())
        self._variants = as_variants_spec(variants)
        self._media_types: Dict[str, List[str]] = {
            k: list(v) for k, v in (media_types or {}).items()
        }
        for media_type, extensions in self._media_types.items():
            invalid = [ext for ext in extensions if not is_valid_extension(ext)]
            if invalid:
                raise StorageConfigError(
                    f"Extensions for {media_type} must be one segment without '.', '/' or '\\': {invalid}"
                )

        # MVP: local filesystem
        self.fs = fsspec.filesystem("file")

        self._listeners: Dict[StorageEvent, List[Listener]] = {event: [] for event in StorageEvent}
        self._generating_all = False

        logger.info(f"FileStorage initialized: root={self._path}")

    @classmethod
    def from_config(cls, config: StorageConfig) -> "FileStorage":
        """Create storage from a StorageConfig."""
        return cls(
            path=config.path,
            variants=config.variants,
            media_types=config.media_types,
        )

    @property
    def path(self) -> str:
        """Storage root."""
        return self._path

    @property
    def media_types(self) -> Dict[str, List[str]]:
        return dict(self._media_types)

    @property
    def is_generating_all(self) -> bool:
        """True while generate_all_files_variants is running."""
        return self._generating_all

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: Union[StorageEvent, str], listener: Listener) -> None:
        """Register a progress listener (plain or async callable)."""
        self._listeners[StorageEvent(event)].append(listener)

    def off(self, event: Union[StorageEvent, str], listener: Listener) -> None:
        """Remove a listener registered with on(); unknown listeners are ignored."""
        listeners = self._listeners[StorageEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    async def _emit(self, event: StorageEvent, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            await _maybe_await(listener(payload))

    # =========================================================================
    # Filesystem helpers
    # =========================================================================

    async def _run(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(func, *args, **kwargs)

    async def _remove(self, path: str) -> None:
        """Remove a file; a missing file is not an error."""
        try:
            await self._run(self.fs.rm_file, path)
            logger.debug(f"Removed: {path}")
        except FileNotFoundError:
            pass

    async def _list_entries(self, dir_path: str) -> List[Tuple[str, str]]:
        """(name, type) of every entry in a directory, sorted by name."""
        entries = await self._run(self.fs.ls, dir_path, detail=True)
        return sorted(
            (os.path.basename(entry["name"].rstrip("/")), entry["type"])
            for entry in entries
        )

    async def _list_file_names(self, dir_path: str) -> List[str]:
        return [name for name, kind in await self._list_entries(dir_path) if kind == "file"]

    async def _list_dir_names(self, dir_path: str) -> List[str]:
        return [name for name, kind in await self._list_entries(dir_path) if kind == "directory"]

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def save_file(
        self,
        payload: Union[bytes, bytearray, memoryview],
        before_save: Optional[BeforeSave] = None,
        name: Optional[str] = None,
    ) -> Tuple[str, FileMetadata]:
        """
        Save a payload with its metadata.

        Args:
            payload: File content
            before_save: Called with the detected metadata before anything is
                written; may modify it or add fields (sync or async)
            name: File name without extension; a uuid4 by default

        Returns:
            (file id, metadata)

        Raises:
            InvalidFileIdError: If a supplied name cannot be sharded
        """
        metadata = await identify(payload, self._media_types)

        name = validate_name(name) if name is not None else generate_file_name()
        file_id = f"{name}.{metadata.format or UNKNOWN_FORMAT}"
        file_path = get_file_path(self._path, file_id)
        metadata_path = get_file_metadata_path(self._path, file_id)

        if before_save is not None:
            await _maybe_await(before_save(metadata))

        await self._run(self.fs.makedirs, os.path.dirname(file_path), exist_ok=True)

        results = await asyncio.gather(
            self._run(self.fs.pipe_file, file_path, bytes(payload)),
            self._run(self.fs.pipe_file, metadata_path, metadata.to_document().encode("utf-8")),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for path in (file_path, metadata_path):
                try:
                    await self._remove(path)
                except OSError as e:
                    logger.warning(f"Rollback failed for {path}: {e}")
            raise errors[0]

        logger.debug(f"Saved: {file_id} ({metadata.size} bytes)")
        return file_id, metadata

    async def delete_file(self, file_id: str) -> None:
        """
        Delete a file, its metadata and all of its variants.

        Missing files and malformed ids are ignored.
        """
        if try_parse_id(file_id) is None:
            return

        dir_path = get_shard_dir(self._path, file_id)
        if not await self._run(self.fs.isdir, dir_path):
            return

        paths = [
            os.path.join(dir_path, file_name)
            for file_name in select_artifacts(await self._list_file_names(dir_path), file_id)
        ]
        await asyncio.gather(*(self._remove(path) for path in paths))
        logger.debug(f"Deleted: {file_id} ({len(paths)} files)")

    async def get_file_metadata(self, file_id: str) -> Optional[FileMetadata]:
        """
        Read a file's metadata.

        Returns:
            FileMetadata, or None if the file does not exist
        """
        if try_parse_id(file_id) is None:
            return None

        metadata_path = get_file_metadata_path(self._path, file_id)
        try:
            document = await self._run(self.fs.cat_file, metadata_path)
        except FileNotFoundError:
            return None
        return FileMetadata.from_document(document)

    async def get_file_path(
        self,
        file_id: str,
        variant: Optional[str] = None,
        fallback: Fallback = None,
    ) -> Optional[str]:
        """
        Resolve the path of a file or of one of its variants.

        Args:
            file_id: File id
            variant: Variant name; None for the original
            fallback: Alternatives tried in order when the variant does not
                exist. A variant name, or True (USE_ORIGINAL) for the
                original; a single value or a list.

        Returns:
            Path of the first existing candidate, or None
        """
        if try_parse_id(file_id) is None:
            return None

        if fallback is None:
            fallback = []
        elif isinstance(fallback, (str, bool)):
            fallback = [fallback]

        candidates: List[Optional[str]] = [variant]
        for entry in fallback:
            if entry is True:
                candidates.append(None)
            elif isinstance(entry, str):
                candidates.append(entry)

        for candidate in candidates:
            if candidate is not None and not is_valid_variant_name(candidate):
                continue
            path = get_file_path(self._path, file_id, candidate)
            if await self._run(self.fs.isfile, path):
                return path

        return None

    # =========================================================================
    # Variants
    # =========================================================================

    async def generate_file_variants(
        self,
        file_id: str,
        generator: Generator,
        clean: bool = False,
    ) -> None:
        """
        (Re)generate the variants of one file.

        Variants are generated one at a time in list order. A
        GenerateProgressEvent is emitted before the first variant and after
        each one. Generator errors propagate; variants already written stay.

        Args:
            file_id: File id
            generator: Writes one variant (sync or async)
            clean: Remove existing variants first

        Raises:
            StorageConfigError: If variants depend on metadata that is missing
        """
        src_path = await self.get_file_path(file_id)
        if src_path is None:
            return

        metadata = None
        if self._variants.needs_metadata:
            metadata = await self.get_file_metadata(file_id)
            if metadata is None:
                raise StorageConfigError(f"Metadata missing for {file_id}, cannot derive variants")
        variants = self._variants.resolve(metadata)

        if clean:
            dir_path = os.path.dirname(src_path)
            stale = [
                os.path.join(dir_path, file_name)
                for file_name in select_variants(await self._list_file_names(dir_path), file_id)
            ]
            await asyncio.gather(*(self._remove(path) for path in stale))
            logger.debug(f"Cleaned {len(stale)} variants of {file_id}")

        ready: List[str] = []
        total = len(variants)
        await self._emit(
            StorageEvent.GENERATE_PROGRESS,
            GenerateProgressEvent(id=file_id, ready=list(ready), total=total),
        )

        for variant in variants:
            dest_path = get_file_path(self._path, file_id, variant.name)
            await _maybe_await(generator(file_id, src_path, dest_path, variant))

            ready.append(variant.name)
            await self._emit(
                StorageEvent.GENERATE_PROGRESS,
                GenerateProgressEvent(id=file_id, ready=list(ready), total=total),
            )

        logger.debug(f"Generated {total} variants of {file_id}")

    async def generate_all_files_variants(
        self,
        generator: Generator,
        clean: bool = False,
    ) -> None:
        """
        (Re)generate variants of every stored file, one file at a time.

        A second call while a pass is running on this instance returns
        immediately without doing anything.
        """
        if self._generating_all:
            logger.warning("Variant generation for all files already running, skipped")
            return

        self._generating_all = True
        try:
            file_ids = await self.list_file_ids()
            total = len(file_ids)
            await self._emit(
                StorageEvent.GENERATE_ALL_PROGRESS,
                GenerateAllProgressEvent(ready=0, total=total),
            )

            for processed, file_id in enumerate(file_ids, start=1):
                await self.generate_file_variants(file_id, generator, clean=clean)
                await self._emit(
                    StorageEvent.GENERATE_ALL_PROGRESS,
                    GenerateAllProgressEvent(id=file_id, ready=processed, total=total),
                )

            logger.info(f"Generated variants for {total} files")
        finally:
            self._generating_all = False

    # =========================================================================
    # Discovery & Stats
    # =========================================================================

    async def list_file_ids(self) -> List[str]:
        """
        Ids of every stored file, found by walking <root>/<c1>/<c2>/.

        Returns an empty list if the root does not exist yet.
        """
        if not await self._run(self.fs.isdir, self._path):
            return []

        hash1_dirs = [
            os.path.join(self._path, name) for name in await self._list_dir_names(self._path)
        ]
        hash2_lists = await asyncio.gather(*(self._list_dir_names(d) for d in hash1_dirs))
        hash2_dirs = [
            os.path.join(hash1_dir, name)
            for hash1_dir, names in zip(hash1_dirs, hash2_lists)
            for name in names
        ]
        file_lists = await asyncio.gather(*(self._list_file_names(d) for d in hash2_dirs))

        return [
            file_name
            for file_names in file_lists
            for file_name in file_names
            if is_file_id(file_name)
        ]

    async def get_stats(self) -> dict:
        """
        Get storage statistics.

        Returns:
            Dictionary with storage stats
        """
        artifacts_count = 0
        size_bytes = 0
        if await self._run(self.fs.isdir, self._path):
            found = await self._run(self.fs.find, self._path, detail=True)
            artifacts_count = len(found)
            size_bytes = sum(info.get("size") or 0 for info in found.values())

        return {
            "files_count": len(await self.list_file_ids()),
            "artifacts_count": artifacts_count,
            "size_bytes": size_bytes,
            "base_path": self._path,
            "storage_type": "local_filesystem",
        }
