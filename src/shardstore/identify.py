"""
File identification — format, media type and size of a payload.

The media type is sniffed by the ``file`` command line tool. Byte payloads
are streamed to its stdin, paths are passed as arguments. The format is the
first extension the merged media type table lists for that media type.

Ready-Made Solutions:
- file(1): content sniffing
- /etc/mime.types: system media type table
- fsspec: file size for path payloads
"""

import asyncio
import logging
import os
from functools import lru_cache
from typing import Dict, List, Mapping, Optional, Union

import fsspec

from .errors import IdentificationError
from .models import FileMetadata
from .paths import is_valid_extension

logger = logging.getLogger(__name__)

MediaTypes = Mapping[str, List[str]]

Payload = Union[bytes, bytearray, memoryview, str, "os.PathLike[str]"]

SYSTEM_MEDIA_TYPES_PATH = "/etc/mime.types"

FILE_COMMAND = "file"

# -b: no file name, -k: keep going, -n: flush, -r: raw output
FILE_ARGS = ("-b", "-k", "-n", "-r", "--mime-type")


def _is_bytes(payload: Payload) -> bool:
    return isinstance(payload, (bytes, bytearray, memoryview))


def load_system_media_types(path: str = SYSTEM_MEDIA_TYPES_PATH) -> Dict[str, List[str]]:
    """
    Parse a mime.types table.

    Each non-comment line is ``<media type> <ext> <ext> ...``.
    Returns an empty table if the file cannot be read.
    """
    try:
        with open(path, encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as e:
        logger.debug(f"No system media types at {path}: {e}")
        return {}

    table: Dict[str, List[str]] = {}
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        media_type, *extensions = line.split()
        table[media_type] = extensions
    return table


@lru_cache(maxsize=1)
def system_media_types() -> Dict[str, List[str]]:
    """System table, read once per process."""
    return load_system_media_types()


async def _feed_stdin(stdin: asyncio.StreamWriter, data: bytes) -> None:
    """Write the payload to the sniffer; it may stop reading early."""
    try:
        stdin.write(data)
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        pass
    finally:
        try:
            stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            pass


async def detect_media_type(payload: Payload) -> Optional[str]:
    """
    Sniff the media type of bytes or of a file.

    Returns:
        Best-guess media type, or None if undetermined

    Raises:
        FileNotFoundError: If the ``file`` tool is not installed
        IdentificationError: If the tool exits with an error
    """
    is_bytes = _is_bytes(payload)
    target = "-" if is_bytes else os.fspath(payload)

    process = await asyncio.create_subprocess_exec(
        FILE_COMMAND, *FILE_ARGS, target,
        stdin=asyncio.subprocess.PIPE if is_bytes else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    if is_bytes:
        _, stdout, stderr = await asyncio.gather(
            _feed_stdin(process.stdin, bytes(payload)),
            process.stdout.read(),
            process.stderr.read(),
        )
    else:
        stdout, stderr = await asyncio.gather(
            process.stdout.read(),
            process.stderr.read(),
        )
    returncode = await process.wait()

    if returncode != 0:
        raise IdentificationError(
            f"{FILE_COMMAND} exited with {returncode}: {stderr.decode(errors='replace').strip()}"
        )

    lines = stdout.decode(errors="replace").strip().splitlines()
    if not lines:
        return None
    return lines[0].strip() or None


async def get_size(payload: Payload) -> int:
    """Byte length of a payload, or the size of the file at a path."""
    if _is_bytes(payload):
        return memoryview(payload).nbytes
    fs = fsspec.filesystem("file")
    return await asyncio.to_thread(fs.size, os.fspath(payload))


def format_for(media_type: Optional[str], media_types: Optional[MediaTypes] = None) -> Optional[str]:
    """First extension listed for a media type; caller table overrides the system one."""
    if not media_type:
        return None
    table = {**system_media_types(), **(media_types or {})}
    for ext in table.get(media_type) or []:
        if is_valid_extension(ext):
            return ext
    return None


async def identify(payload: Payload, media_types: Optional[MediaTypes] = None) -> FileMetadata:
    """
    Identify a payload.

    Args:
        payload: Raw bytes or a filesystem path
        media_types: Media type -> extensions, merged over the system table

    Returns:
        FileMetadata with format, media_type and size. Format and media type
        are None when they cannot be determined.
    """
    media_type, size = await asyncio.gather(
        detect_media_type(payload),
        get_size(payload),
    )
    metadata = FileMetadata(
        format=format_for(media_type, media_types),
        media_type=media_type,
        size=size,
    )
    logger.debug(f"Identified payload: {metadata.model_dump(by_alias=True)}")
    return metadata
