"""
File id conventions and shard path derivation.

Id format: <name>.<ext>

- name: opaque unique name (uuid4 unless supplied by the caller)
- ext: detected format extension

Layout under the storage root:

    <root>/<c1>/<c2>/<name>.<ext>              original
    <root>/<c1>/<c2>/<name>.<ext>.json         metadata
    <root>/<c1>/<c2>/<name>.<variant>.<ext>    variant

c1 is the third-from-last character of name, c2 its last two characters.
The shard is always recomputed from the id and never stored.
"""

import os
import re
from typing import List, Optional, Set, Tuple, Union

from .errors import InvalidFileIdError

# Number of trailing name characters consumed by the two shard levels
SHARD_NAME_LENGTH = 3

METADATA_SUFFIX = ".json"

# A name or extension segment: no dots, no path separators
_SEGMENT = r"[^./\\]+"

FILE_ID_PATTERN = re.compile(rf"^({_SEGMENT})\.({_SEGMENT})$")

NAME_PATTERN = re.compile(rf"^{_SEGMENT}$")

PathLike = Union[str, "os.PathLike[str]"]


def validate_name(name: str) -> str:
    """
    Check an opaque file name.

    Args:
        name: Name without extension

    Returns:
        The name, unchanged

    Raises:
        InvalidFileIdError: If the name contains dots or path separators,
            or is shorter than the shard derivation needs.
    """
    if not NAME_PATTERN.match(name or ""):
        raise InvalidFileIdError(f"File name must not contain '.', '/' or '\\': {name!r}")
    if len(name) < SHARD_NAME_LENGTH:
        raise InvalidFileIdError(
            f"File name must be at least {SHARD_NAME_LENGTH} characters, got {name!r}"
        )
    return name


def is_valid_variant_name(variant: str) -> bool:
    """True if a variant name can be spliced into a file name."""
    return bool(NAME_PATTERN.match(variant or ""))


def is_valid_extension(ext: str) -> bool:
    """True if an extension can end a file id (single segment, no dots)."""
    return bool(NAME_PATTERN.match(ext or ""))


def parse_id(file_id: str) -> Tuple[str, str]:
    """
    Split a file id into name and extension.

    Raises:
        InvalidFileIdError: If the id is not <name>.<ext>.
    """
    match = FILE_ID_PATTERN.match(file_id or "")
    if not match:
        raise InvalidFileIdError(f"File id must look like <name>.<ext>: {file_id!r}")
    name, ext = match.group(1), match.group(2)
    validate_name(name)
    return name, ext


def try_parse_id(file_id: str) -> Optional[Tuple[str, str]]:
    """Like parse_id, but None for malformed ids."""
    try:
        return parse_id(file_id)
    except InvalidFileIdError:
        return None


def is_file_id(file_name: str) -> bool:
    """True if a directory entry is an original file (not a variant or metadata)."""
    return try_parse_id(file_name) is not None


def get_hash(file_id: str) -> Tuple[str, str]:
    """Shard directory names for an id: (third-from-last char, last two chars)."""
    name, _ = parse_id(file_id)
    return name[-3:-2], name[-2:]


def get_shard_dir(root: PathLike, file_id: str) -> str:
    """Directory holding every artifact of a file."""
    return os.path.join(os.fspath(root), *get_hash(file_id))


def get_file_path(root: PathLike, file_id: str, variant: Optional[str] = None) -> str:
    """
    Path of the original file, or of one of its variants.

    Args:
        root: Storage root
        file_id: File id
        variant: Variant name; None for the original

    Returns:
        <root>/<c1>/<c2>/<name>[.<variant>].<ext>
    """
    name, ext = parse_id(file_id)
    file_name = ".".join(part for part in (name, variant, ext) if part)
    return os.path.join(get_shard_dir(root, file_id), file_name)


def get_file_metadata_path(root: PathLike, file_id: str) -> str:
    """Path of the metadata document: <root>/<c1>/<c2>/<id>.json."""
    return os.path.join(get_shard_dir(root, file_id), f"{file_id}{METADATA_SUFFIX}")


def belongs_to(file_name: str, file_id: str) -> bool:
    """
    True if a shard directory entry is an artifact of the given file.

    Matches the original, every variant and the metadata document.
    """
    name, ext = parse_id(file_id)
    if not file_name.startswith(f"{name}."):
        return False
    return file_name.endswith(f".{ext}") or file_name.endswith(f".{ext}{METADATA_SUFFIX}")


def is_variant_of(file_name: str, file_id: str) -> bool:
    """True if a shard directory entry is a variant (not original, not metadata)."""
    name, ext = parse_id(file_id)
    if file_name in (file_id, f"{file_id}{METADATA_SUFFIX}"):
        return False
    return file_name.startswith(f"{name}.") and file_name.endswith(f".{ext}")


def _foreign_metadata(file_names: List[str], file_id: str) -> Set[str]:
    """Metadata documents of the other originals in a shard listing."""
    return {
        f"{file_name}{METADATA_SUFFIX}"
        for file_name in file_names
        if file_name != file_id and is_file_id(file_name)
    }


def select_artifacts(file_names: List[str], file_id: str) -> List[str]:
    """
    Entries of a shard listing that belong to a file.

    ``report.txt.json`` looks like a variant of ``report.json`` named "txt";
    while ``report.txt`` is present it is that file's metadata and is skipped.
    """
    foreign = _foreign_metadata(file_names, file_id)
    return [n for n in file_names if belongs_to(n, file_id) and n not in foreign]


def select_variants(file_names: List[str], file_id: str) -> List[str]:
    """Variant entries of a shard listing, same exclusions as select_artifacts."""
    foreign = _foreign_metadata(file_names, file_id)
    return [n for n in file_names if is_variant_of(n, file_id) and n not in foreign]
