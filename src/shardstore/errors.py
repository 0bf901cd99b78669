"""
Exceptions raised by shardstore.

Not-found conditions are never raised: lookups return None and
delete/generate on a missing file are no-ops.
"""


class ShardStoreError(Exception):
    """Base class for shardstore errors."""


class StorageConfigError(ShardStoreError, ValueError):
    """Storage was configured incorrectly (e.g. no root path)."""


class InvalidFileIdError(ShardStoreError, ValueError):
    """File id or opaque name cannot be mapped to a shard path."""


class IdentificationError(ShardStoreError, OSError):
    """The media type sniffing tool failed."""
