"""
shardstore — sharded local file storage with named variants.

Components:
- models: Pydantic models for metadata, variants and progress events
- paths: file id conventions and shard path derivation
- identify: format / media type / size detection (use shardstore.identify.identify)
- config: StorageConfig (environment, YAML)
- file_storage: FileStorage engine

Ready-Made Solutions:
- fsspec: File system abstraction
- Pydantic: Data validation
- PyYAML / python-dotenv: Configuration
"""

from .config import StorageConfig
from .errors import (
    IdentificationError,
    InvalidFileIdError,
    ShardStoreError,
    StorageConfigError,
)
from .file_storage import UNKNOWN_FORMAT, USE_ORIGINAL, FileStorage
from .models import (
    DerivedVariants,
    FileMetadata,
    GenerateAllProgressEvent,
    GenerateProgressEvent,
    StaticVariants,
    StorageEvent,
    VariantDescription,
    generate_file_name,
)

__all__ = [
    # Config
    "StorageConfig",
    # Errors
    "ShardStoreError",
    "StorageConfigError",
    "InvalidFileIdError",
    "IdentificationError",
    # Models
    "FileMetadata",
    "VariantDescription",
    "StaticVariants",
    "DerivedVariants",
    "StorageEvent",
    "GenerateProgressEvent",
    "GenerateAllProgressEvent",
    "generate_file_name",
    # File Storage
    "FileStorage",
    "UNKNOWN_FORMAT",
    "USE_ORIGINAL",
]
