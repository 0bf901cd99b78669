"""
Storage Models — Pydantic models for shardstore.

This module provides:
- FileMetadata — metadata sidecar document (core fields + caller extras)
- VariantDescription — one named variant and its generator parameters
- StaticVariants / DerivedVariants — how the variant list is obtained
- GenerateProgressEvent / GenerateAllProgressEvent — progress records
- Helper functions for name generation

Ready-Made Solutions:
- Pydantic v2 for validation and (de)serialization
- uuid for unique names
"""

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# File Metadata
# =============================================================================


class FileMetadata(BaseModel):
    """
    Metadata stored next to every original file.

    Core fields are detected on save. Hooks may attach any additional
    attribute (``metadata.length = 10``); extras are written into the same
    document and restored on read.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    format: Optional[str] = Field(None, description="Detected format extension, e.g. 'txt'")
    media_type: Optional[str] = Field(
        None,
        alias="mediaType",
        description="Detected media (MIME) type, e.g. 'text/plain'"
    )
    size: int = Field(ge=0, description="Size in bytes")

    def to_document(self) -> str:
        """Serialize to the on-disk JSON document."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_document(cls, document: Union[str, bytes]) -> "FileMetadata":
        """Parse the on-disk JSON document."""
        return cls.model_validate_json(document)


# =============================================================================
# Variants
# =============================================================================


class VariantDescription(BaseModel):
    """
    Description of one variant.

    Only ``name`` is interpreted by the storage; every other key is passed
    through to the generator (e.g. ``length``, ``width``).
    """

    model_config = ConfigDict(extra="allow")

    name: str = Field(
        min_length=1,
        pattern=r"^[^./\\]+$",
        description="Variant name, spliced into the file name"
    )


VariantLike = Union[VariantDescription, dict]


def _to_descriptions(variants: Iterable[VariantLike]) -> List[VariantDescription]:
    return [
        v if isinstance(v, VariantDescription) else VariantDescription.model_validate(v)
        for v in variants
    ]


@dataclass(frozen=True)
class StaticVariants:
    """The same variant list for every file."""

    variants: List[VariantDescription] = field(default_factory=list)

    def resolve(self, metadata: Optional[FileMetadata]) -> List[VariantDescription]:
        return list(self.variants)

    @property
    def needs_metadata(self) -> bool:
        return False


@dataclass(frozen=True)
class DerivedVariants:
    """Variant list computed from each file's metadata."""

    resolver: Callable[[FileMetadata], Iterable[VariantLike]]

    def resolve(self, metadata: Optional[FileMetadata]) -> List[VariantDescription]:
        return _to_descriptions(self.resolver(metadata))

    @property
    def needs_metadata(self) -> bool:
        return True


VariantsSpec = Union[StaticVariants, DerivedVariants]


def as_variants_spec(value: Any) -> VariantsSpec:
    """
    Normalize configured variants.

    Accepts a ready spec, a callable (metadata -> list) or an iterable of
    VariantDescription / dict items.
    """
    if isinstance(value, (StaticVariants, DerivedVariants)):
        return value
    if value is None:
        return StaticVariants()
    if callable(value):
        return DerivedVariants(value)
    return StaticVariants(_to_descriptions(value))


# =============================================================================
# Progress Events
# =============================================================================


class StorageEvent(str, enum.Enum):
    """Event channels a FileStorage emits on."""
    GENERATE_PROGRESS = "generate_progress"
    GENERATE_ALL_PROGRESS = "generate_all_progress"


class GenerateProgressEvent(BaseModel):
    """Progress of variant generation for one file."""

    id: str = Field(description="File id")
    ready: List[str] = Field(default_factory=list, description="Variant names generated so far")
    total: int = Field(ge=0, description="Number of variants to generate")


class GenerateAllProgressEvent(BaseModel):
    """Progress of a regeneration pass over every stored file."""

    id: Optional[str] = Field(None, description="Last processed file id; None on the announcement")
    ready: int = Field(ge=0, description="Files processed so far")
    total: int = Field(ge=0, description="Files discovered")


# =============================================================================
# Helper Functions
# =============================================================================


def generate_file_name() -> str:
    """
    Generate an opaque file name.

    Format: uuid4
    Example: a1b2c3d4-e5f6-7890-abcd-ef1234567890
    """
    return str(uuid.uuid4())
