"""
Shared fixtures for shardstore tests.

The ``file`` tool is replaced by a fake sniffer in engine tests so they do
not depend on the host; tests of the real tool live in test_identify.py.
"""

from pathlib import Path

import pytest

from shardstore import identify as identify_module
from shardstore.file_storage import FileStorage

TEXT_MEDIA_TYPES = {"text/plain": ["txt"]}

VARIANTS = [
    {"name": "tiny", "length": 10},
    {"name": "preview", "length": 100},
]

TEXT = ("Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 10)[:500].encode("utf-8")


def truncate_generator(file_id, src_path, dest_path, variant):
    """Write the first `variant.length` bytes of the source."""
    data = Path(src_path).read_bytes()
    Path(dest_path).write_bytes(data[: variant.length])


async def async_truncate_generator(file_id, src_path, dest_path, variant):
    truncate_generator(file_id, src_path, dest_path, variant)


@pytest.fixture
def fake_sniffer(monkeypatch):
    """Every non-empty payload is text/plain, empty payloads are unknown."""
    calls = []

    async def detect(payload):
        calls.append(payload)
        if isinstance(payload, (bytes, bytearray, memoryview)):
            return "text/plain" if len(payload) else None
        return "text/plain"

    monkeypatch.setattr(identify_module, "detect_media_type", detect)
    return calls


@pytest.fixture
def no_system_media_types(monkeypatch):
    """Ignore /etc/mime.types so results do not depend on the host."""
    monkeypatch.setattr(identify_module, "system_media_types", lambda: {})


@pytest.fixture
def root(tmp_path) -> Path:
    return tmp_path / "files"


@pytest.fixture
def storage(root, fake_sniffer) -> FileStorage:
    """Storage without variants."""
    return FileStorage(path=root, media_types=TEXT_MEDIA_TYPES)


@pytest.fixture
def variant_storage(root, fake_sniffer) -> FileStorage:
    """Storage with the tiny / preview variants."""
    return FileStorage(path=root, variants=VARIANTS, media_types=TEXT_MEDIA_TYPES)
