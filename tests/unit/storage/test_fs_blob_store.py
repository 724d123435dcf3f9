"""Tests for blob stores."""

from pathlib import Path

import pytest

from thotnet.core.storage.backends.fs import FSBlobStore, sanitize_path_component
from thotnet.core.storage.backends.memory import InMemoryBlobStore
from thotnet.core.storage.errors import BlobStoreError


@pytest.mark.parametrize(
    ("component", "expected"),
    [
        ("intro-ml", "intro-ml"),
        ("my subject/part", "my_subject_part"),
        ("...", "_"),
        ("", "_"),
        ("café", "caf"),
    ],
)
def test_sanitize_path_component(component, expected):
    """Test unsafe characters are replaced."""
    assert sanitize_path_component(component) == expected


async def test_put_and_get(tmp_path: Path):
    """Test bytes round-trip through the filesystem."""
    store = FSBlobStore(tmp_path)

    location = await store.put("intro-ml/textbook-en.md", b"# Title", "text/markdown")

    assert Path(location).is_absolute()
    assert Path(location) == tmp_path.resolve() / "intro-ml" / "textbook-en.md"
    assert await store.get(location) == b"# Title"
    assert await store.exists(location)


async def test_put_overwrites(tmp_path: Path):
    """Test a second put replaces the object without leaving temp files."""
    store = FSBlobStore(tmp_path)

    await store.put("a/b.png", b"one", "image/png")
    location = await store.put("a/b.png", b"two", "image/png")

    assert await store.get(location) == b"two"
    assert [p.name for p in (tmp_path / "a").iterdir()] == ["b.png"]


async def test_parent_segments_are_dropped(tmp_path: Path):
    """Test traversal segments cannot escape the root."""
    store = FSBlobStore(tmp_path / "blobs")

    location = await store.put("../../etc/passwd", b"x", "text/plain")

    assert Path(location).is_relative_to((tmp_path / "blobs").resolve())


async def test_invalid_path(tmp_path: Path):
    """Test an empty object path is rejected."""
    with pytest.raises(BlobStoreError):
        await FSBlobStore(tmp_path).put("..", b"x", "text/plain")


async def test_get_outside_root(tmp_path: Path):
    """Test reads outside the root fail and report non-existence."""
    outside = tmp_path / "outside.txt"
    outside.write_bytes(b"secret")
    store = FSBlobStore(tmp_path / "blobs")

    with pytest.raises(BlobStoreError):
        await store.get(str(outside))
    assert not await store.exists(str(outside))


async def test_get_missing(tmp_path: Path):
    """Test a missing object raises BlobStoreError."""
    store = FSBlobStore(tmp_path)

    with pytest.raises(BlobStoreError):
        await store.get(str(tmp_path / "missing.md"))
    assert not await store.exists(str(tmp_path / "missing.md"))


async def test_memory_blob_store():
    """Test the in-memory blob store."""
    store = InMemoryBlobStore()

    location = await store.put("a/b.md", b"body", "text/markdown")

    assert location == "memory://a/b.md"
    assert store.objects[location] == (b"body", "text/markdown")
    assert await store.get(location) == b"body"
    with pytest.raises(BlobStoreError):
        await store.get("memory://missing")
