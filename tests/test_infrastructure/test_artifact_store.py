"""
Tests for pipewright.infrastructure.artifact_store
====================================================

Both store implementations are exercised through the same test classes via
a parametrized fixture, so they are held to one contract.

What's Being Tested:
    - put / get round trip and path normalization
    - put-once: a second write to a key is rejected
    - Retention: default window, explicit expire_in, keep_forever
    - Expired reads raise ArtifactExpiredError, before and after purge
    - list_for_job() and count() only see live artifacts
    - Job names containing "/" or ".." on disk
    - create_artifact_store() factory
"""

from datetime import timedelta

import pytest

from pipewright.core.config import ArtifactConfig
from pipewright.core.exceptions import (
    ArtifactExistsError,
    ArtifactExpiredError,
    ArtifactNotFoundError,
)
from pipewright.core.models import MAX_DURATION
from pipewright.infrastructure.artifact_store import (
    FileSystemArtifactStore,
    InMemoryArtifactStore,
    create_artifact_store,
)


@pytest.fixture(params=["memory", "filesystem"])
def store(request, clock, tmp_path):
    """Each artifact store implementation on the fake clock."""
    if request.param == "memory":
        return InMemoryArtifactStore(clock=clock)
    return FileSystemArtifactStore(root=tmp_path / "artifacts", clock=clock)


# =============================================================================
# Publishing and Reading
# =============================================================================
class TestPutAndGet:

    async def test_round_trip(self, store) -> None:
        artifact = await store.put("run-1", "build", "frontend/index.html", b"<html></html>")

        assert artifact.key == ("run-1", "build", "frontend/index.html")
        assert artifact.size == 13
        assert await store.get("run-1", "build", "frontend/index.html") == b"<html></html>"

    async def test_paths_are_normalized(self, store) -> None:
        await store.put("run-1", "build", "./dist//app.js", b"js")
        assert await store.get("run-1", "build", "dist/app.js") == b"js"

    async def test_missing_artifact(self, store) -> None:
        with pytest.raises(ArtifactNotFoundError) as exc_info:
            await store.get("run-1", "build", "nothing.txt")
        assert exc_info.value.error_code == "ARTIFACT_NOT_FOUND"

    async def test_keys_are_scoped_by_run_and_job(self, store) -> None:
        await store.put("run-1", "build", "out.txt", b"one")
        await store.put("run-2", "build", "out.txt", b"two")
        await store.put("run-1", "lint", "out.txt", b"three")

        assert await store.get("run-2", "build", "out.txt") == b"two"
        assert await store.get("run-1", "lint", "out.txt") == b"three"

    async def test_put_once(self, store) -> None:
        await store.put("run-1", "build", "out.txt", b"first")

        with pytest.raises(ArtifactExistsError):
            await store.put("run-1", "build", "out.txt", b"second")

        assert await store.get("run-1", "build", "out.txt") == b"first"


# =============================================================================
# Retention
# =============================================================================
class TestRetention:

    async def test_default_retention_is_one_day(self, store, clock) -> None:
        artifact = await store.put("run-1", "build", "out.txt", b"data")
        assert artifact.expires_at == clock.current + timedelta(hours=24)

    async def test_expired_read_raises(self, store, clock) -> None:
        await store.put("run-1", "build", "out.txt", b"data", retention=timedelta(hours=1))

        clock.advance(timedelta(minutes=59))
        assert await store.get("run-1", "build", "out.txt") == b"data"

        clock.advance(timedelta(minutes=1))
        with pytest.raises(ArtifactExpiredError) as exc_info:
            await store.get("run-1", "build", "out.txt")
        assert exc_info.value.error_code == "ARTIFACT_EXPIRED"

    async def test_keep_forever(self, store, clock) -> None:
        artifact = await store.put("run-1", "build", "out.txt", b"data", keep_forever=True)
        assert artifact.expires_at is None

        clock.advance(timedelta(days=3650))
        assert await store.get("run-1", "build", "out.txt") == b"data"

    async def test_purge_keeps_expiry_marker(self, store, clock) -> None:
        await store.put("run-1", "build", "old.txt", b"old", retention=timedelta(hours=1))
        await store.put("run-1", "build", "new.txt", b"new", retention=timedelta(days=2))

        clock.advance(timedelta(hours=2))
        assert await store.purge_expired() == 1
        assert await store.purge_expired() == 0

        with pytest.raises(ArtifactExpiredError):
            await store.get("run-1", "build", "old.txt")
        with pytest.raises(ArtifactExistsError):
            await store.put("run-1", "build", "old.txt", b"again")
        assert await store.get("run-1", "build", "new.txt") == b"new"

    async def test_zero_retention_is_not_the_default(self, store, clock) -> None:
        artifact = await store.put("run-1", "build", "out.txt", b"data", retention=timedelta(0))

        assert artifact.expires_at == clock.current
        with pytest.raises(ArtifactExpiredError):
            await store.get("run-1", "build", "out.txt")

    async def test_retention_is_capped(self, store, clock) -> None:
        artifact = await store.put(
            "run-1", "build", "out.txt", b"data", retention=timedelta(days=365 * 9000)
        )
        assert artifact.expires_at == clock.current + MAX_DURATION


# =============================================================================
# Listing
# =============================================================================
class TestListing:

    async def test_list_for_job_sorted_and_live_only(self, store, clock) -> None:
        await store.put("run-1", "build", "b.txt", b"b")
        await store.put("run-1", "build", "a.txt", b"a")
        await store.put("run-1", "build", "short.txt", b"s", retention=timedelta(minutes=5))
        await store.put("run-1", "test", "report.xml", b"<xml/>")

        clock.advance(timedelta(minutes=10))
        artifacts = await store.list_for_job("run-1", "build")

        assert [a.path for a in artifacts] == ["a.txt", "b.txt"]
        assert artifacts[0].content == b"a"
        assert await store.count() == 3

    async def test_list_unknown_job(self, store) -> None:
        assert await store.list_for_job("run-1", "ghost") == []
        assert await store.count() == 0

    async def test_job_names_with_slashes(self, store, clock) -> None:
        await store.put("run-1", "build/frontend", "a.txt", b"a", retention=timedelta(hours=1))

        assert await store.count() == 1
        assert [a.path for a in await store.list_for_job("run-1", "build/frontend")] == ["a.txt"]

        clock.advance(timedelta(hours=2))
        assert await store.purge_expired() == 1
        assert await store.count() == 0


# =============================================================================
# File System Layout
# =============================================================================
class TestFileSystemLayout:

    async def test_content_and_index_on_disk(self, tmp_path, clock) -> None:
        store = FileSystemArtifactStore(root=tmp_path, clock=clock)
        await store.put("run-1", "build", "frontend/index.html", b"<html>")

        job_dir = tmp_path / "run-1" / "build"
        assert (job_dir / "files" / "frontend" / "index.html").read_bytes() == b"<html>"
        assert (job_dir / "index.json").exists()

    async def test_survives_a_new_instance(self, tmp_path, clock) -> None:
        await FileSystemArtifactStore(root=tmp_path, clock=clock).put("run-1", "build", "x", b"1")

        reopened = FileSystemArtifactStore(root=tmp_path, clock=clock)
        assert await reopened.get("run-1", "build", "x") == b"1"

    async def test_purge_deletes_content(self, tmp_path, clock) -> None:
        store = FileSystemArtifactStore(root=tmp_path, clock=clock)
        await store.put("run-1", "build", "x", b"1", retention=timedelta(seconds=1))

        clock.advance(timedelta(seconds=1))
        await store.purge_expired()

        assert not (tmp_path / "run-1" / "build" / "files" / "x").exists()

    async def test_job_name_is_one_directory(self, tmp_path, clock) -> None:
        root = tmp_path / "artifacts"
        store = FileSystemArtifactStore(root=root, clock=clock)
        await store.put("run-1", "build/frontend", "a.txt", b"a")
        await store.put("run-1", "..", "b.txt", b"b")

        job_dirs = sorted(p.name for p in (root / "run-1").iterdir())
        assert job_dirs == ["%2E%2E", "build%2Ffrontend"]
        assert sorted(p.name for p in tmp_path.iterdir()) == ["artifacts"]
        assert await store.get("run-1", "..", "b.txt") == b"b"


# =============================================================================
# Factory
# =============================================================================
class TestCreateArtifactStore:

    def test_memory_backend(self) -> None:
        store = create_artifact_store(ArtifactConfig(default_retention_hours=2))
        assert isinstance(store, InMemoryArtifactStore)
        assert store.default_retention == timedelta(hours=2)

    def test_filesystem_backend(self, tmp_path) -> None:
        store = create_artifact_store(ArtifactConfig(backend="filesystem", root=str(tmp_path)))
        assert isinstance(store, FileSystemArtifactStore)
        assert store.root == tmp_path

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown artifact backend"):
            create_artifact_store(ArtifactConfig.model_construct(backend="s3"))
