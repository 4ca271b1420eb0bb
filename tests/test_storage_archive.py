"""Tests for the local storage backend and tar archiver."""

import io
import os
import tarfile

import pytest

from strongbox.backup.archive import TarArchiver, is_archive_key, strip_archive_suffix
from strongbox.backup.storage import LocalStorageBackend
from strongbox.utils.errors import ExtractionError, NotFoundError, TransferError


class TestLocalStorageBackend:
    """Test the filesystem implementation of the storage contract."""

    @pytest.mark.asyncio
    async def test_put_and_read_bytes(self, storage):
        info = await storage.put_object("backups/ts/backup.json", b'{"a": 1}')

        assert info.key == "backups/ts/backup.json"
        assert info.size == 8
        assert await storage.read_object("backups/ts/backup.json") == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_put_from_local_file(self, storage, temp_directory):
        source = os.path.join(temp_directory, "archive.tar.gz")
        with open(source, "wb") as f:
            f.write(b"x" * 2048)

        await storage.put_object("backups/ts/archive.tar.gz", source)

        head = await storage.head_object("backups/ts/archive.tar.gz")
        assert head.size == 2048

    @pytest.mark.asyncio
    async def test_list_objects_by_prefix(self, storage):
        await storage.put_object("backups/a/one", b"1")
        await storage.put_object("backups/b/two", b"22")
        await storage.put_object("other/three", b"333")

        keys = [info.key for info in await storage.list_objects("backups/")]

        assert keys == ["backups/a/one", "backups/b/two"]

    @pytest.mark.asyncio
    async def test_list_missing_root_is_empty(self, temp_directory):
        storage = LocalStorageBackend(os.path.join(temp_directory, "nowhere"))

        assert await storage.list_objects() == []

    @pytest.mark.asyncio
    async def test_missing_object(self, storage):
        with pytest.raises(NotFoundError):
            await storage.head_object("backups/missing")

        with pytest.raises(NotFoundError):
            await storage.read_object("backups/missing")

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, storage):
        with pytest.raises(TransferError):
            await storage.put_object("../outside", b"data")

    @pytest.mark.asyncio
    async def test_delete_prefix(self, storage):
        await storage.put_object("backups/a/one", b"1")
        await storage.put_object("backups/a/data/two", b"2")
        await storage.put_object("backups/b/three", b"3")

        deleted = await storage.delete_prefix("backups/a/")

        assert deleted == 2
        assert [info.key for info in await storage.list_objects()] == ["backups/b/three"]
        assert not os.path.exists(os.path.join(storage.root, "backups", "a"))


class TestTarArchiver:
    """Test archive creation and guarded extraction."""

    def _make_tree(self, root):
        os.makedirs(os.path.join(root, "data", "src"))
        with open(os.path.join(root, "backup.json"), "w", encoding="utf-8") as f:
            f.write("{}")
        with open(os.path.join(root, "data", "src", "main.py"), "w", encoding="utf-8") as f:
            f.write("print('hi')")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", [0, 6])
    async def test_compress_and_extract(self, archiver, temp_directory, level):
        source = os.path.join(temp_directory, "staging")
        self._make_tree(source)
        archive = os.path.join(temp_directory, "out", "system.tar.gz")

        assert await archiver.compress(source, archive, level) == archive

        target = os.path.join(temp_directory, "restored")
        await archiver.extract(archive, target)

        assert os.path.isfile(os.path.join(target, "backup.json"))
        with open(os.path.join(target, "data", "src", "main.py"), encoding="utf-8") as f:
            assert f.read() == "print('hi')"

    @pytest.mark.asyncio
    async def test_compress_missing_directory(self, archiver, temp_directory):
        with pytest.raises(ExtractionError):
            await archiver.compress(os.path.join(temp_directory, "missing"), os.path.join(temp_directory, "a.tar.gz"))

    @pytest.mark.asyncio
    async def test_extract_rejects_path_traversal(self, archiver, temp_directory):
        archive = os.path.join(temp_directory, "evil.tar")
        with tarfile.open(archive, "w") as tar:
            payload = b"owned"
            member = tarfile.TarInfo("../escaped.txt")
            member.size = len(payload)
            tar.addfile(member, io.BytesIO(payload))

        target = os.path.join(temp_directory, "restored")
        with pytest.raises(ExtractionError):
            await archiver.extract(archive, target)

        assert not os.path.exists(os.path.join(temp_directory, "escaped.txt"))

    @pytest.mark.asyncio
    async def test_extract_corrupt_archive(self, archiver, temp_directory):
        archive = os.path.join(temp_directory, "broken.tar.gz")
        with open(archive, "wb") as f:
            f.write(b"not an archive")

        with pytest.raises(ExtractionError):
            await archiver.extract(archive, os.path.join(temp_directory, "restored"))


class TestArchiveKeys:
    def test_is_archive_key(self):
        assert is_archive_key("backups/ts/system-ts.tar.gz")
        assert is_archive_key("backups/ts/system.tgz")
        assert not is_archive_key("backups/ts/backup.json")

    def test_strip_archive_suffix(self):
        assert strip_archive_suffix("system-ts.tar.gz") == "system-ts"
        assert strip_archive_suffix("backup.json") == "backup.json"
