"""Tests for LocalObjectStore."""

import pytest

from batchcrop.utils.security import NotFoundError, StorageError


class TestLocalObjectStore:
    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        key = await store.put("raw", "1_a.png", b"payload")

        assert key == "1_a.png"
        assert await store.get("raw", "1_a.png") == b"payload"

    @pytest.mark.asyncio
    async def test_put_refuses_to_overwrite_by_default(self, store):
        await store.put("raw", "a.png", b"first")

        with pytest.raises(StorageError):
            await store.put("raw", "a.png", b"second")
        assert await store.get("raw", "a.png") == b"first"

    @pytest.mark.asyncio
    async def test_put_with_overwrite(self, store):
        await store.put("processed", "a.jpeg", b"first")
        await store.put("processed", "a.jpeg", b"second", overwrite=True)

        assert await store.get("processed", "a.jpeg") == b"second"

    @pytest.mark.asyncio
    async def test_get_missing_object(self, store):
        with pytest.raises(NotFoundError):
            await store.get("raw", "missing.png")

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put("raw", "a.png", b"x")

        assert await store.delete("raw", "a.png") is True
        assert await store.delete("raw", "a.png") is False
        assert not store.exists("raw", "a.png")

    @pytest.mark.asyncio
    async def test_move(self, store):
        await store.put("raw", "a.png", b"x")
        await store.put("raw", "taken.png", b"y")

        assert await store.move("raw", "a.png", "moved/a.png") == "moved/a.png"
        assert await store.get("raw", "moved/a.png") == b"x"
        assert not store.exists("raw", "a.png")

        with pytest.raises(NotFoundError):
            await store.move("raw", "a.png", "b.png")
        with pytest.raises(StorageError):
            await store.move("raw", "moved/a.png", "taken.png")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bucket, key", [
        ("raw", "../escape.png"),
        ("raw", "nested/../../escape.png"),
        ("..", "a.png"),
        ("raw", ""),
    ])
    async def test_keys_cannot_escape_bucket(self, store, bucket, key):
        with pytest.raises(StorageError):
            await store.put(bucket, key, b"x")

    def test_public_url_quotes_key(self, store):
        url = store.public_url("processed", "1_my photo.jpeg")
        assert url == "http://testserver/storage/v1/object/public/processed/1_my%20photo.jpeg"
