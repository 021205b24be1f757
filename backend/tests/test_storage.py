"""
Unit tests for local storage and the conversation store.
"""

import pytest
from unittest.mock import AsyncMock

from ai_editor.core.errors import AuthorizationError, NotFoundError, PersistenceError
from ai_editor.models import Message


class TestLocalStorage:
    """Tests for the filesystem backend."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, storage):
        assert await storage.save("a/b.json", '{"x": 1}')
        assert await storage.load("a/b.json") == b'{"x": 1}'
        assert await storage.exists("a/b.json")

    @pytest.mark.asyncio
    async def test_load_missing(self, storage):
        assert await storage.load("missing.json") is None

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, storage):
        assert await storage.save("../escape.json", "x") is False
        assert await storage.load("../../etc/passwd") is None
        assert await storage.exists("../escape.json") is False

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, storage):
        await storage.save("topics/t/topic.json", "{}")
        await storage.save("topics/t/topic.json", "{}")
        assert await storage.list("topics", recursive=True) == ["topics/t/topic.json"]

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        await storage.save("x.txt", b"data", metadata={"k": "v"})
        assert await storage.delete("x.txt")
        assert await storage.delete("x.txt") is False
        assert await storage.list(".") == []


class TestTopics:
    """Topic CRUD and ownership."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        topic = await store.create_topic("alice", "Resolved: X")
        loaded = await store.get_topic(topic.id)
        assert loaded == topic
        assert loaded.user_id == "alice"

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.get_topic("nope")

    @pytest.mark.asyncio
    async def test_traversal_id_is_not_found(self, store):
        with pytest.raises(NotFoundError):
            await store.get_topic("../../etc")

    @pytest.mark.asyncio
    async def test_list_only_own_topics(self, store):
        first = await store.create_topic("alice", "one")
        second = await store.create_topic("alice", "two")
        await store.create_topic("bob", "other")
        topics = await store.list_topics("alice")
        assert [t.id for t in topics] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_ownership(self, store):
        topic = await store.create_topic("alice", "mine")
        assert await store.user_owns_topic("alice", topic.id)
        assert not await store.user_owns_topic("bob", topic.id)
        assert not await store.user_owns_topic("alice", "missing")
        with pytest.raises(AuthorizationError, match="User does not own topic"):
            await store.get_owned_topic("bob", topic.id)

    @pytest.mark.asyncio
    async def test_rename(self, store):
        topic = await store.create_topic("alice", "old")
        renamed = await store.rename_topic("alice", topic.id, "new")
        assert renamed.name == "new"
        assert renamed.updated_at >= topic.updated_at
        assert (await store.get_topic(topic.id)).name == "new"
        with pytest.raises(AuthorizationError):
            await store.rename_topic("bob", topic.id, "hijack")

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, store):
        topic = await store.create_topic("alice", "doomed")
        await store.append_user_message(topic.id, "hi")
        await store.delete_topic("alice", topic.id)
        with pytest.raises(NotFoundError):
            await store.get_messages(topic.id)
        assert await store.list_topics("alice") == []


class TestMessages:
    """Message ordering, insertion and truncation."""

    @pytest.mark.asyncio
    async def test_insert_keeps_sequence_order(self, store):
        topic = await store.create_topic("alice", "t")
        second = Message.from_details("b", topic.id, 2, "assistant")
        first = Message.from_details("a", topic.id, 1, "user")
        await store.insert_message(second)
        await store.insert_message(first)
        messages = await store.get_messages(topic.id)
        assert [m.id for m in messages] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_insert_duplicate_id(self, store):
        topic = await store.create_topic("alice", "t")
        message = Message.from_details("a", topic.id, 1, "user")
        await store.insert_message(message)
        with pytest.raises(PersistenceError, match="already exists"):
            await store.insert_message(message)

    @pytest.mark.asyncio
    async def test_insert_into_missing_topic(self, store):
        with pytest.raises(NotFoundError):
            await store.insert_message(Message.from_details("a", "ghost", 1, "user"))

    @pytest.mark.asyncio
    async def test_insert_write_failure(self, store):
        topic = await store.create_topic("alice", "t")
        store.storage.save = AsyncMock(return_value=False)
        with pytest.raises(PersistenceError):
            await store.insert_message(Message.from_details("a", topic.id, 1, "user"))

    @pytest.mark.asyncio
    async def test_append_user_message(self, store):
        topic = await store.create_topic("alice", "t")
        history = await store.append_user_message(topic.id, "first")
        history = await store.append_user_message(topic.id, "second")
        assert [m.sequence_number for m in history] == [1, 2]
        assert history[-1].role == "user"
        assert history[-1].content == "second"
        assert await store.get_messages(topic.id) == history

    @pytest.mark.asyncio
    async def test_delete_message_and_descendants(self, store):
        topic = await store.create_topic("alice", "t")
        for n, role in enumerate(["user", "assistant", "user", "assistant"], start=1):
            await store.insert_message(Message.from_details(f"m{n}", topic.id, n, role))
        messages = await store.get_messages(topic.id)

        remaining = await store.delete_message_and_descendants("alice", messages[1].id, topic.id)

        assert [m.content for m in remaining] == ["m1"]
        assert await store.get_messages(topic.id) == remaining

    @pytest.mark.asyncio
    async def test_delete_message_wrong_owner(self, store):
        topic = await store.create_topic("alice", "t")
        history = await store.append_user_message(topic.id, "hi")
        with pytest.raises(AuthorizationError):
            await store.delete_message_and_descendants("bob", history[0].id, topic.id)
        assert len(await store.get_messages(topic.id)) == 1

    @pytest.mark.asyncio
    async def test_delete_missing_message(self, store):
        topic = await store.create_topic("alice", "t")
        with pytest.raises(NotFoundError):
            await store.delete_message_and_descendants("alice", "ghost", topic.id)
