"""
Tests for the completion websocket session and its command dispatcher.
Sessions run against an in-memory websocket and a scripted provider.
"""

import asyncio

import pytest

from ai_editor.chat.orchestrator import CompletionOrchestrator
from ai_editor.chat.session import ChatSession, SessionState
from ai_editor.models import Message

from conftest import FakeWebSocket, ScriptedProvider, wait_until


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_session(store, provider=None, liveness_timeout=10.0, clock=None, user_id="alice"):
    websocket = FakeWebSocket()
    orchestrator = CompletionOrchestrator(provider, store, token_timeout=5.0)
    session = ChatSession(
        websocket,
        user_id,
        store,
        orchestrator,
        liveness_timeout=liveness_timeout,
        liveness_tick=0.01,
        clock=clock or FakeClock(),
    )
    return session, websocket


def prompt_frame(topic_id, content="Explain X", sequence_number=1, **extra):
    entry = {
        "topic_id": topic_id,
        "role": "user",
        "content": content,
        "sequence_number": sequence_number,
    }
    entry.update(extra)
    return {"command": "prompt", "previous_messages": [entry]}


async def shutdown(session, websocket, task):
    websocket.disconnect()
    await asyncio.wait_for(task, 2.0)


class TestLiveness:
    """Ping handling and the liveness watchdog."""

    @pytest.mark.asyncio
    async def test_ping_replies_pong_and_acknowledges(self, store):
        clock = FakeClock()
        session, websocket = make_session(store, clock=clock)
        task = asyncio.create_task(session.run())

        clock.now = 4.0
        websocket.push({"command": "ping"})
        await wait_until(lambda: websocket.sent)

        assert websocket.sent == [{"type": "pong"}]
        assert session.last_liveness_ack == 4.0
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_pings_keep_connection_alive(self, store):
        clock = FakeClock()
        session, websocket = make_session(store, clock=clock)
        task = asyncio.create_task(session.run())

        for step in range(1, 5):
            clock.now = step * 8.0
            websocket.push({"command": "ping"})
            await wait_until(lambda: len(websocket.frames("pong")) == step)
            await asyncio.sleep(0.03)
            assert session.is_open

        assert websocket.close_calls == []
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_timeout_closes_once_with_going_away(self, store):
        clock = FakeClock()
        session, websocket = make_session(store, clock=clock)
        task = asyncio.create_task(session.run())

        clock.now = 10.5
        await asyncio.wait_for(task, 2.0)

        assert websocket.close_calls == [1001]
        assert session.state == SessionState.CLOSED
        assert session.close_code == 1001

        await session.close()
        assert websocket.close_calls == [1001]

    @pytest.mark.asyncio
    async def test_timeout_cancels_active_generation(self, store):
        topic = await store.create_topic("alice", "t")
        clock = FakeClock()
        provider = ScriptedProvider(["a", "b"], block_after=1)
        session, websocket = make_session(store, provider, clock=clock)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(topic.id))
        await wait_until(lambda: websocket.frames("chatMessage"))
        clock.now = 11.0
        await asyncio.wait_for(task, 2.0)

        assert session.generation is None
        assert websocket.close_calls == [1001]
        assert len(await store.get_messages(topic.id)) == 1

    @pytest.mark.asyncio
    async def test_client_disconnect_skips_close(self, store):
        session, websocket = make_session(store)
        task = asyncio.create_task(session.run())

        await shutdown(session, websocket, task)

        assert session.state == SessionState.CLOSED
        assert websocket.close_calls == []


class TestDispatch:
    """Command handling and error reporting."""

    @pytest.mark.asyncio
    async def test_invalid_json_then_ping(self, store):
        session, websocket = make_session(store)
        task = asyncio.create_task(session.run())

        websocket.push("not json")
        websocket.push({"command": "ping"})
        await wait_until(lambda: len(websocket.sent) == 2)

        assert websocket.sent == [
            {"type": "error", "message": "Invalid message"},
            {"type": "pong"},
        ]
        assert session.is_open
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_binary_frame_rejected(self, store):
        session, websocket = make_session(store)
        task = asyncio.create_task(session.run())

        websocket.push_bytes(b"\x00\x01")
        await wait_until(lambda: websocket.sent)

        assert websocket.sent == [{"type": "error", "message": "Binary not a valid operation"}]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_unknown_command(self, store):
        session, websocket = make_session(store)
        task = asyncio.create_task(session.run())

        websocket.push({"command": "dance"})
        await wait_until(lambda: websocket.sent)

        assert websocket.sent == [{"type": "error", "message": "Unknown command: dance"}]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_change_topic(self, store):
        topic = await store.create_topic("alice", "t")
        history = await store.append_user_message(topic.id, "hi")
        session, websocket = make_session(store)
        task = asyncio.create_task(session.run())

        websocket.push({"command": "changeTopic", "topic_id": topic.id})
        await wait_until(lambda: websocket.sent)

        assert session.current_topic_id == topic.id
        assert websocket.sent[0]["type"] == "messages"
        assert [m["id"] for m in websocket.sent[0]["messages"]] == [history[0].id]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_change_topic_not_owned(self, store):
        mine = await store.create_topic("alice", "mine")
        theirs = await store.create_topic("bob", "theirs")
        session, websocket = make_session(store)
        task = asyncio.create_task(session.run())

        websocket.push({"command": "changeTopic", "topic_id": mine.id})
        websocket.push({"command": "changeTopic", "topic_id": theirs.id})
        await wait_until(lambda: len(websocket.sent) == 2)
        await asyncio.sleep(0.02)

        assert websocket.sent[1] == {"type": "error", "message": "User does not own topic"}
        assert len(websocket.sent) == 2
        assert session.current_topic_id == mine.id
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_prompt_for_foreign_topic(self, store):
        theirs = await store.create_topic("bob", "theirs")
        provider = ScriptedProvider(["a"])
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(theirs.id))
        await wait_until(lambda: websocket.sent)

        assert websocket.sent == [{"type": "error", "message": "User does not own topic"}]
        assert provider.calls == []
        assert await store.get_messages(theirs.id) == []
        await shutdown(session, websocket, task)


class TestGeneration:
    """Prompt, stop, and regenerate over the session."""

    @pytest.mark.asyncio
    async def test_prompt_streams_and_persists(self, store):
        topic = await store.create_topic("alice", "t")
        provider = ScriptedProvider(["Sure", ", ", "X is..."])
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(topic.id))
        await wait_until(lambda: websocket.frames("messages"))

        assert [f["text"] for f in websocket.frames("chatMessage")] == ["Sure", ", ", "X is..."]
        assert websocket.sent[-1]["type"] == "messages"
        stored = await store.get_messages(topic.id)
        assert [(m.role, m.content, m.sequence_number) for m in stored] == [
            ("user", "Explain X", 1),
            ("assistant", "Sure, X is...", 2),
        ]
        assert stored[1].completion_tokens == 3
        assert session.current_topic_id == topic.id

        await wait_until(lambda: session.state == SessionState.CONNECTED)
        assert session.generation is None
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_known_history_is_not_duplicated(self, store):
        topic = await store.create_topic("alice", "t")
        history = await store.append_user_message(topic.id, "Explain X")
        provider = ScriptedProvider(["ok"])
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(topic.id, id=history[0].id))
        await wait_until(lambda: websocket.frames("messages"))

        stored = await store.get_messages(topic.id)
        assert [m.role for m in stored] == ["user", "assistant"]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_resent_history_without_ids_is_not_duplicated(self, store):
        topic = await store.create_topic("alice", "t")
        provider = ScriptedProvider(["ok"])
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        first_turn = {"topic_id": topic.id, "role": "user", "content": "Explain X", "sequence_number": 1}
        websocket.push({"command": "prompt", "previous_messages": [first_turn]})
        await wait_until(lambda: len(websocket.frames("messages")) == 1)
        reply = websocket.frames("messages")[0]["messages"][1]

        websocket.push({"command": "prompt", "previous_messages": [
            first_turn,
            {k: reply[k] for k in ("id", "topic_id", "role", "content", "sequence_number")},
            {"topic_id": topic.id, "role": "user", "content": "More", "sequence_number": 3},
        ]})
        await wait_until(lambda: len(websocket.frames("messages")) == 2)

        stored = await store.get_messages(topic.id)
        assert [(m.sequence_number, m.role, m.content) for m in stored] == [
            (1, "user", "Explain X"),
            (2, "assistant", "ok"),
            (3, "user", "More"),
            (4, "assistant", "ok"),
        ]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_change_topic_keeps_generation_on_original_topic(self, store):
        first = await store.create_topic("alice", "first")
        second = await store.create_topic("alice", "second")
        provider = ScriptedProvider(["a", "b"], block_after=1)
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(first.id))
        await wait_until(lambda: websocket.frames("chatMessage"))
        websocket.push({"command": "changeTopic", "topic_id": second.id})
        await wait_until(lambda: websocket.frames("messages"))

        assert websocket.frames("messages")[0]["messages"] == []
        assert session.current_topic_id == second.id
        assert session.state == SessionState.GENERATING
        assert session.generation is not None

        provider.release.set()
        await wait_until(lambda: len(websocket.frames("messages")) == 2)
        await wait_until(lambda: session.state == SessionState.CONNECTED)

        assert [f["text"] for f in websocket.frames("chatMessage")] == ["a", "b"]
        assert [(m.role, m.content) for m in await store.get_messages(first.id)] == [
            ("user", "Explain X"), ("assistant", "ab"),
        ]
        assert await store.get_messages(second.id) == []
        assert session.current_topic_id == second.id
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_provider_error_returns_to_connected(self, store):
        topic = await store.create_topic("alice", "t")
        provider = ScriptedProvider(["a", "b"], error_after=1)
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(topic.id))
        await wait_until(lambda: websocket.frames("error"))
        await wait_until(lambda: session.state == SessionState.CONNECTED)
        await asyncio.sleep(0.02)

        assert [f["type"] for f in websocket.sent] == ["chatMessage", "error"]
        assert websocket.frames("error") == [{"type": "error", "message": "Upstream exploded"}]
        assert session.generation is None
        assert [m.role for m in await store.get_messages(topic.id)] == ["user"]
        assert session.is_open
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_stop_cancels_generation(self, store):
        topic = await store.create_topic("alice", "t")
        provider = ScriptedProvider(["Sure", ", ", "X"], block_after=1)
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(topic.id))
        await wait_until(lambda: websocket.frames("chatMessage"))
        assert session.state == SessionState.GENERATING

        websocket.push({"command": "stop"})
        await wait_until(lambda: session.state == SessionState.CONNECTED)
        provider.release.set()
        await asyncio.sleep(0.02)

        assert len(websocket.frames("chatMessage")) == 1
        assert websocket.frames("messages") == []
        assert [m.role for m in await store.get_messages(topic.id)] == ["user"]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_stop_when_idle_is_silent(self, store):
        session, websocket = make_session(store)
        task = asyncio.create_task(session.run())

        websocket.push({"command": "stop"})
        websocket.push({"command": "ping"})
        await wait_until(lambda: websocket.sent)

        assert websocket.sent == [{"type": "pong"}]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_new_prompt_replaces_active_generation(self, store):
        topic = await store.create_topic("alice", "t")
        provider = ScriptedProvider(["a", "b", "c"], block_after=1)
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push(prompt_frame(topic.id, content="first"))
        await wait_until(lambda: websocket.frames("chatMessage"))
        provider.block_after = None
        websocket.push(prompt_frame(topic.id, content="second", sequence_number=2))
        await wait_until(lambda: websocket.frames("messages"))

        assert len(provider.calls) == 2
        assert [f["text"] for f in websocket.frames("chatMessage")] == ["a", "a", "b", "c"]
        stored = await store.get_messages(topic.id)
        assistant = [m for m in stored if m.role == "assistant"]
        assert len(assistant) == 1
        assert assistant[0].content == "abc"
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_regenerate_replaces_reply(self, store):
        topic = await store.create_topic("alice", "t")
        history = await store.append_user_message(topic.id, "Explain X")
        old_reply = await store.insert_message(
            Message.from_details("old", topic.id, 2, "assistant", completion_tokens=1)
        )
        provider = ScriptedProvider(["new", " reply"])
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push({"command": "regenerateMessage", "message_id": old_reply.id, "topic_id": topic.id})
        await wait_until(lambda: websocket.frames("messages"))

        stored = await store.get_messages(topic.id)
        assert [m.id for m in stored][0] == history[0].id
        assert old_reply.id not in [m.id for m in stored]
        assert stored[1].content == "new reply"
        assert stored[1].sequence_number == 2
        assert [(m.role, m.content) for m in provider.calls[0]] == [("user", "Explain X")]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_regenerate_uses_current_topic(self, store):
        topic = await store.create_topic("alice", "t")
        await store.append_user_message(topic.id, "Explain X")
        old_reply = await store.insert_message(Message.from_details("old", topic.id, 2, "assistant"))
        session, websocket = make_session(store, ScriptedProvider(["fresh"]))
        task = asyncio.create_task(session.run())

        websocket.push({"command": "changeTopic", "topic_id": topic.id})
        websocket.push({"command": "regenerateMessage", "message_id": old_reply.id})
        await wait_until(lambda: len(websocket.frames("messages")) == 2)

        stored = await store.get_messages(topic.id)
        assert [m.content for m in stored] == ["Explain X", "fresh"]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_regenerate_without_topic(self, store):
        session, websocket = make_session(store, ScriptedProvider(["a"]))
        task = asyncio.create_task(session.run())

        websocket.push({"command": "regenerateMessage", "message_id": "M"})
        await wait_until(lambda: websocket.sent)

        assert websocket.sent == [{"type": "error", "message": "No topic selected for regeneration"}]
        await shutdown(session, websocket, task)

    @pytest.mark.asyncio
    async def test_regenerate_first_message_leaves_nothing(self, store):
        topic = await store.create_topic("alice", "t")
        history = await store.append_user_message(topic.id, "Explain X")
        provider = ScriptedProvider(["a"])
        session, websocket = make_session(store, provider)
        task = asyncio.create_task(session.run())

        websocket.push({"command": "regenerateMessage", "message_id": history[0].id, "topic_id": topic.id})
        await wait_until(lambda: websocket.sent)

        assert websocket.sent == [{"type": "error", "message": "No messages left to regenerate from"}]
        assert provider.calls == []
        await shutdown(session, websocket, task)
