import pytest
from inline_snapshot import snapshot

from forgechat.errors import ArtifactNotFound, PersistenceError
from forgechat.store.conversation import MessageRole, SqlConversationGateway, generate_title


@pytest.mark.parametrize(
    "message, title",
    [
        ("hello", "hello"),
        ("Build me a landing page. Use blue.", "Build me a landing page"),
        ("x" * 60, "x" * 50 + "..."),
        ("", "Untitled"),
        ("   ", "Untitled"),
    ],
)
def test_generate_title(message, title):
    assert generate_title(message) == title


async def test_messages_append_in_order(gateway: SqlConversationGateway):
    conversation = await gateway.create_conversation(title="t", metadata={"source": "test"})
    await gateway.add_message(conversation.conversation_id, MessageRole.USER, "q1")
    await gateway.add_message(conversation.conversation_id, MessageRole.ASSISTANT, "a1", metadata={"mode": "chat"})
    await gateway.add_message(conversation.conversation_id, MessageRole.USER, "q2")

    stored = await gateway.get_conversation(conversation.conversation_id)
    assert stored.metadata == {"source": "test"}
    assert [(m.role.value, m.content) for m in stored.messages] == snapshot(
        [("user", "q1"), ("assistant", "a1"), ("user", "q2")]
    )
    assert stored.messages[1].metadata == {"mode": "chat"}
    assert stored.updated_at >= stored.created_at

    recent = await gateway.get_recent_messages(conversation.conversation_id, 2)
    assert [m.content for m in recent] == ["a1", "q2"]
    assert await gateway.get_recent_messages(conversation.conversation_id, 0) == []


async def test_add_message_is_idempotent_on_id(gateway: SqlConversationGateway):
    conversation = await gateway.create_conversation()
    first = await gateway.add_message(conversation.conversation_id, MessageRole.USER, "hi", message_id="m-1")
    again = await gateway.add_message(conversation.conversation_id, MessageRole.USER, "hi", message_id="m-1")

    assert again.message_id == first.message_id == "m-1"
    assert len(await gateway.get_recent_messages(conversation.conversation_id, 10)) == 1


async def test_add_message_to_missing_conversation(gateway: SqlConversationGateway):
    with pytest.raises(PersistenceError):
        await gateway.add_message("missing", MessageRole.USER, "hi")


async def test_delete_conversation(gateway: SqlConversationGateway):
    conversation = await gateway.create_conversation()
    await gateway.add_message(conversation.conversation_id, MessageRole.USER, "hi")

    assert await gateway.delete_conversation(conversation.conversation_id) is True
    assert await gateway.get_conversation(conversation.conversation_id) is None
    assert await gateway.delete_conversation(conversation.conversation_id) is False


async def test_artifact_lifecycle(artifact_store):
    artifact = await artifact_store.create(name="Card", type="component", content="v1", tags=["ui"])
    assert artifact.version == 1

    updated = await artifact_store.update(artifact.artifact_id, content="v2")
    assert (updated.version, updated.content, updated.tags) == (2, "v2", ["ui"])
    assert (await artifact_store.get(artifact.artifact_id)).content == "v2"

    with pytest.raises(ArtifactNotFound):
        await artifact_store.update("missing", content="x")
    assert await artifact_store.get("missing") is None
