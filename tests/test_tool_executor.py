import pytest
from inline_snapshot import snapshot

from forgechat.errors import PersistenceError
from forgechat.tools.executor import ToolContext, ToolErrorKind, ToolExecutor, ToolFailure
from forgechat.tools.schemas import ArtifactListing, ArtifactMutationResult, ArtifactView, CreateArtifactCall


async def test_create_then_read_artifact(executor: ToolExecutor, artifact_store):
    result = await executor.execute(
        "create_artifact",
        {"name": "Button", "type": "component", "content": "<button/>", "tags": ["ui"]},
        ToolContext(conversation_id="c-1"),
    )
    assert result.ok
    assert isinstance(result.payload, ArtifactMutationResult)
    assert result.payload.version == 1
    assert result.payload.message == snapshot("Created component artifact: Button")

    stored = await artifact_store.get(result.payload.artifact_id)
    assert stored.conversation_id == "c-1"
    assert stored.tags == ["ui"]

    read = await executor.execute("read_artifact", {"id": result.payload.artifact_id})
    assert read.ok
    assert read.payload == ArtifactView(
        artifact_id=result.payload.artifact_id,
        name="Button",
        type="component",
        content="<button/>",
        tags=["ui"],
        version=1,
    )


async def test_update_bumps_version(executor: ToolExecutor):
    created = await executor.execute("create_artifact", {"name": "util", "type": "function", "content": "v1"})
    updated = await executor.execute(
        "update_artifact",
        {"id": created.payload.artifact_id, "content": "v2", "description": "second"},
    )
    assert updated.ok
    assert updated.payload.version == 2
    assert updated.payload.message == "Updated artifact: util"


async def test_list_artifacts_is_scoped_to_conversation(executor: ToolExecutor):
    await executor.execute("create_artifact", {"name": "a", "type": "file", "content": ""}, ToolContext("c-1"))
    await executor.execute("create_artifact", {"name": "b", "type": "file", "content": ""}, ToolContext("c-2"))

    result = await executor.execute("list_artifacts", {}, ToolContext("c-1"))
    assert result.ok
    assert isinstance(result.payload, ArtifactListing)
    assert [a.name for a in result.payload.artifacts] == ["a"]


async def test_accepts_json_string_input(executor: ToolExecutor):
    result = await executor.execute("create_artifact", '{"name": "doc", "type": "markdown", "content": "# hi"}')
    assert result.ok


async def test_unknown_tool(executor: ToolExecutor):
    result = await executor.execute("delete_everything", {})
    assert result == ToolFailure(ToolErrorKind.UNKNOWN_TOOL, "Unknown tool: delete_everything")
    assert not result.ok


@pytest.mark.parametrize(
    "tool_input, message",
    [
        ({"name": "x", "type": "spreadsheet", "content": ""}, "type: Input should be"),
        ({"name": "x", "type": "file"}, "content: Field required"),
        ({"name": "x", "type": "file", "content": "", "owner": "me"}, "owner: Extra inputs are not permitted"),
        ("{not json", "Invalid input for create_artifact"),
        ("[1, 2]", "tool input must be a JSON object"),
    ],
)
async def test_validation_errors(executor: ToolExecutor, tool_input, message):
    result = await executor.execute("create_artifact", tool_input)
    assert isinstance(result, ToolFailure)
    assert result.kind == ToolErrorKind.VALIDATION_ERROR
    assert message in result.message


async def test_missing_artifact_is_execution_error(executor: ToolExecutor):
    result = await executor.execute("update_artifact", {"id": "missing", "content": "x"})
    assert result == ToolFailure(ToolErrorKind.EXECUTION_ERROR, "Artifact missing not found")

    result = await executor.execute("read_artifact", {"id": "missing"})
    assert result.kind == ToolErrorKind.EXECUTION_ERROR


async def test_store_failure_never_escapes(executor: ToolExecutor, monkeypatch):
    async def broken_create(**kwargs):
        raise PersistenceError("disk full")

    monkeypatch.setattr(executor.artifact_store, "create", broken_create)
    result = await executor.execute("create_artifact", {"name": "x", "type": "file", "content": ""})
    assert result == ToolFailure(ToolErrorKind.EXECUTION_ERROR, "Could not save the conversation")


async def test_unexpected_failure_never_escapes(executor: ToolExecutor, monkeypatch):
    async def crash(**kwargs):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(executor.artifact_store, "create", crash)
    result = await executor.execute("create_artifact", {"name": "x", "type": "file", "content": ""})
    assert result.kind == ToolErrorKind.EXECUTION_ERROR
    assert "secret internals" not in result.message


def test_parse_builds_tagged_call():
    call = ToolExecutor.parse("create_artifact", {"name": "x", "type": "html", "content": "<p/>"})
    assert isinstance(call, CreateArtifactCall)
    assert call.input.type.value == "html"
