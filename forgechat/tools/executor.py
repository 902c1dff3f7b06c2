from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from fastapi import Depends
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from forgechat.errors import ArtifactNotFound, ForgechatError
from forgechat.log import logger
from forgechat.store.artifact import SqlArtifactStore, get_artifact_store
from forgechat.tools.schemas import (
    TOOL_SPECS,
    ArtifactListing,
    ArtifactMutationResult,
    ArtifactSummary,
    ArtifactView,
    CreateArtifactCall,
    ListArtifactsCall,
    ReadArtifactCall,
    ToolCall,
    ToolOutput,
    ToolSpec,
    UpdateArtifactCall,
)

_tool_call_adapter: TypeAdapter[ToolCall] = TypeAdapter(ToolCall)


class ToolErrorKind(str, enum.Enum):
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_TOOL = "unknown_tool"
    EXECUTION_ERROR = "execution_error"


@dataclass(frozen=True)
class ToolSuccess:
    payload: ToolOutput

    ok = True


@dataclass(frozen=True)
class ToolFailure:
    kind: ToolErrorKind
    message: str

    ok = False


ToolResult = ToolSuccess | ToolFailure


@dataclass(frozen=True)
class ToolContext:
    conversation_id: str | None = None


def get_tool_executor(artifact_store: SqlArtifactStore = Depends(get_artifact_store)) -> ToolExecutor:
    return ToolExecutor(artifact_store)


class ToolExecutor:
    """Runs one named tool. Never raises: every outcome is a `ToolResult`."""

    def __init__(self, artifact_store: SqlArtifactStore, specs: tuple[ToolSpec, ...] = TOOL_SPECS) -> None:
        self.artifact_store = artifact_store
        self.specs = {spec.name: spec for spec in specs}

    async def execute(
        self,
        tool_name: str,
        tool_input: Mapping[str, Any] | str | None,
        context: ToolContext | None = None,
    ) -> ToolResult:
        if tool_name not in self.specs:
            return ToolFailure(ToolErrorKind.UNKNOWN_TOOL, f"Unknown tool: {tool_name}")

        try:
            call = self.parse(tool_name, tool_input)
        except (PydanticValidationError, ValueError) as e:
            logger.debug(f"Invalid input for tool {tool_name}: {e}")
            return ToolFailure(ToolErrorKind.VALIDATION_ERROR, f"Invalid input for {tool_name}: {_summarize(e)}")

        try:
            payload = await self._dispatch(call, context or ToolContext())
        except ArtifactNotFound as e:
            return ToolFailure(ToolErrorKind.EXECUTION_ERROR, str(e))
        except ForgechatError as e:
            logger.warning(f"Tool {tool_name} failed: {e}")
            return ToolFailure(ToolErrorKind.EXECUTION_ERROR, e.user_message)
        except Exception as e:
            logger.exception(f"Tool {tool_name} crashed: {e}")
            return ToolFailure(ToolErrorKind.EXECUTION_ERROR, f"{tool_name} failed unexpectedly")
        return ToolSuccess(payload)

    @staticmethod
    def parse(tool_name: str, tool_input: Mapping[str, Any] | str | None) -> ToolCall:
        if tool_input is None or tool_input == "":
            tool_input = {}
        elif isinstance(tool_input, str):
            tool_input = json.loads(tool_input)
            if not isinstance(tool_input, dict):
                raise ValueError("tool input must be a JSON object")
        return _tool_call_adapter.validate_python({"tool": tool_name, "input": dict(tool_input)})

    async def _dispatch(self, call: ToolCall, context: ToolContext) -> ToolOutput:
        store = self.artifact_store
        match call:
            case CreateArtifactCall(input=params):
                artifact = await store.create(
                    name=params.name,
                    type=params.type.value,
                    content=params.content,
                    description=params.description,
                    tags=params.tags,
                    path=params.path,
                    conversation_id=context.conversation_id,
                )
                return ArtifactMutationResult(
                    artifact_id=artifact.artifact_id,
                    version=artifact.version,
                    message=f"Created {artifact.type} artifact: {artifact.name}",
                )
            case UpdateArtifactCall(input=params):
                artifact = await store.update(params.id, content=params.content, description=params.description)
                return ArtifactMutationResult(
                    artifact_id=artifact.artifact_id,
                    version=artifact.version,
                    message=f"Updated artifact: {artifact.name}",
                )
            case ReadArtifactCall(input=params):
                artifact = await store.get(params.id)
                if artifact is None:
                    raise ArtifactNotFound(f"Artifact {params.id} not found")
                return ArtifactView(
                    artifact_id=artifact.artifact_id,
                    name=artifact.name,
                    type=artifact.type,
                    content=artifact.content,
                    description=artifact.description,
                    tags=artifact.tags,
                    version=artifact.version,
                )
            case ListArtifactsCall(input=params):
                artifacts = await store.list_artifacts(conversation_id=context.conversation_id, limit=params.limit)
                return ArtifactListing(
                    artifacts=[
                        ArtifactSummary(artifact_id=a.artifact_id, name=a.name, type=a.type, version=a.version)
                        for a in artifacts
                    ]
                )
        raise TypeError(f"Unhandled tool call: {type(call).__name__}")


def _summarize(e: Exception) -> str:
    if not isinstance(e, PydanticValidationError):
        return str(e)

    problems = []
    for err in e.errors():
        loc = list(err["loc"])
        if "input" in loc:
            loc = loc[loc.index("input") + 1 :]
        problems.append(f"{'.'.join(str(p) for p in loc) or 'input'}: {err['msg']}")
    return "; ".join(problems)
