"""Tool call inputs and outputs.

Every tool is one member of the `ToolCall` tagged union, keyed by its `tool`
name. Inputs are validated against the member's model before anything runs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class ArtifactType(str, enum.Enum):
    FILE = "file"
    COMPONENT = "component"
    FUNCTION = "function"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    HTML = "html"
    MARKDOWN = "markdown"
    JSON = "json"
    MINDMAP = "mindmap"


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateArtifactInput(ToolInput):
    name: str = Field(..., min_length=1, description="Name of the artifact to create")
    type: ArtifactType = Field(..., description="Type of artifact to create")
    content: str = Field(..., description="Content/code for the artifact")
    description: str | None = Field(None, description="Description of the artifact")
    tags: list[str] = Field(default_factory=list, description="Tags for the artifact")
    path: str | None = Field(None, description="File path where to create the artifact")


class UpdateArtifactInput(ToolInput):
    id: str = Field(..., min_length=1, description="ID of the artifact to update")
    content: str = Field(..., description="New content for the artifact")
    description: str | None = Field(None, description="Updated description")


class ReadArtifactInput(ToolInput):
    id: str = Field(..., min_length=1, description="ID of the artifact to read")


class ListArtifactsInput(ToolInput):
    limit: int = Field(20, ge=1, le=100, description="Maximum number of artifacts to list")


class ArtifactMutationResult(BaseModel):
    success: bool = True
    artifact_id: str
    version: int
    message: str


class ArtifactView(BaseModel):
    artifact_id: str
    name: str
    type: str
    content: str
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    version: int


class ArtifactSummary(BaseModel):
    artifact_id: str
    name: str
    type: str
    version: int


class ArtifactListing(BaseModel):
    artifacts: list[ArtifactSummary]


class CreateArtifactCall(BaseModel):
    tool: Literal["create_artifact"]
    input: CreateArtifactInput


class UpdateArtifactCall(BaseModel):
    tool: Literal["update_artifact"]
    input: UpdateArtifactInput


class ReadArtifactCall(BaseModel):
    tool: Literal["read_artifact"]
    input: ReadArtifactInput


class ListArtifactsCall(BaseModel):
    tool: Literal["list_artifacts"]
    input: ListArtifactsInput


ToolCall = Annotated[
    Union[CreateArtifactCall, UpdateArtifactCall, ReadArtifactCall, ListArtifactsCall],
    Field(discriminator="tool"),
]

ToolOutput = Union[ArtifactMutationResult, ArtifactView, ArtifactListing]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: type[ToolInput]
    side_effecting: bool

    def parameters_json_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema()


TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="create_artifact",
        description="Creates new code/content artifacts in the project",
        input_model=CreateArtifactInput,
        side_effecting=True,
    ),
    ToolSpec(
        name="update_artifact",
        description="Updates existing artifacts with new content",
        input_model=UpdateArtifactInput,
        side_effecting=True,
    ),
    ToolSpec(
        name="read_artifact",
        description="Reads the current content of an existing artifact",
        input_model=ReadArtifactInput,
        side_effecting=False,
    ),
    ToolSpec(
        name="list_artifacts",
        description="Lists the most recently updated artifacts",
        input_model=ListArtifactsInput,
        side_effecting=False,
    ),
)
