"""Chat modes and the tool policy attached to them.

`chat` is read-only: only tools that inspect artifacts may run. `agent` may
run every registered tool. The policy is a pure function of its inputs and is
consulted before every dispatch, including tool calls the model makes on its
own.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field

from pydantic import BaseModel

from forgechat.tools.schemas import TOOL_SPECS, ToolSpec


class Mode(str, enum.Enum):
    CHAT = "chat"
    AGENT = "agent"


class ModeConfig(BaseModel):
    id: Mode
    name: str
    description: str
    system_prompt: str
    capabilities: list[str]
    restrictions: list[str]


MODE_CONFIGS: dict[Mode, ModeConfig] = {
    Mode.CHAT: ModeConfig(
        id=Mode.CHAT,
        name="Chat Mode",
        description="Discussion and advice only - no artifact modifications",
        system_prompt="""You are in CHAT MODE - discussion and advisory only.

You CANNOT create or modify artifacts. You may only read existing artifacts.
If the user asks you to create or change something, explain that you are in Chat Mode
and suggest switching to Agent Mode.""",
        capabilities=[
            "Discuss code and concepts",
            "Answer programming questions",
            "Explain how code works",
            "Read existing artifacts",
        ],
        restrictions=[
            "Cannot create artifacts",
            "Cannot modify artifacts",
            "Read-only mode only",
        ],
    ),
    Mode.AGENT: ModeConfig(
        id=Mode.AGENT,
        name="Agent Mode",
        description="Full capabilities - can create and modify artifacts",
        system_prompt="""You are in AGENT MODE - full capabilities enabled.

You CAN create new artifacts and update existing ones with the available tools.
Explain what you are doing and prefer incremental changes.""",
        capabilities=[
            "Create artifacts",
            "Modify existing artifacts",
            "Read existing artifacts",
        ],
        restrictions=[
            "Should ask before major changes",
        ],
    ),
}

READ_ONLY_RESTRICTIONS = ["read_only"]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None
    suggestion: str | None = None


@dataclass(frozen=True)
class ModePolicy:
    tools: tuple[ToolSpec, ...] = TOOL_SPECS
    _registered: frozenset[str] = field(init=False, repr=False)
    _read_only: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_registered", frozenset(t.name for t in self.tools))
        object.__setattr__(self, "_read_only", frozenset(t.name for t in self.tools if not t.side_effecting))

    def check(self, tool_name: str, mode: Mode, allowed_tools: Iterable[str] | None = None) -> Decision:
        mode = Mode(mode)
        if tool_name not in self._registered:
            return Decision(False, f'Tool "{tool_name}" is not available', None)
        if mode is Mode.CHAT and tool_name not in self._read_only:
            return Decision(
                False,
                f'Tool "{tool_name}" not allowed in chat mode',
                "Switch to Agent Mode to use modification tools",
            )
        if allowed_tools is not None and tool_name not in set(allowed_tools):
            return Decision(False, f'Tool "{tool_name}" not permitted for this request', None)
        return Decision(True)

    def is_allowed(self, tool_name: str, mode: Mode) -> bool:
        return self.check(tool_name, mode).allowed

    def explain_denial(self, tool_name: str, mode: Mode) -> Decision:
        return self.check(tool_name, mode)

    def tools_for_mode(self, mode: Mode, allowed_tools: Iterable[str] | None = None) -> list[ToolSpec]:
        allowed_tools = None if allowed_tools is None else set(allowed_tools)
        return [t for t in self.tools if self.check(t.name, mode, allowed_tools).allowed]

    def restrictions_for(self, mode: Mode) -> list[str]:
        return list(READ_ONLY_RESTRICTIONS) if Mode(mode) is Mode.CHAT else []


def build_system_prompt(
    base_prompt: str,
    mode: Mode,
    restrictions: list[str] | None = None,
) -> str:
    mode = Mode(mode)
    behavior = "DISCUSSION ONLY - NO ARTIFACT MODIFICATIONS" if mode is Mode.CHAT else "FULL AGENT CAPABILITIES ENABLED"
    prompt = f"""{base_prompt}

{MODE_CONFIGS[mode].system_prompt}

CURRENT MODE: {mode.value.upper()}
MODE BEHAVIOR: {behavior}"""
    if restrictions:
        prompt += "\n\nADDITIONAL RESTRICTIONS:\n" + "\n".join(f"- {r}" for r in restrictions)
    return prompt
