import pytest
from inline_snapshot import snapshot

from forgechat.modes import Decision, Mode, ModePolicy, build_system_prompt
from forgechat.tools.schemas import TOOL_SPECS

policy = ModePolicy()


@pytest.mark.parametrize("spec", [s for s in TOOL_SPECS if s.side_effecting], ids=lambda s: s.name)
def test_side_effecting_tools_denied_in_chat(spec):
    assert policy.is_allowed(spec.name, Mode.CHAT) is False
    assert policy.explain_denial(spec.name, Mode.CHAT) == Decision(
        allowed=False,
        reason=f'Tool "{spec.name}" not allowed in chat mode',
        suggestion="Switch to Agent Mode to use modification tools",
    )


@pytest.mark.parametrize("spec", TOOL_SPECS, ids=lambda s: s.name)
def test_every_tool_allowed_in_agent(spec):
    assert policy.is_allowed(spec.name, Mode.AGENT) is True


def test_read_only_tools_allowed_in_chat():
    assert [t.name for t in policy.tools_for_mode(Mode.CHAT)] == snapshot(["read_artifact", "list_artifacts"])
    assert [t.name for t in policy.tools_for_mode(Mode.AGENT)] == snapshot(
        ["create_artifact", "update_artifact", "read_artifact", "list_artifacts"]
    )


def test_unregistered_tool_denied_everywhere():
    for mode in Mode:
        decision = policy.check("rm_rf", mode)
        assert decision.allowed is False
        assert decision.reason == 'Tool "rm_rf" is not available'


def test_allowed_tools_override_narrows_agent():
    assert policy.check("create_artifact", Mode.AGENT, ["read_artifact"]) == Decision(
        allowed=False, reason='Tool "create_artifact" not permitted for this request'
    )
    assert policy.check("read_artifact", Mode.AGENT, ["read_artifact"]).allowed
    assert [t.name for t in policy.tools_for_mode(Mode.AGENT, ["read_artifact", "create_artifact"])] == [
        "create_artifact",
        "read_artifact",
    ]


def test_allowed_tools_cannot_widen_chat():
    decision = policy.check("create_artifact", Mode.CHAT, ["create_artifact"])
    assert decision.allowed is False
    assert decision.suggestion == "Switch to Agent Mode to use modification tools"


def test_mode_accepts_plain_strings():
    assert policy.is_allowed("create_artifact", "agent")
    assert not policy.is_allowed("create_artifact", "chat")


def test_restrictions_for():
    assert policy.restrictions_for(Mode.CHAT) == ["read_only"]
    assert policy.restrictions_for(Mode.AGENT) == []


def test_build_system_prompt():
    prompt = build_system_prompt("You are helpful.", Mode.CHAT, ["No code longer than 20 lines"])
    assert prompt.startswith("You are helpful.\n\nYou are in CHAT MODE")
    assert "CURRENT MODE: CHAT" in prompt
    assert "MODE BEHAVIOR: DISCUSSION ONLY - NO ARTIFACT MODIFICATIONS" in prompt
    assert prompt.endswith("ADDITIONAL RESTRICTIONS:\n- No code longer than 20 lines")

    prompt = build_system_prompt("You are helpful.", Mode.AGENT)
    assert "CURRENT MODE: AGENT" in prompt
    assert "ADDITIONAL RESTRICTIONS" not in prompt
