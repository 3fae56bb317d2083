from __future__ import annotations

from relay.gateway.normalizer import EventNormalizer, redact_tool_calls, strip_signature
from relay.models.events import ReasoningEvent, TextEvent, ToolCallsEvent, UsageEvent


def _call(call_id: str, name: str = "lookup", signature: str | None = "sig-1") -> dict:
    call = {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": "{}"},
    }
    if signature:
        call["thoughtSignature"] = signature
    return call


class TestEventNormalizer:
    def test_text_delta(self):
        assert EventNormalizer().normalize(TextEvent(content="Hel")) == {"content": "Hel"}

    def test_reasoning_signature_stripped_by_default(self):
        event = ReasoningEvent(reasoning_content="thinking", signature="sig")
        assert EventNormalizer().normalize(event) == {"reasoning_content": "thinking"}

    def test_reasoning_signature_passed_when_allowed(self):
        event = ReasoningEvent(reasoning_content="thinking", signature="sig")
        delta = EventNormalizer(pass_signature=True).normalize(event)
        assert delta == {"reasoning_content": "thinking", "thoughtSignature": "sig"}

    def test_reasoning_without_signature_has_no_field(self):
        delta = EventNormalizer(pass_signature=True).normalize(ReasoningEvent(reasoning_content="t"))
        assert "thoughtSignature" not in delta

    def test_usage_is_captured_not_emitted(self):
        normalizer = EventNormalizer()
        usage = {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}
        assert normalizer.normalize(UsageEvent(usage=usage)) is None
        assert normalizer.usage == usage

    def test_tool_call_indices_follow_first_appearance(self):
        normalizer = EventNormalizer()
        first = normalizer.normalize(ToolCallsEvent(tool_calls=[_call("a"), _call("b")]))
        second = normalizer.normalize(ToolCallsEvent(tool_calls=[_call("c")]))
        repeat = normalizer.normalize(ToolCallsEvent(tool_calls=[_call("a")]))

        assert [c["index"] for c in first["tool_calls"]] == [0, 1]
        assert [c["index"] for c in second["tool_calls"]] == [2]
        assert [c["index"] for c in repeat["tool_calls"]] == [0]
        assert normalizer.finish_reason == "tool_calls"

    def test_upstream_continuation_fragments_keep_their_slot(self):
        normalizer = EventNormalizer()
        normalizer.normalize(ToolCallsEvent(tool_calls=[{"index": 0, **_call("a", signature=None)}]))
        fragment = normalizer.normalize(
            ToolCallsEvent(tool_calls=[{"index": 0, "function": {"arguments": '{"q": 1}'}}])
        )
        assert fragment["tool_calls"][0]["index"] == 0

    def test_tool_call_signature_redaction(self):
        event = ToolCallsEvent(tool_calls=[_call("a")])

        stripped = EventNormalizer(pass_signature=False).normalize(event)
        kept = EventNormalizer(pass_signature=True).normalize(event)

        assert "thoughtSignature" not in stripped["tool_calls"][0]
        assert kept["tool_calls"][0]["thoughtSignature"] == "sig-1"

    def test_source_event_is_not_mutated(self):
        event = ToolCallsEvent(tool_calls=[_call("a")])
        EventNormalizer().normalize(event)
        assert event.tool_calls[0]["thoughtSignature"] == "sig-1"
        assert "index" not in event.tool_calls[0]

    def test_finish_reason_stop_without_tools(self):
        normalizer = EventNormalizer()
        normalizer.normalize(TextEvent(content="x"))
        assert normalizer.finish_reason == "stop"


def test_redaction_helpers():
    calls = [_call("a"), _call("b", signature=None)]
    assert redact_tool_calls(calls, pass_signature=True) == calls
    assert all("thoughtSignature" not in c for c in redact_tool_calls(calls, pass_signature=False))
    assert strip_signature({"a": 1, "thoughtSignature": "x"}) == {"a": 1}
