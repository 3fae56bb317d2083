"""Backend event -> OpenAI delta mapping, and thoughtSignature redaction."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from relay.models.events import (
    BackendEvent,
    ReasoningEvent,
    TextEvent,
    ToolCallsEvent,
    UsageEvent,
)

SIGNATURE_FIELD = "thoughtSignature"


def strip_signature(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in obj.items() if k != SIGNATURE_FIELD}


def redact_tool_calls(
    tool_calls: List[Dict[str, Any]],
    pass_signature: bool,
) -> List[Dict[str, Any]]:
    if pass_signature:
        return [dict(call) for call in tool_calls]
    return [strip_signature(call) for call in tool_calls]


class EventNormalizer:
    """
    One instance per request: tool-call indices and captured usage are
    request-scoped, everything else is a pure function of the event.
    """

    def __init__(self, pass_signature: bool = False) -> None:
        self.pass_signature = pass_signature
        self.usage: Optional[Dict[str, Any]] = None
        self.saw_tool_calls = False
        self._next_index = 0
        self._index_by_id: Dict[str, int] = {}
        self._index_by_upstream: Dict[int, int] = {}

    def normalize(self, event: BackendEvent) -> Optional[Dict[str, Any]]:
        if isinstance(event, UsageEvent):
            self.usage = event.usage
            return None

        if isinstance(event, ReasoningEvent):
            delta: Dict[str, Any] = {"reasoning_content": event.reasoning_content}
            if event.signature and self.pass_signature:
                delta[SIGNATURE_FIELD] = event.signature
            return delta

        if isinstance(event, ToolCallsEvent):
            self.saw_tool_calls = True
            fragments = []
            for call in redact_tool_calls(event.tool_calls, self.pass_signature):
                upstream_index = call.pop("index", None)
                fragments.append({"index": self._index_for(call, upstream_index), **call})
            return {"tool_calls": fragments}

        if isinstance(event, TextEvent):
            return {"content": event.content}

        raise TypeError(f"unknown backend event: {event!r}")

    @property
    def finish_reason(self) -> str:
        return "tool_calls" if self.saw_tool_calls else "stop"

    def _index_for(self, call: Dict[str, Any], upstream_index: Optional[int]) -> int:
        # Continuation fragments from OpenAI-style upstreams carry only their index
        call_id = call.get("id")
        if call_id is not None and call_id in self._index_by_id:
            return self._index_by_id[call_id]
        if call_id is None and upstream_index in self._index_by_upstream:
            return self._index_by_upstream[upstream_index]

        index = self._next_index
        self._next_index += 1
        if call_id is not None:
            self._index_by_id[call_id] = index
        if upstream_index is not None:
            self._index_by_upstream[upstream_index] = index
        return index
