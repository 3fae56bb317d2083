from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from relay.gateway.normalizer import redact_tool_calls
from relay.gateway.streaming import ResponseMeta
from relay.models.events import (
    BackendCompletion,
    BackendEvent,
    ReasoningEvent,
    TextEvent,
    ToolCallsEvent,
    UsageEvent,
)
from relay.models.openai_compat import AggregatedResponse


class Aggregator:
    """Folds an ordered event stream into one AggregatedResponse."""

    def __init__(self) -> None:
        self.content_parts: List[str] = []
        self.reasoning_parts: List[str] = []
        self.reasoning_signature: Optional[str] = None
        self.tool_calls: List[Dict[str, Any]] = []
        self.usage: Optional[Dict[str, Any]] = None
        self._slot_by_id: Dict[str, int] = {}
        self._slot_by_upstream: Dict[int, int] = {}

    async def on_event(self, event: BackendEvent) -> None:
        self.feed(event)

    def feed(self, event: BackendEvent) -> None:
        if isinstance(event, UsageEvent):
            self.usage = event.usage
        elif isinstance(event, ReasoningEvent):
            self.reasoning_parts.append(event.reasoning_content or "")
            if event.signature:
                self.reasoning_signature = event.signature
        elif isinstance(event, ToolCallsEvent):
            for fragment in event.tool_calls:
                self._merge_tool_call(fragment)
        elif isinstance(event, TextEvent):
            self.content_parts.append(event.content or "")
        else:
            raise TypeError(f"unknown backend event: {event!r}")

    def _merge_tool_call(self, fragment: Dict[str, Any]) -> None:
        """
        Fragments of one call share an id, or (OpenAI continuation deltas)
        only the upstream index. Calls keep their first-appearance order and
        the upstream index is dropped.
        """
        fragment = dict(fragment)
        upstream_index = fragment.pop("index", None)
        call_id = fragment.get("id")

        if call_id is not None:
            slot = self._slot_by_id.get(call_id)
        else:
            slot = self._slot_by_upstream.get(upstream_index)

        if slot is None:
            slot = len(self.tool_calls)
            self.tool_calls.append({})
            if call_id is not None:
                self._slot_by_id[call_id] = slot
            if upstream_index is not None:
                self._slot_by_upstream[upstream_index] = slot

        call = self.tool_calls[slot]
        for key, value in fragment.items():
            if key == "function" and isinstance(value, dict):
                function = call.setdefault("function", {})
                for name, part in value.items():
                    if name == "arguments" and isinstance(part, str) and isinstance(function.get(name), str):
                        function[name] += part
                    elif part is not None:
                        function[name] = part
            elif value is not None:
                call[key] = value

    def finalize(
        self,
        meta: ResponseMeta,
        model: str,
        pass_signature: bool,
    ) -> AggregatedResponse:
        return _build(
            meta,
            model,
            content="".join(self.content_parts),
            reasoning_content="".join(self.reasoning_parts),
            reasoning_signature=self.reasoning_signature,
            tool_calls=self.tool_calls,
            usage=self.usage,
            pass_signature=pass_signature,
        )


def aggregate(
    events: Iterable[BackendEvent],
    meta: ResponseMeta,
    model: str,
    pass_signature: bool = False,
) -> AggregatedResponse:
    aggregator = Aggregator()
    for event in events:
        aggregator.feed(event)
    return aggregator.finalize(meta, model, pass_signature)


def from_completion(
    completion: BackendCompletion,
    meta: ResponseMeta,
    model: str,
    pass_signature: bool = False,
) -> AggregatedResponse:
    return _build(
        meta,
        model,
        content=completion.content,
        reasoning_content=completion.reasoning_content,
        reasoning_signature=completion.reasoning_signature,
        tool_calls=completion.tool_calls,
        usage=completion.usage,
        pass_signature=pass_signature,
    )


def _build(
    meta: ResponseMeta,
    model: str,
    *,
    content: str,
    reasoning_content: str,
    reasoning_signature: Optional[str],
    tool_calls: List[Dict[str, Any]],
    usage: Optional[Dict[str, Any]],
    pass_signature: bool,
) -> AggregatedResponse:
    # Redaction is applied once, over the whole accumulated result
    return AggregatedResponse(
        id=meta.id,
        created=meta.created,
        model=model,
        content=content,
        reasoning_content=reasoning_content,
        reasoning_signature=reasoning_signature if pass_signature else None,
        tool_calls=redact_tool_calls(tool_calls, pass_signature),
        usage=usage,
    )
