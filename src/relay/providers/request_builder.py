from typing import Any, Dict, List, Optional

from relay.models.events import Credential
from relay.providers.base import RequestBuilder

# Client-side fields the upstream must not see
_DROPPED_PARAMS = {"stream", "stream_options", "user"}


class DefaultRequestBuilder(RequestBuilder):
    def build_backend_request(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        params: Dict[str, Any],
        tools: Optional[List[Dict[str, Any]]],
        credential: Credential,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": model,
            "messages": [dict(m) for m in messages],
        }

        for key, value in params.items():
            if key not in _DROPPED_PARAMS and value is not None:
                request[key] = value

        if tools:
            request["tools"] = [dict(t) for t in tools]

        # Per-credential upstream settings, e.g. an organization or project id
        request.update(credential.extra.get("request_overrides", {}))
        return request

    def augment_for_image_model(self, request: Dict[str, Any]) -> None:
        request.pop("tools", None)
        request.pop("tool_choice", None)
        request.pop("reasoning_effort", None)
        request["response_modalities"] = ["TEXT", "IMAGE"]
