from __future__ import annotations

import tiktoken
from functools import lru_cache
from typing import Any, Dict, List

# per-message framing tokens and reply priming, as counted by OpenAI
_MESSAGE_OVERHEAD = 4
_REPLY_PRIMING = 2


@lru_cache(maxsize=8)
def _get_encoding(model: str):
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


def usage_for(model: str, messages: List[Dict[str, Any]], completion: str) -> Dict[str, int]:
    """Estimated OpenAI-style usage block for a prompt and its reply."""
    encoding = _get_encoding(model)

    prompt_tokens = _REPLY_PRIMING
    for message in messages:
        prompt_tokens += _MESSAGE_OVERHEAD
        prompt_tokens += sum(len(encoding.encode(str(v))) for v in message.values())

    completion_tokens = len(encoding.encode(completion))

    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
    }
