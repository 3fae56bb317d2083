from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# Backend events
class UsageEvent(BaseModel):
    type: Literal["usage"] = "usage"
    usage: Dict[str, Any]


class ReasoningEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["reasoning"] = "reasoning"
    reasoning_content: str = ""
    signature: Optional[str] = Field(default=None, alias="thoughtSignature")


class ToolCallsEvent(BaseModel):
    type: Literal["tool_calls"] = "tool_calls"
    tool_calls: List[Dict[str, Any]]


class TextEvent(BaseModel):
    type: Literal["text"] = "text"
    content: str = ""


BackendEvent = Union[UsageEvent, ReasoningEvent, ToolCallsEvent, TextEvent]


class BackendCompletion(BaseModel):
    """Result of a single-shot backend call."""

    content: str = ""
    reasoning_content: str = ""
    reasoning_signature: Optional[str] = None
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Credential:
    access_token: str
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def credential_id(self) -> str:
        return hashlib.sha256(self.access_token.encode()).hexdigest()[:12]


def credential_tag(credential: Optional[Credential], credential_id: Optional[str]) -> str:
    """Short label for logs: the id when known, otherwise the token suffix."""
    if credential_id:
        return credential_id
    suffix = credential.access_token[-8:] if credential and credential.access_token else ""
    return f"...{suffix}" if suffix else "unknown"
