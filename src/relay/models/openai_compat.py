from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


# Request models
class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str
    content: Optional[Union[str, List[Dict[str, Any]]]] = None


class ChatCompletionRequest(BaseModel):
    """
    Incoming OpenAI-style request. Anything beyond messages/model/stream/tools
    is kept as a free-form generation parameter.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    model: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    stream: Optional[bool] = False
    tools: Optional[List[Dict[str, Any]]] = None

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def message_dicts(self) -> List[Dict[str, Any]]:
        return [m.model_dump(exclude_none=True) for m in self.messages]


# Response models
class UsageInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChunkChoice(BaseModel):
    index: int = 0
    delta: Dict[str, Any]
    finish_reason: Optional[str] = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str

    choices: List[ChunkChoice]
    usage: Optional[Dict[str, Any]] = None


class AssistantMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["assistant"] = "assistant"
    reasoning_content: Optional[str] = None
    content: str = ""
    tool_calls: Optional[List[Dict[str, Any]]] = None


class ChatCompletionChoice(BaseModel):
    index: int
    message: AssistantMessage
    finish_reason: Optional[str] = None


class ChatCompletionResponse(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str

    choices: List[ChatCompletionChoice]
    usage: Optional[Dict[str, Any]] = None


# Internal aggregated model
class AggregatedResponse(BaseModel):
    """
    Provider-agnostic result of one request, built either by folding a
    stream of backend events or from a single-shot backend completion.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    created: int
    model: str

    content: str = ""
    reasoning_content: str = ""
    reasoning_signature: Optional[str] = None
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None

    @property
    def finish_reason(self) -> str:
        return "tool_calls" if self.tool_calls else "stop"

    def to_openai(self) -> Dict[str, Any]:
        extra: Dict[str, Any] = {}
        if self.reasoning_signature:
            extra["thoughtSignature"] = self.reasoning_signature

        # reasoning_content goes before content in the serialized message
        message = AssistantMessage(
            reasoning_content=self.reasoning_content or None,
            content=self.content,
            tool_calls=self.tool_calls or None,
            **extra,
        )
        response = ChatCompletionResponse(
            id=self.id,
            created=self.created,
            model=self.model,
            choices=[
                ChatCompletionChoice(
                    index=0,
                    message=message,
                    finish_reason=self.finish_reason,
                )
            ],
            usage=self.usage,
        )
        return response.model_dump(exclude_none=True)
