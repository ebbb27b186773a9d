"""Streaming chat model clients."""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from .messages import Fragment, ToolCallDelta

logger = logging.getLogger(__name__)


def fragment_from_delta(delta: Any) -> Fragment:
    """Convert a Chat Completions stream delta into a Fragment."""
    tool_calls = []
    for call in getattr(delta, "tool_calls", None) or []:
        function = getattr(call, "function", None)
        tool_calls.append(
            ToolCallDelta(
                index=call.index,
                id=getattr(call, "id", None),
                name=getattr(function, "name", None) if function else None,
                arguments=(getattr(function, "arguments", None) or "") if function else "",
            )
        )
    return Fragment(text=getattr(delta, "content", None) or "", tool_calls=tuple(tool_calls))


class ChatModel(ABC):
    """Interface for a model that streams its response as fragments."""

    @abstractmethod
    def stream(
        self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]
    ) -> AsyncIterator[Fragment]:
        """Stream one response to ``messages``, offering ``tools`` to the model."""
        pass


class OpenAIChatModel(ChatModel):
    """Chat Completions model with tool calling, streamed."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_retries: int = 2,
        client: Optional[AsyncOpenAI] = None,
    ):
        # Transient API failures are retried by the client itself
        self.client = client or AsyncOpenAI(api_key=api_key, max_retries=max_retries)
        self.model_name = model_name
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings) -> "OpenAIChatModel":
        return cls(
            api_key=settings.openai_api_key,
            model_name=settings.model_name,
            temperature=settings.temperature,
            max_retries=settings.max_retries,
        )

    async def stream(
        self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]
    ) -> AsyncIterator[Fragment]:
        create_args = {
            "model": self.model_name,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            create_args["tools"] = tools
            create_args["tool_choice"] = "auto"

        stream = await self.client.chat.completions.create(**create_args)
        async for chunk in stream:
            if not chunk.choices:
                continue
            yield fragment_from_delta(chunk.choices[0].delta)
